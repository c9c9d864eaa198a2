from typing import Any

def pretty_list(data: list[Any]) -> str:
    if not data:
        return ""
    if len(data) == 1:
        return str(data[0])
    return ", ".join(map(str, data[:-1])) + f" and {data[-1]}"

def pretty_time(ms: float) -> str:
    # osu editor style timestamp, ie 01:23:456
    sign = "-" if ms < 0 else ""
    ms = abs(ms)
    return f"{sign}{int(ms // 60000):02d}:{int(ms % 60000 // 1000):02d}:{int(ms % 1000):03d}"
