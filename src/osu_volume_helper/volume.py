from collections import Counter
import dataclasses

import numpy as np

from .osu_format import Beatmap, TimingPoint, TimingRow, split_line_ending

INHERITED_BEAT_LENGTH = -100.0  # 1x slider velocity

# Note: None of these functions are allowed to modify their input, they return new objects instead
# This keeps every target independent of the others, no matter in which order they are processed

@dataclasses.dataclass(frozen=True, eq=False)
class VolumeProfile:
    times: "numpy array (n,)" = dataclasses.field(default_factory=lambda: np.zeros(0))
    volumes: "numpy array (n,)" = dataclasses.field(default_factory=lambda: np.zeros(0, dtype=int))

    @staticmethod
    def from_pairs(pairs: list[tuple[float, int]]) -> "VolumeProfile":
        if not pairs:
            return VolumeProfile()
        times = np.array([t for t, _ in pairs], dtype=float)
        volumes = np.array([v for _, v in pairs], dtype=int)
        # stable, so duplicate times keep their file order (and the last one wins on lookup)
        order = np.argsort(times, kind="stable")
        times, volumes = times[order], volumes[order]
        # drop consecutive duplicates, they do not change any lookup
        keep = np.ones(len(times), dtype=bool)
        keep[1:] = (times[1:] != times[:-1]) | (volumes[1:] != volumes[:-1])
        return VolumeProfile(times[keep], volumes[keep])

    def __len__(self) -> int:
        return len(self.times)

    def __bool__(self) -> bool:
        return len(self) > 0

    def pairs(self) -> list[tuple[float, int]]:
        return [(float(t), int(v)) for t, v in zip(self.times, self.volumes)]

    def volume_at(self, time: float) -> int|None:
        """Volume in effect at the given time.

        This is the entry with the greatest time <= the given time (the last one in file order on ties).
        Times before the first entry use its volume, an empty profile gives None.
        """
        if not self:
            return None
        idx = np.searchsorted(self.times, time, side="right") - 1
        return int(self.volumes[max(idx, 0)])

    def volumes_at(self, times: "numpy array (n,)") -> "numpy array (n,)":
        # vectorized volume_at, profile must not be empty
        idx = np.searchsorted(self.times, np.asarray(times, dtype=float), side="right") - 1
        return self.volumes[np.clip(idx, 0, None)]


def extract_volume_profile(beatmap: Beatmap) -> VolumeProfile:
    return VolumeProfile.from_pairs([(tp.time, tp.volume) for tp in beatmap.timing_points])

def _inherited_copy(template: TimingPoint, time: float, volume: int, ending: str) -> TimingPoint:
    green = template.replace(
        time=time,
        beat_length=template.beat_length if template.inherited else INHERITED_BEAT_LENGTH,
        uninherited=False,
        volume=volume,
    )
    return dataclasses.replace(green, ending=ending)

def _insert_missing_points(rows: list[TimingRow], profile: VolumeProfile, default_newline: str = "\n") -> list[TimingRow]:
    # Add a green line for each profile time the target has no timing point at.
    # Nothing is added before the first timing point, there is no line to copy the timing from yet.
    points = [r for r in rows if isinstance(r, TimingPoint)]
    existing = {tp.time for tp in points}
    first_time = min(existing)
    new_times = sorted(float(t) for t in set(profile.times.tolist()) if t not in existing and t > first_time)
    newline = next((tp.ending for tp in points if tp.ending), default_newline)

    out = list(rows)
    for time in new_times:
        # copy the point in effect: greatest earlier time, last in file order on ties
        template = None
        for tp in points:
            if tp.time < time and (template is None or tp.time >= template.time):
                template = tp
        # insert before the first row that is later in time, otherwise after the last point
        insert_at = next((i for i, r in enumerate(out) if isinstance(r, TimingPoint) and r.time > time), None)
        if insert_at is None:
            insert_at = max(i for i, r in enumerate(out) if isinstance(r, TimingPoint)) + 1
        else:
            # keep comments attached to the line below them
            while insert_at > 0 and isinstance(out[insert_at - 1], str):
                insert_at -= 1
        ending = newline
        previous = out[insert_at - 1] if insert_at > 0 else None
        if isinstance(previous, TimingPoint) and not previous.ending:
            # previous point was the last line of the file
            out[insert_at - 1] = dataclasses.replace(previous, ending=newline)
            ending = ""
        time_value = int(time) if time.is_integer() else time
        out.insert(insert_at, _inherited_copy(template, time_value, profile.volume_at(time), ending))
    return out

def apply_volume_profile(beatmap: Beatmap, profile: VolumeProfile, insert_points: bool = False) -> Beatmap:
    """Return a copy of the beatmap with the volume of each timing point taken from the profile.

    Only the volume field changes, an empty profile returns the beatmap unchanged.
    With insert_points, green lines are added where the profile changes volume
    between two timing points of the target.
    """
    if not profile or not beatmap.timing_points:
        return beatmap
    rows = list(beatmap.timing_rows)
    if insert_points:
        # a lone unterminated point has no ending to copy, use the one of the section header
        _, header_ending = split_line_ending(beatmap.sections[beatmap.timing_section_index].header)
        rows = _insert_missing_points(rows, profile, header_ending or "\n")
    point_rows = [i for i, r in enumerate(rows) if isinstance(r, TimingPoint)]
    new_volumes = profile.volumes_at([rows[i].time for i in point_rows])
    out: list[TimingRow] = list(rows)
    for i, v in zip(point_rows, new_volumes):
        out[i] = rows[i].replace(volume=int(v))
    return beatmap.with_timing_rows(out)

def count_changed_points(before: Beatmap, after: Beatmap) -> int:
    # number of timing point lines in after that are not in before (changed or inserted)
    old = Counter(tp.pack() for tp in before.timing_points)
    new = Counter(tp.pack() for tp in after.timing_points)
    return sum((new - old).values())
