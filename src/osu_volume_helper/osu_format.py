from contextlib import contextmanager
import dataclasses
import logging
import math
from pathlib import Path
import re
import sys
from typing import Generator, Union

logger = logging.getLogger(__name__)

# For simplicity, a beatmap is kept as raw lines (including their line endings)
# Only the TimingPoints section is parsed, everything else is passed through untouched

TIMING_SECTION = "TimingPoints"
FILE_SUFFIX = ".osu"
ENCODING = "utf-8"

SECTION_HEADER = re.compile(r"^\[(?P<name>[^\[\]]+)\]$")
COMMENT_PREFIX = "//"

# field order of a timing point line: (name, text used when an older file omits it)
TIMING_FIELDS: tuple[tuple[str, str], ...] = (
    ("time", "0"),
    ("beat_length", "-100"),
    ("meter", "4"),
    ("sample_set", "0"),
    ("sample_index", "0"),
    ("volume", "100"),
    ("uninherited", "1"),
    ("effects", "0"),
)
TIMING_FIELD_NAMES = tuple(name for name, _ in TIMING_FIELDS)
VOLUME_INDEX = TIMING_FIELD_NAMES.index("volume")
REQUIRED_FIELDS = 2  # time and beat_length
MIN_VOLUME = 0
MAX_VOLUME = 100

class TimingPointParseError(ValueError):
    def __init__(self, line: str, reason: str, line_number: int|None = None) -> None:
        super().__init__()
        self.line = line
        self.reason = reason
        self.line_number = line_number

    def __str__(self) -> str:
        where = f" in line {self.line_number}" if self.line_number is not None else ""
        return f"Invalid timing point{where}: {self.reason}: {self.line!r}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self})"


def _parse_int(raw: str) -> int:
    # python also accepts "1_000", the game does not
    if "_" in raw:
        raise ValueError(f"invalid number {raw!r}")
    return int(raw)

def _parse_float(raw: str) -> float:
    if "_" in raw:
        raise ValueError(f"invalid number {raw!r}")
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"invalid number {raw!r}")
    return value

def _parse_time(raw: str) -> float:
    # usually integer milliseconds, but some old maps contain decimals
    value = _parse_float(raw)
    if value.is_integer() and "." not in raw:
        return int(value)
    return value

def _parse_bool(raw: str) -> bool:
    return bool(_parse_int(raw))

_FIELD_PARSERS = {
    "time": _parse_time,
    "beat_length": _parse_float,
    "meter": _parse_int,
    "sample_set": _parse_int,
    "sample_index": _parse_int,
    "volume": _parse_int,
    "uninherited": _parse_bool,
    "effects": _parse_int,
}

def _format_field(value: Union[bool, int, float]) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

def split_line_ending(line: str) -> tuple[str, str]:
    text = line.rstrip("\r\n")
    return text, line[len(text):]


@dataclasses.dataclass(frozen=True)
class TimingPoint:
    time: float
    beat_length: float
    meter: int = 4
    sample_set: int = 0
    sample_index: int = 0
    volume: int = 100
    uninherited: bool = True
    effects: int = 0
    extra: tuple[str, ...] = ()  # trailing fields this tool does not know about
    # text of every field as it appeared in the file, so unchanged fields pack byte-identically
    raw_fields: tuple[str, ...] = dataclasses.field(default=(), compare=False, repr=False)
    ending: str = dataclasses.field(default="\n", compare=False, repr=False)

    @classmethod
    def parse(cls, line: str, line_number: int|None = None) -> "TimingPoint":
        """Parse a timing point from a line of the TimingPoints section.

        Missing optional fields take the format defaults (see TIMING_FIELDS).
        Raises TimingPointParseError when there are less than two fields,
        a present field is not a finite number or the volume is outside 0-100.
        """
        text, ending = split_line_ending(line)
        raw_fields = tuple(text.split(","))
        if len(raw_fields) < REQUIRED_FIELDS:
            raise TimingPointParseError(text, f"expected at least {REQUIRED_FIELDS} fields, got {len(raw_fields)}", line_number)
        values = {}
        for name, raw in zip(TIMING_FIELD_NAMES, raw_fields):
            try:
                values[name] = _FIELD_PARSERS[name](raw)
            except ValueError as ve:
                raise TimingPointParseError(text, f"{name} should be a number, got {raw!r}", line_number) from ve
        if not MIN_VOLUME <= values.get("volume", MAX_VOLUME) <= MAX_VOLUME:
            raise TimingPointParseError(text, f"volume should be between {MIN_VOLUME} and {MAX_VOLUME}, got {values['volume']}", line_number)
        return cls(
            **values,
            extra=raw_fields[len(TIMING_FIELDS):],
            raw_fields=raw_fields,
            ending=ending,
        )

    @property
    def inherited(self) -> bool:
        return not self.uninherited

    def replace(self, **changes) -> "TimingPoint":
        # Note: only the text of fields that actually change is rewritten
        fields = list(self.raw_fields) or self.pack().split(",")
        for name, value in changes.items():
            if name not in TIMING_FIELD_NAMES:
                raise ValueError(f"Cannot replace {name!r} of a timing point")
            if value == getattr(self, name):
                continue
            index = TIMING_FIELD_NAMES.index(name)
            while len(fields) <= index:
                fields.append(TIMING_FIELDS[len(fields)][1])
            fields[index] = _format_field(value)
        return dataclasses.replace(self, raw_fields=tuple(fields), **changes)

    def pack(self) -> str:
        """The text of this timing point, without line ending."""
        if self.raw_fields:
            return ",".join(self.raw_fields)
        return ",".join([_format_field(getattr(self, name)) for name in TIMING_FIELD_NAMES] + list(self.extra))

    def to_line(self) -> str:
        return self.pack() + self.ending


TimingRow = Union[TimingPoint, str]  # str rows are blank lines and comments, kept raw

@dataclasses.dataclass(frozen=True)
class Section:
    name: str
    header: str  # raw header line, including line ending
    lines: tuple[str, ...] = ()
    first_line: int = 1  # line number of the header

    def to_text(self) -> str:
        return self.header + "".join(self.lines)


@dataclasses.dataclass(frozen=True)
class Beatmap:
    preamble: tuple[str, ...] = ()  # "osu file format v14" and anything else before the first section
    sections: tuple[Section, ...] = ()
    # parsed body of the first TimingPoints section, replaces its lines when serializing
    timing_rows: tuple[TimingRow, ...] = ()

    @property
    def section_names(self) -> list[str]:
        return [s.name for s in self.sections]

    @property
    def timing_section_index(self) -> int|None:
        for i, s in enumerate(self.sections):
            if s.name == TIMING_SECTION:
                return i
        return None

    @property
    def timing_points(self) -> list[TimingPoint]:
        return [r for r in self.timing_rows if isinstance(r, TimingPoint)]

    def get_section(self, name: str) -> Section|None:
        for s in self.sections:
            if s.name == name:
                return s
        return None

    def with_timing_rows(self, rows: list[TimingRow]) -> "Beatmap":
        if self.timing_section_index is None and rows:
            raise ValueError(f"Beatmap has no [{TIMING_SECTION}] section")
        return dataclasses.replace(self, timing_rows=tuple(rows))

    def to_text(self) -> str:
        timing_index = self.timing_section_index
        out = list(self.preamble)
        for i, s in enumerate(self.sections):
            if i == timing_index:
                out.append(s.header)
                out.extend(r.to_line() if isinstance(r, TimingPoint) else r for r in self.timing_rows)
            else:
                out.append(s.to_text())
        return "".join(out)


def _parse_timing_rows(section: Section) -> list[TimingRow]:
    rows: list[TimingRow] = []
    for offset, line in enumerate(section.lines, start=1):
        text, _ = split_line_ending(line)
        if not text.strip() or text.lstrip().startswith(COMMENT_PREFIX):
            rows.append(line)
        else:
            rows.append(TimingPoint.parse(line, section.first_line + offset))
    return rows

def parse_beatmap(content: str) -> Beatmap:
    preamble: list[str] = []
    sections: list[Section] = []
    current: Section|None = None
    current_lines: list[str] = []

    for line_number, line in enumerate(content.splitlines(keepends=True), start=1):
        match = SECTION_HEADER.match(line.strip())
        if match:
            if current is not None:
                sections.append(dataclasses.replace(current, lines=tuple(current_lines)))
            current = Section(match["name"], line, first_line=line_number)
            current_lines = []
        elif current is None:
            preamble.append(line)
        else:
            current_lines.append(line)
    if current is not None:
        sections.append(dataclasses.replace(current, lines=tuple(current_lines)))

    bm = Beatmap(preamble=tuple(preamble), sections=tuple(sections))
    timing_index = bm.timing_section_index
    if timing_index is None:
        return bm
    # a duplicated TimingPoints section (broken files) is passed through as-is
    return bm.with_timing_rows(_parse_timing_rows(sections[timing_index]))

# file
def import_file(file_path: Union[str, Path]) -> Beatmap:
    # newline="" keeps \r\n as-is, a BOM stays part of the first line
    with open(file_path, "r", encoding=ENCODING, newline="") as f:
        return parse_beatmap(f.read())

def export_file(beatmap: Beatmap, file_path: Union[str, Path]) -> None:
    content = beatmap.to_text()  # serialize completely before truncating the file
    with open(file_path, "w", encoding=ENCODING, newline="") as f:
        f.write(content)

@dataclasses.dataclass
class BeatmapFile:
    path: Path
    beatmap: Beatmap

@contextmanager
def file_data(filename: str|Path|None = None, save_suffix: str|None = "_out") -> Generator[BeatmapFile, None, None]:
    # Usage:
    #   with osu_format.file_data("my_diff.osu") as f:
    #     f.beatmap = volume.apply_volume_profile(f.beatmap, profile)
    if filename is None and len(sys.argv) == 2 and sys.argv[1].endswith(FILE_SUFFIX) and Path(sys.argv[1]).is_file():
        # if given a single command line argument that is a .osu file, use that
        fp = Path(sys.argv[1])
    elif filename is not None:
        fp = Path(filename)
    else:
        raise ValueError("No filename provided")
    logger.info(f"Loading {fp.absolute()}")
    f = BeatmapFile(fp, import_file(fp))
    yield f
    if save_suffix is not None:
        fp_out = fp.with_name(f"{fp.stem}{save_suffix}{fp.suffix}")
        logger.info(f"Saving {fp_out.absolute()}")
        export_file(f.beatmap, fp_out)
