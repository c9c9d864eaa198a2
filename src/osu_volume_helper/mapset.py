from concurrent.futures import ThreadPoolExecutor
import dataclasses
import logging
from pathlib import Path
from time import strftime
from typing import Iterable, Literal, Optional

from . import osu_format, volume
from .osu_format import Beatmap, TimingPointParseError
from .utils import pretty_list, pretty_time

logger = logging.getLogger(__name__)

DEFAULT_JOBS = 1


class VolumeCopyError(RuntimeError):
    def __init__(self, path: Path, reason: str) -> None:
        super().__init__()
        self.path = path
        self.reason = reason

    def __str__(self) -> str:
        return f"{self.path.name}: {self.reason}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self})"

# fatal, there is no profile to copy
class SourceUnreadableError(VolumeCopyError):
    pass

class SourceMalformedError(VolumeCopyError):
    pass

class MapsetError(VolumeCopyError):
    pass

# per target, only that target is skipped
class TargetError(VolumeCopyError):
    pass

class TargetUnreadableError(TargetError):
    pass

class TargetMalformedError(TargetError):
    pass

class TargetUnwritableError(TargetError):
    pass


@dataclasses.dataclass(frozen=True)
class TargetResult:
    path: Path
    status: Literal["updated", "unchanged", "skipped"]
    changed_points: int = 0
    error: Optional[TargetError] = None


@dataclasses.dataclass
class BatchReport:
    source: Path
    profile_size: int
    results: list[TargetResult] = dataclasses.field(default_factory=list)
    dry_run: bool = False

    def _with_status(self, status: str) -> list[TargetResult]:
        return [r for r in self.results if r.status == status]

    @property
    def updated(self) -> list[TargetResult]:
        return self._with_status("updated")

    @property
    def unchanged(self) -> list[TargetResult]:
        return self._with_status("unchanged")

    @property
    def skipped(self) -> list[TargetResult]:
        return self._with_status("skipped")

    def summary(self) -> str:
        if not self.results:
            return f"No other difficulties found next to {self.source.name}, nothing to do"
        verb = "Would update" if self.dry_run else "Updated"
        lines = [
            f"{verb} {len(self.updated)} of {len(self.results)} difficulties"
            f" ({len(self.unchanged)} already matching, {len(self.skipped)} skipped)"
        ]
        if self.updated:
            lines.append(f"\tChanged: {pretty_list([r.path.name for r in self.updated])}")
        for r in self.skipped:
            lines.append(f"\tSkipped {r.error}")
        return "\n".join(lines)


def find_siblings(source: Path) -> list[Path]:
    """All other .osu files in the folder of the source file, sorted by name."""
    source = Path(source).resolve()
    try:
        candidates = list(source.parent.iterdir())
    except OSError as ose:
        raise MapsetError(source.parent, f"Could not list mapset folder: {ose}") from ose
    return sorted(
        (p for p in candidates if p.suffix.lower() == osu_format.FILE_SUFFIX and p.is_file() and p.resolve() != source),
        key=lambda p: p.name,
    )

def load_source(source: Path) -> Beatmap:
    try:
        return osu_format.import_file(source)
    except (OSError, UnicodeDecodeError) as exc:
        raise SourceUnreadableError(Path(source), f"Could not read file: {exc}") from exc
    except TimingPointParseError as tpe:
        raise SourceMalformedError(Path(source), str(tpe)) from tpe

def backup_file(path: Path, backup_dir: Path) -> Path:
    backup_dir.mkdir(exist_ok=True, parents=True)  # make dir if it doesn't exist
    data = path.read_bytes()  # binary identical copy, do not reexport
    stem = f"{path.stem}_{strftime('%Y-%m-%d_%H-%M-%S')}"
    counter = 0
    while True:
        out = backup_dir / f"{stem}{f'_{counter}' if counter else ''}{path.suffix}"
        try:
            # never overwrite an existing backup
            with open(out, "xb") as f:
                f.write(data)
            break
        except FileExistsError:
            counter += 1
    logger.info(f"Backup created at {out.resolve()}")
    return out

def patch_target(
    target: Path,
    profile: volume.VolumeProfile,
    *,
    insert_points: bool = False,
    backup_dir: Optional[Path] = None,
    dry_run: bool = False,
) -> TargetResult:
    """Read, patch and write a single target. Raises TargetError subclasses on failure."""
    try:
        before = osu_format.import_file(target)
    except (OSError, UnicodeDecodeError) as exc:
        raise TargetUnreadableError(target, f"Could not read file: {exc}") from exc
    except TimingPointParseError as tpe:
        raise TargetMalformedError(target, str(tpe)) from tpe

    after = volume.apply_volume_profile(before, profile, insert_points=insert_points)
    changed = volume.count_changed_points(before, after)
    if not changed:
        logger.debug(f"{target.name} already matches")
        return TargetResult(target, "unchanged")
    if not dry_run:
        try:
            if backup_dir is not None:
                backup_file(target, backup_dir)
            osu_format.export_file(after, target)
        except OSError as ose:
            raise TargetUnwritableError(target, f"Could not write file: {ose}") from ose
    logger.info(f"{'Would update' if dry_run else 'Updated'} {changed} timing points in {target.name}")
    return TargetResult(target, "updated", changed_points=changed)

def copy_volume(
    source: Path,
    targets: Optional[Iterable[Path]] = None,
    *,
    insert_points: bool = False,
    backup_dir: Optional[Path] = None,
    dry_run: bool = False,
    jobs: int = DEFAULT_JOBS,
) -> BatchReport:
    """Copy the volume profile of source to the targets (default: all other difficulties of the mapset).

    Errors with the source (or listing the mapset folder) are raised,
    errors with a target are logged and reported as skipped.
    """
    source = Path(source)
    profile = volume.extract_volume_profile(load_source(source))
    logger.info(f"Loaded volume profile with {len(profile)} points from {source.name}")
    for t, v in profile.pairs():
        logger.debug(f"\t{pretty_time(t)} {v}%")

    if targets is None:
        target_list = find_siblings(source)
    else:
        target_list = [Path(t) for t in targets if Path(t).resolve() != source.resolve()]
    report = BatchReport(source, len(profile), dry_run=dry_run)
    if not target_list:
        logger.info(report.summary())
        return report

    def _process(target: Path) -> TargetResult:
        try:
            return patch_target(target, profile, insert_points=insert_points, backup_dir=backup_dir, dry_run=dry_run)
        except TargetError as te:
            logger.warning(f"Skipping {te}")
            return TargetResult(target, "skipped", error=te)

    if jobs > 1 and len(target_list) > 1:
        # each target is a separate file and a separate Beatmap, so no locking is needed
        with ThreadPoolExecutor(max_workers=jobs) as pool:
            report.results = list(pool.map(_process, target_list))
    else:
        report.results = [_process(t) for t in target_list]
    return report
