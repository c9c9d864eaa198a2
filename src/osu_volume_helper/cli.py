from argparse import ArgumentParser, RawDescriptionHelpFormatter
import logging
from pathlib import Path
import sys

from . import mapset, __version__

DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'

def get_parser():
    parser = ArgumentParser(
        formatter_class=RawDescriptionHelpFormatter,
        prog=f"python3 -m {__package__}.{Path(__file__).stem}",
        description='\n'.join([
            "Copy the volume of the timing points from one difficulty of an osu! map to other difficulties in the set.",
            "",
            "Each timing point of a target gets the volume the source has at that time",
            "\t(the volume of the last source timing point at or before it, or of the first one if there is none).",
            "Only the volume field is changed, everything else in the targets stays byte-identical.",
            "",
            "Targets that cannot be read, parsed or written are skipped with a warning.",
        ]),
        epilog=f"Version: {__version__}",
    )
    parser.add_argument("source", type=Path, help="The .osu file to copy the volume from")
    parser.add_argument("dest", type=Path, nargs="*", help="Specific .osu files to copy the volume to. Defaults to all other difficulties in the folder of the source.")
    parser.add_argument("--insert-points", action="store_true", help="Also add green lines where the source changes volume between timing points of the target")
    parser.add_argument("-b", "--backup-dir", type=Path, help="Copy each target into this directory before overwriting it")
    parser.add_argument("-n", "--dry-run", action="store_true", help="Only report what would change, do not write anything")
    parser.add_argument("-j", "--jobs", type=int, default=mapset.DEFAULT_JOBS, help=f"Number of targets to process in parallel. Default: {mapset.DEFAULT_JOBS}")
    parser.add_argument("-l", "--log-level", type=str.upper, default=DEFAULT_LOG_LEVEL, choices=("DEBUG", "INFO", "WARNING", "ERROR"), help=f"Set log level. Default: {DEFAULT_LOG_LEVEL}")
    return parser

def abort(reason: str):
    logging.error(reason)
    sys.exit(1)

def main(options) -> mapset.BatchReport:
    if options.jobs < 1:
        abort("--jobs must be at least 1")
    if not options.source.is_file():
        abort(f"Source file {options.source} is not a file, is the path correct?")
    try:
        report = mapset.copy_volume(
            options.source,
            options.dest or None,
            insert_points=options.insert_points,
            backup_dir=options.backup_dir,
            dry_run=options.dry_run,
            jobs=options.jobs,
        )
    except (mapset.SourceUnreadableError, mapset.SourceMalformedError, mapset.MapsetError) as vce:
        abort(f"Could not copy volume from {options.source}:\n\t{vce}")
    if report.results:
        logging.info(report.summary())
    return report

def entrypoint():
    options = get_parser().parse_args()
    logging.basicConfig(level=options.log_level, format=LOG_FORMAT)
    main(options)

if __name__ == "__main__":
    entrypoint()
