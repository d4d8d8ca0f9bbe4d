#!/usr/bin/env python

r"""
camport.py - Import photos and videos from a camera card into date folders

SUMMARY:
--------
This script scans a source directory (recursively) for photo (.jpg, .jpeg) and
video (.mov, .mp4) files, reads their capture date from the embedded metadata,
and copies them into subfolders of a destination directory named after that
date (YYYY-MM-DD by default). Files that are already present with the same size
are left alone, so an import can be repeated as often as needed.

FEATURES:
---------
- Uses hachoir to read the capture date from EXIF / QuickTime metadata.
- Recursively processes all subfolders in the source directory.
- Configurable date folder pattern (YYYY, YY, MM, DD, hh, mm, ss tokens or a raw strftime pattern).
- Destination files with a different size are skipped unless --force is given.
- With --force, small files are overwritten and large files (> 10 MiB) are
  delta-merged with rsync, falling back to a plain copy when rsync is missing.
- Copies preserve the source modification time so rsync and friends see a faithful mirror.
- Optional parallel import with a bounded worker pool.
- A summary of new, overwritten, skipped and merged files is printed at the end.

USAGE EXAMPLES:
---------------
1. Import a memory card into ~/Pictures:
    python camport.py /media/EOS_DIGITAL/DCIM

2. Import into a specific archive, with verbose output:
    python camport.py -v /media/EOS_DIGITAL/DCIM /srv/photos

3. Nest the folders by year, then month-day:
    python camport.py -d YYYY/MM-DD /media/EOS_DIGITAL/DCIM /srv/photos

4. Re-import after an interrupted transfer, repairing files whose size differs:
    python camport.py -f /media/EOS_DIGITAL/DCIM /srv/photos

5. Only import photos, and report files that are already identical:
    python camport.py -s -vv /media/EOS_DIGITAL/DCIM /srv/photos

6. Import with four workers and keep a log file:
    python camport.py -j 4 -l /tmp/camport.log /media/EOS_DIGITAL/DCIM /srv/photos

See --help for all options.
"""

# Standard library imports
import sys
import os
import re
import datetime
import logging
import shutil
import argparse
import subprocess
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import NamedTuple

# Third-party library imports for metadata extraction and progress display
from hachoir.parser import createParser
from hachoir.metadata import extractMetadata
from hachoir.core import config
from tqdm import tqdm

# Suppress hachoir warnings to keep console output clean
config.quiet = True

# Version History:
# v1.0.0 - Initial release: date folders, size based dedup, force overwrite/merge
# v1.1.0 - Token based date patterns, skip-videos flag, rsync probe at startup
# v1.2.0 - Parallel import (-j), optional log file, per-file errors no longer abort the run
__version__ = "1.2.0"
myversion = f"v. {__version__} 2026-10-19"

PHOTO_EXTENSIONS = (".jpg", ".jpeg")
VIDEO_EXTENSIONS = (".mov", ".mp4")

# Files above this size are delta-merged instead of overwritten
MERGE_THRESHOLD = 10 * 1024 * 1024

COPY_CHUNK_SIZE = 1024 * 1024

DEFAULT_DATE_FORMAT = "YYYY-MM-DD"

# hachoir metadata keys holding the capture time, most specific first
CAPTURE_TIME_KEYS = ("date_time_original", "creation_date")

VERBOSITY_NONE = 0
VERBOSITY_VERBOSE = 1
VERBOSITY_SUPER = 2

# Outcomes of a single import
CREATED = "created"
OVERWRITTEN = "overwritten"
SKIPPED = "skipped"
MERGED = "merged"
IDENTICAL = "identical"

_DATE_TOKENS = {
    "YYYY": "%Y",
    "YY": "%y",
    "MM": "%m",
    "DD": "%d",
    "hh": "%H",
    "mm": "%M",
    "ss": "%S",
}
_DATE_TOKEN_RE = re.compile("|".join(sorted(_DATE_TOKENS, key=len, reverse=True)))


class ConfigurationError(Exception):
    """Invalid arguments or directories; raised before any transfer starts."""


class WalkError(Exception):
    """The source tree could not be traversed. Fatal to the whole run."""


class TransferError(Exception):
    """Base class for failures scoped to a single source file."""


class MetadataError(TransferError):
    """The capture timestamp is missing or unreadable."""


class CopyError(TransferError):
    """A stat, mkdir, read or write failed while transferring a file."""


class ExternalToolError(TransferError):
    """The delta transfer tool failed to run or exited non-zero."""


class CameraItem(NamedTuple):
    """One media file discovered in the source tree."""

    path: Path
    mtime: float
    size: int


class TransferStatistics:
    """
    Outcome counters for one run.

    Counters are only ever incremented. A lock guards them so that parallel
    workers can report into the same instance.
    """

    def __init__(self):
        self.created = 0
        self.overwritten = 0
        self.skipped = 0
        self.merged = 0
        # (source path, error message) for every file that failed
        self.failures = []
        self._lock = threading.Lock()

    def record(self, outcome: str):
        """Count one resolved file. Identical files are not counted."""
        if outcome == IDENTICAL:
            return
        with self._lock:
            setattr(self, outcome, getattr(self, outcome) + 1)

    def record_failure(self, path: Path, message: str):
        with self._lock:
            self.failures.append((path, message))

    def summary(self) -> str:
        return (
            f"{self.created} new files, {self.overwritten} overwritten, "
            f"{self.skipped} skipped, {self.merged} merged"
        )


def strftime_pattern(date_format: str) -> str:
    """
    Translate a token date pattern into a strftime pattern.

    Args:
        date_format (str): Pattern such as "YYYY-MM-DD" or "YYYY/MM"

    Returns:
        str: strftime pattern, e.g. "%Y-%m-%d"

    Patterns that already contain a '%' are taken to be strftime patterns and
    are returned unchanged. Tokens are replaced in a single pass, so the output
    of one replacement is never matched again.
    """
    if "%" in date_format:
        return date_format
    return _DATE_TOKEN_RE.sub(lambda m: _DATE_TOKENS[m.group(0)], date_format)


def format_date_path(capture_time, date_format: str = DEFAULT_DATE_FORMAT) -> str:
    """Render a capture time as a relative folder name."""
    return capture_time.strftime(strftime_pattern(date_format))


def read_capture_time(path: Path):
    """
    Extract the capture date from the file's embedded metadata.

    Args:
        path (Path): Photo or video file

    Returns:
        datetime.datetime: Capture time

    Raises:
        MetadataError: The file cannot be parsed or carries no capture time.
    """
    try:
        parser = createParser(str(path))
    except Exception as e:
        raise MetadataError(f"unable to open: {e}") from e

    if not parser:
        raise MetadataError("unrecognised file format")

    with parser:
        try:
            metadata = extractMetadata(parser)
        except Exception as e:
            raise MetadataError(f"metadata extraction failed: {e}") from e

    if not metadata:
        raise MetadataError("no metadata found")

    for key in CAPTURE_TIME_KEYS:
        try:
            values = metadata.getValues(key)
        except ValueError:
            # key not known to this kind of metadata
            continue
        if values:
            return values[0]

    raise MetadataError("no capture time in metadata")


def date_path(path: Path, date_format: str = DEFAULT_DATE_FORMAT) -> str:
    """Read the capture time of path and render it with date_format."""
    return format_date_path(read_capture_time(path), date_format)


def classify(filename: str, skip_videos: bool = False):
    """
    Decide what to do with a directory entry, by its name alone.

    Returns:
        str or None: "photo", "video", "ignored-video" or None for anything else
    """
    lower = filename.lower()
    if lower.endswith(PHOTO_EXTENSIONS):
        return "photo"
    if lower.endswith(VIDEO_EXTENSIONS):
        return "ignored-video" if skip_videos else "video"
    return None


def copy_file(source: Path, destination: Path, progress: bool = True):
    """
    Copy source to destination and give it the source's modification time.

    Args:
        source (Path): File to copy
        destination (Path): Target path; missing parent directories are created
        progress (bool): Show a byte progress bar (only on a terminal)

    Raises:
        CopyError: Any filesystem error. A partial destination is left in place.

    Access and modification time of the destination are both set to the
    source's modification time, like rsync -t does.
    """
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        stat = source.stat()
        with open(source, "rb") as src, open(destination, "wb") as dst, tqdm(
            total=stat.st_size,
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            desc=source.name,
            leave=False,
            disable=None if progress else True,
        ) as bar:
            for chunk in iter(lambda: src.read(COPY_CHUNK_SIZE), b""):
                dst.write(chunk)
                bar.update(len(chunk))
        os.utime(destination, ns=(stat.st_mtime_ns, stat.st_mtime_ns))
    except OSError as e:
        raise CopyError(f"cannot copy to {destination}: {e}") from e


class CopyTransfer:
    """Delta transfer stand-in that always copies the whole file."""

    name = "copy"

    def __init__(self, progress: bool = True):
        self.progress = progress

    def attempt(self, source: Path, destination: Path):
        copy_file(source, destination, self.progress)


class RsyncTransfer:
    """Delta transfer through an external rsync binary."""

    name = "rsync"

    def __init__(self, executable: Path, verbose: bool = False):
        self.executable = executable
        self.verbose = verbose

    def command(self, source: Path, destination: Path) -> list:
        return [str(self.executable), "-tP", "--inplace", str(source), str(destination)]

    def attempt(self, source: Path, destination: Path):
        """
        Run rsync synchronously.

        rsync's own output is shown when verbose and discarded otherwise.

        Raises:
            ExternalToolError: rsync could not be started or exited non-zero.
        """
        output = None if self.verbose else subprocess.DEVNULL
        try:
            result = subprocess.run(
                self.command(source, destination), stdout=output, stderr=output
            )
        except OSError as e:
            raise ExternalToolError(f"unable to run {self.executable}: {e}") from e
        if result.returncode != 0:
            raise ExternalToolError(f"rsync exited with status {result.returncode}")


def probe_delta_transfer(logger, verbose: bool = False, progress: bool = True):
    """
    Pick the delta transfer implementation for this run.

    Returns:
        RsyncTransfer if rsync is on the PATH, otherwise CopyTransfer.
    """
    executable = shutil.which("rsync")
    if executable is None:
        logger.warning("Warning: rsync not found. Falling back to simple copy")
        return CopyTransfer(progress)
    logger.debug(f"Delta transfer via {executable}")
    return RsyncTransfer(Path(executable), verbose)


class TransferTask:
    """
    One import run from a source tree into a date organised destination tree.

    The task is configured once and then executed; its statistics belong to
    this run only and are returned by execute().
    """

    def __init__(
        self,
        source_dir: Path,
        destination_dir: Path,
        date_format: str = DEFAULT_DATE_FORMAT,
        verbosity: int = VERBOSITY_NONE,
        force: bool = False,
        skip_videos: bool = False,
        jobs: int = 1,
        progress: bool = True,
        delta_transfer=None,
        logger=None,
    ):
        self.source_dir = Path(source_dir)
        self.destination_dir = Path(destination_dir)
        self.date_format = date_format
        self.verbosity = verbosity
        self.force = force
        self.skip_videos = skip_videos
        self.jobs = jobs
        # Several bars writing to one terminal garble each other
        self.progress = progress and jobs == 1
        self.delta_transfer = delta_transfer
        self.logger = logger or logging.getLogger("camport")
        self.statistics = TransferStatistics()
        self._destination_locks = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    @property
    def verbose(self) -> bool:
        return self.verbosity >= VERBOSITY_VERBOSE

    @property
    def super_verbose(self) -> bool:
        return self.verbosity >= VERBOSITY_SUPER

    def validate(self):
        """
        Check directories and options before anything is transferred.

        Raises:
            ConfigurationError: On the first problem found.
        """
        if not self.source_dir.is_dir():
            raise ConfigurationError(f"invalid source: {self.source_dir} is not a directory")
        if not self.destination_dir.is_dir():
            raise ConfigurationError(
                f"invalid destination: {self.destination_dir} is not a directory"
            )
        if self.source_dir.resolve() == self.destination_dir.resolve():
            raise ConfigurationError("source and destination directories must not be the same")
        if self.jobs < 1:
            raise ConfigurationError(f"invalid number of jobs: {self.jobs}")

        try:
            sample = format_date_path(datetime.datetime(2006, 1, 2, 15, 4, 5), self.date_format)
        except ValueError as e:
            raise ConfigurationError(f"invalid date format {self.date_format!r}: {e}") from e
        sample_path = Path(sample)
        if not sample.strip() or sample_path.is_absolute() or ".." in sample_path.parts:
            raise ConfigurationError(
                f"invalid date format {self.date_format!r}: must give a relative folder name"
            )

    def execute(self) -> TransferStatistics:
        """
        Validate, walk the source tree and import every qualifying file.

        The summary line is logged however the walk ends, once it has started.

        Raises:
            ConfigurationError: Before the walk, when validation fails.
            WalkError: When the source tree cannot be traversed.
        """
        self.validate()
        if self.force and self.delta_transfer is None:
            self.delta_transfer = probe_delta_transfer(self.logger, self.verbose, self.progress)

        try:
            if self.jobs == 1:
                for item in self.camera_items():
                    self.import_safely(item)
            else:
                self._execute_parallel()
        finally:
            self.logger.info("")
            self.logger.info(self.statistics.summary())
            if self.statistics.failures:
                self.logger.warning(f"{len(self.statistics.failures)} files failed")

        return self.statistics

    def _execute_parallel(self):
        futures = []
        with ThreadPoolExecutor(max_workers=self.jobs) as executor:
            for item in self.camera_items():
                futures.append(executor.submit(self.import_safely, item))
        for future in futures:
            future.result()

    def camera_items(self):
        """
        Yield a CameraItem for every file that should be imported.

        Raises:
            WalkError: A directory cannot be listed or a media file cannot be stat'ed.
        """

        def on_error(error):
            raise WalkError(f"cannot walk {error.filename}: {error.strerror}") from error

        for folder_name, dirnames, filenames in os.walk(self.source_dir, onerror=on_error):
            dirnames.sort()
            folder = Path(folder_name)
            for filename in sorted(filenames):
                kind = classify(filename, self.skip_videos)
                if kind is None:
                    continue
                path = folder / filename
                if kind == "ignored-video":
                    self.logger.info(f"Ignoring video file {path}")
                    continue
                try:
                    stat = path.stat()
                except OSError as e:
                    raise WalkError(f"cannot stat {path}: {e}") from e
                yield CameraItem(path, stat.st_mtime, stat.st_size)

    def destination_for(self, item: CameraItem) -> Path:
        """
        Destination path of item: destination_dir / date folder / file name.

        Raises:
            MetadataError: The capture time cannot be read.
        """
        return self.destination_dir / date_path(item.path, self.date_format) / item.path.name

    def _lock_for(self, destination: Path):
        with self._locks_guard:
            return self._destination_locks[destination]

    def import_safely(self, item: CameraItem):
        """Import item, logging and recording a per-file failure instead of raising."""
        try:
            return self.import_item(item)
        except TransferError as e:
            self.logger.error(f"{item.path}: {e}")
            self.statistics.record_failure(item.path, str(e))
            return None

    def import_item(self, item: CameraItem) -> str:
        """
        Bring one source file into the destination tree.

        Args:
            item (CameraItem): The source file

        Returns:
            str: CREATED, OVERWRITTEN, MERGED, SKIPPED or IDENTICAL

        Raises:
            TransferError: The file could not be imported. Nothing is counted.

        Action matrix for an existing destination whose size differs:
        without force the file is skipped; with force files above
        MERGE_THRESHOLD are merged and smaller ones overwritten.
        """
        try:
            destination = self.destination_for(item)
        except MetadataError as e:
            raise MetadataError(f"cannot read capture date: {e}") from e

        with self._lock_for(destination):
            outcome = self._resolve(item, destination)
        self.statistics.record(outcome)
        return outcome

    def _resolve(self, item: CameraItem, destination: Path) -> str:
        try:
            existing = destination.stat()
        except FileNotFoundError:
            if self.verbose:
                self.logger.info(f"Copying new file: {item.path} ==> {destination}")
            copy_file(item.path, destination, self.progress)
            return CREATED
        except OSError as e:
            raise CopyError(f"cannot stat {destination}: {e}") from e

        if existing.st_size == item.size:
            if self.super_verbose:
                self.logger.info(f"Already identical {item.path} == {destination}")
            return IDENTICAL

        if not self.force:
            if self.verbose:
                self.logger.warning(
                    f"Skipping {item.path} ==> {destination} "
                    f"({item.size} bytes vs {existing.st_size} bytes)"
                )
            return SKIPPED

        if item.size > MERGE_THRESHOLD:
            if self.verbose:
                self.logger.info(f"Merging: {item.path} ==> {destination}")
            if self.delta_transfer is None:
                self.delta_transfer = probe_delta_transfer(self.logger, self.verbose, self.progress)
            self.delta_transfer.attempt(item.path, destination)
            return MERGED

        if self.verbose:
            self.logger.info(f"Overwriting: {item.path} ==> {destination}")
        copy_file(item.path, destination, self.progress)
        return OVERWRITTEN


class _BelowLevelFilter(logging.Filter):
    """Let through records below a level; the rest go to stderr."""

    def __init__(self, level):
        super().__init__()
        self.level = level

    def filter(self, record):
        return record.levelno < self.level


def set_up_logging(verbosity: int = VERBOSITY_NONE, logfile: Path = None):
    """
    Set up console (and optionally file) logging for the camport logger.

    Args:
        verbosity (int): VERBOSITY_SUPER enables DEBUG on the console
        logfile (Path, optional): Also log everything to this file

    Returns:
        logging.Logger: Configured logger instance

    Informational lines go to stdout and warnings/errors to stderr, both as
    bare messages. Handlers from an earlier call are removed first.
    """
    logger = logging.getLogger("camport")
    level = logging.DEBUG if verbosity >= VERBOSITY_SUPER else logging.INFO

    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    formatter = logging.Formatter("%(message)s")

    out = logging.StreamHandler(sys.stdout)
    out.setLevel(level)
    out.addFilter(_BelowLevelFilter(logging.WARNING))
    out.setFormatter(formatter)
    logger.addHandler(out)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.WARNING)
    err.setFormatter(formatter)
    logger.addHandler(err)

    if logfile:
        try:
            logfile.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(logfile, encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"cannot open log file {logfile}: {e}") from e
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        logger.addHandler(fh)

    return logger


def default_destination() -> Path:
    """The current user's Pictures folder."""
    return Path.home() / "Pictures"


def print_examples():
    """Print the USAGE EXAMPLES section of the module docstring."""
    doc_lines = __doc__.split("\n")
    examples_start = doc_lines.index("USAGE EXAMPLES:")
    examples_end = next(
        (
            i
            for i, line in enumerate(doc_lines[examples_start:], examples_start)
            if line.startswith("See --help")
        ),
        len(doc_lines),
    )
    print("\n".join(doc_lines[examples_start : examples_end + 1]))


class VersionedArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that shows the version banner when run without arguments."""

    def error(self, message):
        if "required" in message and len(sys.argv) == 1:
            sys.stderr.write(f"camport {myversion}\n\n")
        self.print_usage(sys.stderr)
        sys.stderr.write(f"{self.prog}: error: {message}\n")
        sys.stderr.write(f"Try '{self.prog} --help' for more information.\n")
        sys.exit(2)


def build_parser():
    parser = VersionedArgumentParser(
        prog="camport",
        description="Import photos and videos into folders named after their capture date. "
        "Files already present with the same size are left alone; size mismatches are "
        "skipped unless --force is given.",
        epilog="""
NOTES:
• Photos: .jpg/.jpeg, videos: .mov/.mp4 (case-insensitive)
• Date tokens: YYYY YY MM DD hh mm ss; a pattern containing '%' is used as strftime
• With --force, files above 10 MiB are merged with rsync when it is installed""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "source_dir",
        help="Directory to import from, scanned recursively. Example: '/media/EOS_DIGITAL/DCIM'",
        metavar="SOURCE_DIR",
    )
    parser.add_argument(
        "destination_dir",
        nargs="?",
        default=None,
        help="Directory receiving the date folders. Must exist [default: ~/Pictures]",
        metavar="DEST_DIR",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Print verbose output; -vv also reports identical files",
    )
    parser.add_argument(
        "-d",
        "--date-format",
        default=DEFAULT_DATE_FORMAT,
        help=f"Date format for directory names [default: {DEFAULT_DATE_FORMAT}]",
        metavar="PATTERN",
        dest="date_format",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Overwrite (or merge, above 10 MiB) existing files when sizes do not match",
    )
    parser.add_argument(
        "-s",
        "--skip-videos",
        action="store_true",
        help="Skip video files",
        dest="skip_videos",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="Number of files imported in parallel [default: 1]",
    )
    parser.add_argument(
        "-l",
        "--logfile",
        type=Path,
        default=None,
        help="Also write a detailed log to this file",
    )
    parser.add_argument(
        "--no-progress",
        action="store_false",
        dest="progress",
        help="Do not show copy progress bars",
    )
    parser.add_argument(
        "--examples",
        action="store_true",
        help="Display usage examples and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show program version and exit",
    )
    return parser


def parse_arguments(args=None, parser=None):
    """
    Parse command line arguments.

    The --examples flag is handled before regular parsing so that it works
    without the required positional arguments.
    """
    if args is None:
        args = sys.argv[1:]

    if "--examples" in args:
        print_examples()
        sys.exit(0)

    if parser is None:
        parser = build_parser()
    return parser.parse_args(args)


def main(args=None):
    """
    Entry point: parse arguments, set up logging and run the import.

    Returns:
        int: Process exit status
    """
    parser = build_parser()
    parsed_args = parse_arguments(args, parser)
    verbosity = min(parsed_args.verbose, VERBOSITY_SUPER)

    try:
        logger = set_up_logging(verbosity, parsed_args.logfile)
    except ConfigurationError as e:
        parser.print_usage(sys.stderr)
        sys.stderr.write(f"camport: error: {e}\n")
        return 1

    if parsed_args.destination_dir is None:
        destination_dir = default_destination()
    else:
        destination_dir = Path(parsed_args.destination_dir).expanduser()

    task = TransferTask(
        Path(parsed_args.source_dir).expanduser(),
        destination_dir,
        date_format=parsed_args.date_format,
        verbosity=verbosity,
        force=parsed_args.force,
        skip_videos=parsed_args.skip_videos,
        jobs=parsed_args.jobs,
        progress=parsed_args.progress,
        logger=logger,
    )

    start_time = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    logger.debug("=" * 80)
    logger.debug(f"camport {myversion}")
    logger.debug(f"Session Started: {start_time}")
    logger.debug("=" * 80)
    logger.debug("Command-line options: %s", vars(parsed_args))

    try:
        task.execute()
    except ConfigurationError as e:
        parser.print_usage(sys.stderr)
        logger.error(f"camport: error: {e}")
        return 1
    except WalkError as e:
        logger.error(str(e))
        return 1
    finally:
        end_time = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        logger.debug(f"Session Ended: {end_time}")
        logging.shutdown()

    return 0


if __name__ == "__main__":
    sys.exit(main())
