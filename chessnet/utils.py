"""Utility functions for chessnet model files and archives."""

import re
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple, Union


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
MODEL_INFO_FILE = "models.info"
ARCHIVE_GLOB = "*.pgn*"


def epoch_model_filename(epoch: int, samples: int, when: Optional[datetime] = None) -> str:
    """Name for a per-epoch model file.

    Example: epoch_model_filename(2, 5000) -> 'epoch2_chessnet-5000-20240101-120000.model'
    """
    when = when or datetime.now()
    return f"epoch{epoch}_chessnet-{samples}-{when.strftime(TIMESTAMP_FORMAT)}.model"


def parse_model_filename(path: Union[str, Path]) -> Optional[Tuple[int, int, datetime]]:
    """Parse epoch, sample count and timestamp from a model filename.

    Expects filename format: epoch<E>_chessnet-<samples>-<YYYYmmdd-HHMMSS>[-N].model

    Returns:
        Tuple of (epoch, samples, timestamp) if found, None otherwise
    """
    filename = Path(path).name

    pattern = r'epoch(\d+)_chessnet-(\d+)-(\d{8}-\d{6})(?:-\d+)?\.model$'
    match = re.match(pattern, filename)

    if match:
        epoch = int(match.group(1))
        samples = int(match.group(2))
        try:
            when = datetime.strptime(match.group(3), TIMESTAMP_FORMAT)
        except ValueError:
            return None
        return (epoch, samples, when)

    return None


def unique_path(path: Union[str, Path]) -> Path:
    """Return ``path``, or the first free ``<stem>-N<suffix>`` next to it."""
    path = Path(path)
    if not path.exists():
        return path

    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem}-{counter}{path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def find_largest_archive(directory: Union[str, Path, None] = None) -> Optional[Path]:
    """Pick the largest PGN archive.

    Args:
        directory: Directory to search; by default ./assets, then .

    Returns:
        Path of the largest ``*.pgn*`` file, or None if there is none
    """
    if directory is not None:
        search = [Path(directory)]
    else:
        search = [Path("assets"), Path(".")]

    for folder in search:
        if not folder.is_dir():
            continue
        archives = [p for p in folder.glob(ARCHIVE_GLOB) if p.is_file()]
        if archives:
            return max(archives, key=lambda p: p.stat().st_size)

    return None


def prepend_line(path: Union[str, Path], line: str) -> bool:
    """Insert a line at the top of a text file, creating it if needed.

    Used for model version notes. Failures are logged, not raised.

    Returns:
        True if the file was written
    """
    path = Path(path)
    try:
        existing = path.read_text(encoding="utf-8") if path.exists() else ""
        path.write_text(line.rstrip("\n") + "\n" + existing, encoding="utf-8")
        return True
    except OSError as e:
        logger.warning(f"Could not update {path}: {e}")
        return False
