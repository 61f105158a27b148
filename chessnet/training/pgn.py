"""Streaming PGN archive reading and game filtering.

Archives can be gigabytes, so nothing here holds more than one game in memory:
``ArchiveReader`` streams decompressed lines, ``iter_raw_games`` groups them
into header/movetext blocks, and ``GameFilter`` turns a block into a
``GameRecord`` or rejects it with a named reason.
"""

import bz2
import gzip
import io
import os
import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import zstandard


logger = logging.getLogger(__name__)

HEADER_PATTERN = re.compile(r'^\[\s*(\w+)\s+"(.*)"\s*\]\s*$')
COMMENT_PATTERN = re.compile(r"\{[^}]*\}|;[^\n]*")
NAG_PATTERN = re.compile(r"\$\d+")
MOVE_NUMBER_PATTERN = re.compile(r"^\d+\.+")
RESULT_TOKENS = {"1-0", "0-1", "1/2-1/2", "*"}

# Filter reasons
MISSING_RATING = "missing_rating"
LOW_RATING = "low_rating"
NO_MOVES = "no_moves"


class GameSkipped(Exception):
    """A game was rejected; ``reason`` names the skip counter to bump."""

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class ArchiveReader:
    """Line iterator over a (possibly compressed) PGN archive.

    Supports plain text, ``.gz``, ``.bz2`` and ``.zst``. ``bytes_read`` counts
    bytes consumed from the file on disk, so it can be compared with ``size``
    even for compressed archives.
    """

    def __init__(self, path: Union[str, os.PathLike], encoding: str = "utf-8"):
        self.path = Path(path)
        self.encoding = encoding
        self.size = self.path.stat().st_size
        self._raw = None
        self._text = None

    def open(self) -> "ArchiveReader":
        raw = open(self.path, "rb")
        suffix = self.path.suffix.lower()
        try:
            if suffix == ".gz":
                stream = gzip.GzipFile(fileobj=raw, mode="rb")
            elif suffix == ".bz2":
                stream = bz2.BZ2File(raw, mode="rb")
            elif suffix == ".zst":
                stream = zstandard.ZstdDecompressor().stream_reader(raw, closefd=False)
                stream = io.BufferedReader(stream, buffer_size=1 << 16)
            else:
                stream = raw
        except BaseException:
            raw.close()
            raise
        self._raw = raw
        self._text = io.TextIOWrapper(stream, encoding=self.encoding, errors="replace", newline=None)
        return self

    def close(self) -> None:
        if self._text is not None:
            self._text.close()
            self._text = None
        if self._raw is not None:
            self._raw.close()
            self._raw = None

    def __enter__(self) -> "ArchiveReader":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def bytes_read(self) -> int:
        raw = self._raw
        if raw is None or raw.closed:
            return 0
        try:
            return raw.tell()
        except (OSError, ValueError):
            return 0

    def __iter__(self) -> Iterator[str]:
        if self._text is None:
            raise RuntimeError("ArchiveReader must be opened before iterating")
        return iter(self._text)


@dataclass
class RawGame:
    """Unparsed game block: header tags and the joined movetext."""
    headers: Dict[str, str]
    movetext: str


def parse_header_line(line: str) -> Optional[Tuple[str, str]]:
    """'[WhiteElo "1500"]' -> ('WhiteElo', '1500'); None if not a header tag."""
    match = HEADER_PATTERN.match(line.strip())
    if match is None:
        return None
    return match.group(1), match.group(2)


def iter_raw_games(lines: Iterable[str]) -> Iterator[RawGame]:
    """Group archive lines into games.

    Header tags accumulate until the movetext starts; a blank line after
    movetext closes the game, and so does a header tag arriving once
    movetext has started. Blocks of moves without any headers (e.g. the
    tail of a split archive) are emitted with empty headers so the filter
    rejects them on their own instead of merging them into the next game.
    The final game is emitted even without a trailing blank line.
    """
    headers: Dict[str, str] = {}
    movetext: List[str] = []

    for line in lines:
        line = line.strip()

        if not line:
            if movetext:
                yield RawGame(headers, " ".join(movetext))
                headers = {}
                movetext = []
            continue

        if line.startswith("["):
            if movetext:
                yield RawGame(headers, " ".join(movetext))
                headers = {}
                movetext = []
            tag = parse_header_line(line)
            if tag is not None:
                headers[tag[0]] = tag[1]
        else:
            movetext.append(line)

    if movetext:
        yield RawGame(headers, " ".join(movetext))


def _strip_variations(text: str) -> str:
    out = []
    depth = 0
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif depth == 0:
            out.append(ch)
    return "".join(out)


def extract_moves(movetext: str) -> List[str]:
    """Pull SAN move tokens out of PGN movetext.

    Comments, variations, NAGs, move numbers and the result token are removed.
    """
    cleaned = COMMENT_PATTERN.sub(" ", movetext)
    cleaned = _strip_variations(cleaned)
    cleaned = NAG_PATTERN.sub(" ", cleaned)

    moves = []
    for token in cleaned.split():
        token = MOVE_NUMBER_PATTERN.sub("", token)
        if not token or token in RESULT_TOKENS:
            continue
        moves.append(token)
    return moves


def time_control_class(time_control: Optional[str]) -> str:
    """Classify a lichess TimeControl tag ("300+3") by estimated game length.

    Estimated duration is base + 40 * increment seconds.
    """
    if not time_control:
        return "unknown"
    time_control = time_control.strip()
    if time_control == "-":
        return "correspondence"

    base, _, increment = time_control.partition("+")
    try:
        estimate = int(base) + 40 * (int(increment) if increment else 0)
    except ValueError:
        return "unknown"

    if estimate < 30:
        return "ultrabullet"
    if estimate < 180:
        return "bullet"
    if estimate < 480:
        return "blitz"
    if estimate < 1500:
        return "rapid"
    return "classical"


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.replace("+", ""))
    except ValueError:
        return None


@dataclass
class GameRecord:
    """A parsed game that passed filtering."""
    moves: List[str]
    result: str = "*"
    white_elo: int = 0
    black_elo: int = 0
    white_rating_diff: int = 0
    black_rating_diff: int = 0
    time_control: str = "unknown"
    site: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def winner(self) -> Optional[bool]:
        """True for a white win, False for a black win, None otherwise."""
        if self.result == "1-0":
            return True
        if self.result == "0-1":
            return False
        return None


class GameFilter:
    """Turns raw game blocks into GameRecords, rejecting disqualified games."""

    def __init__(
        self,
        excluded_time_controls: Sequence[str] = ("ultrabullet", "bullet"),
        require_ratings: bool = True,
        min_elo: int = 0,
    ):
        """Initialize filter.

        Args:
            excluded_time_controls: Time-control classes to skip
            require_ratings: Skip games without both WhiteElo and BlackElo
            min_elo: Skip games where either player is rated below this
        """
        self.excluded_time_controls = frozenset(excluded_time_controls)
        self.require_ratings = require_ratings
        self.min_elo = min_elo

    def parse_game(self, raw: RawGame) -> GameRecord:
        """Parse and filter one game.

        Raises:
            GameSkipped: If the game is disqualified
        """
        headers = raw.headers
        tc_class = time_control_class(headers.get("TimeControl"))
        if tc_class in self.excluded_time_controls:
            raise GameSkipped(tc_class)

        white_elo = _parse_int(headers.get("WhiteElo"))
        black_elo = _parse_int(headers.get("BlackElo"))
        if self.require_ratings and not (white_elo and black_elo):
            raise GameSkipped(MISSING_RATING)
        if self.min_elo and min(white_elo or 0, black_elo or 0) < self.min_elo:
            raise GameSkipped(LOW_RATING)

        moves = extract_moves(raw.movetext)
        if not moves:
            raise GameSkipped(NO_MOVES)

        return GameRecord(
            moves=moves,
            result=headers.get("Result", "*"),
            white_elo=white_elo or 0,
            black_elo=black_elo or 0,
            white_rating_diff=_parse_int(headers.get("WhiteRatingDiff")) or 0,
            black_rating_diff=_parse_int(headers.get("BlackRatingDiff")) or 0,
            time_control=tc_class,
            site=headers.get("Site"),
            headers=dict(headers),
        )
