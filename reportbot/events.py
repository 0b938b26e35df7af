# -*- coding: utf-8 -*-
"""Numbering of two-stage reports (start/end screenshots).

A two-stage report is stored as ``{number}-1.{ext}`` (start) and
``{number}-2.{ext}`` (end) inside its category folder. The remote listing is
the source of truth; the pending table in :class:`StateManager` only
remembers which number a user started last, and the weekly counters are used
only when the folder cannot be listed at all.
"""

# --- IMPORTS ---
import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

# Local Imports
from .constants import STAGE_START, STAGE_END, IMAGE_EXTENSIONS, DEFAULT_PENDING_TTL_HOURS
from .disk import RemoteDisk
from .errors import DiskError
from .state import StateManager

# --- BASIC SETUP ---
logger = logging.getLogger(__name__)

STAGE_FILE_PATTERN = re.compile(
    rf"^([0-9]+)-([{STAGE_START}{STAGE_END}])\.({'|'.join(IMAGE_EXTENSIONS)})$", re.IGNORECASE
)


def parse_stage_file(name: str) -> tuple[int, int] | None:
    """Returns (number, stage) for names like '12-1.jpg', None for anything else."""
    match = STAGE_FILE_PATTERN.match(name)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


@dataclass
class FolderScan:
    starts: set[int] = field(default_factory=set)
    ends: set[int] = field(default_factory=set)

    @property
    def numbers(self) -> list[int]:
        return sorted(self.starts | self.ends)

    @property
    def max_number(self) -> int:
        return max(self.starts | self.ends, default=0)

    @property
    def unfinished(self) -> list[int]:
        return sorted(self.starts - self.ends)


def scan(names) -> FolderScan:
    result = FolderScan()
    for name in names:
        parsed = parse_stage_file(name)
        if parsed is None:
            continue
        number, stage = parsed
        (result.starts if stage == STAGE_START else result.ends).add(number)
    return result


class EndOutcome(Enum):
    CONTINUATION = "continuation"                   # closes the user's pending start
    SUPERSEDED_COMPLETED = "superseded_completed"   # pending start was already closed, new number
    ORPHANED = "orphaned"                           # closes an unfinished start found on the disk
    FRESH = "fresh"                                 # no start anywhere, new number


@dataclass(frozen=True)
class EndAssignment:
    number: int
    outcome: EndOutcome

    @property
    def is_continuation(self) -> bool:
        return self.outcome in (EndOutcome.CONTINUATION, EndOutcome.ORPHANED)


@dataclass(frozen=True)
class Summary:
    total: int
    completed: int
    incomplete: int
    # End files without a start; counted in total only.
    unmatched_ends: int = 0


class EventManager:
    def __init__(self, disk: RemoteDisk, state: StateManager):
        self.disk = disk
        self.state = state
        self._locks: dict[tuple[int, str], asyncio.Lock] = {}

    def stage_lock(self, user_id: int, category_type: str) -> asyncio.Lock:
        """Lock serializing assign + upload for one user and category.

        The assign methods do not take it themselves; hold it around the whole
        read-decide-upload sequence so a double tap cannot reuse a number.
        """
        key = (user_id, category_type)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def _scan(self, user_id: int, folder_path: str) -> FolderScan:
        return scan(await self.disk.list_files(user_id, folder_path))

    async def _allocate(self, user_id: int, category_type: str, folder_path: str) -> int:
        """Next free number in the folder, or the weekly counter if the folder cannot be listed."""
        try:
            listing = await self._scan(user_id, folder_path)
        except DiskError as e:
            number = self.state.next_fallback_number(category_type)
            logger.warning(f"Could not list {folder_path} ({e}); using fallback counter #{number} for {category_type}")
            return number

        candidate = listing.max_number + 1
        # Another writer may have saved a start since the first listing.
        try:
            latest = await self._scan(user_id, folder_path)
        except DiskError as e:
            logger.warning(f"Could not re-check {folder_path} ({e}); keeping #{candidate}")
            return candidate
        while candidate in latest.starts:
            logger.info(f"Start #{candidate} already exists in {folder_path}, trying #{candidate + 1}")
            candidate += 1
        return candidate

    async def assign_number_for_start(self, user_id: int, category_type: str, folder_path: str) -> int:
        """Number for a new start stage; remembered as the user's pending event."""
        number = await self._allocate(user_id, category_type, folder_path)
        self.state.set_pending(user_id, category_type, number, folder_path)
        logger.info(f"User {user_id} started {category_type} #{number} in {folder_path}")
        return number

    async def assign_number_for_end(self, user_id: int, category_type: str, folder_path: str) -> EndAssignment:
        """Number for an end stage. Never fails for a missing start; falls forward to a new number."""
        pending = self.state.delete_pending(user_id, category_type)
        if pending is not None:
            if pending.folder_path and pending.folder_path != folder_path:
                logger.info(f"Pending {category_type} #{pending.event_number} was started in {pending.folder_path}, closing it in {folder_path}")
            try:
                listing = await self._scan(user_id, folder_path)
            except DiskError as e:
                logger.warning(f"Could not verify #{pending.event_number} in {folder_path} ({e}); trusting pending entry")
                return EndAssignment(pending.event_number, EndOutcome.CONTINUATION)
            if pending.event_number in listing.ends:
                number = await self._allocate(user_id, category_type, folder_path)
                logger.info(f"{category_type} #{pending.event_number} already has an end; user {user_id} gets #{number}")
                return EndAssignment(number, EndOutcome.SUPERSEDED_COMPLETED)
            return EndAssignment(pending.event_number, EndOutcome.CONTINUATION)

        try:
            unfinished = (await self._scan(user_id, folder_path)).unfinished
        except DiskError as e:
            logger.warning(f"Could not look for unfinished events in {folder_path}: {e}")
            unfinished = []
        if unfinished:
            return EndAssignment(unfinished[0], EndOutcome.ORPHANED)

        number = await self._allocate(user_id, category_type, folder_path)
        logger.info(f"No start found for {category_type} end of user {user_id}; new #{number}")
        return EndAssignment(number, EndOutcome.FRESH)

    async def list_unfinished(self, user_id: int, folder_path: str) -> list[int]:
        """Numbers with a start but no end, ascending. Listing errors propagate."""
        return (await self._scan(user_id, folder_path)).unfinished

    async def summarize(self, user_id: int, folder_path: str) -> Summary:
        listing = await self._scan(user_id, folder_path)
        return Summary(
            total=len(listing.numbers),
            completed=len(listing.starts & listing.ends),
            incomplete=len(listing.starts - listing.ends),
            unmatched_ends=len(listing.ends - listing.starts),
        )

    def sweep_expired_pending(self, now: datetime | None = None,
                              ttl: timedelta = timedelta(hours=DEFAULT_PENDING_TTL_HOURS)) -> int:
        return self.state.sweep_expired_pending(now, ttl)
