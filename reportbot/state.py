# -*- coding: utf-8 -*-

# --- IMPORTS ---
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

# Local Imports
from .constants import DEFAULT_PENDING_TTL_HOURS, DEFAULT_WIZARD_TTL_HOURS
from .store import KeyValueStore, InMemoryStore
from .timeutils import week_bucket_key

# --- BASIC SETUP ---
logger = logging.getLogger(__name__)

PENDING_PREFIX = "pending:"
WIZARD_PREFIX = "wizard:"
COUNTER_PREFIX = "counter:"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WizardStep(Enum):
    CATEGORY = "category"
    EVENT_TYPE = "event_type"
    STAGE = "stage"


@dataclass
class PendingEntry:
    """A saved start stage waiting for its end stage."""
    event_number: int
    category_type: str
    created_at: datetime = field(default_factory=utcnow)
    folder_path: str | None = None

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utcnow()) - self.created_at

    def age_minutes(self, now: datetime | None = None) -> int:
        return round(self.age(now).total_seconds() / 60)


@dataclass
class WizardState:
    """Photo placement dialog of one user.

    `week_label` and `night` are captured when the photo arrives, so the
    folder shown in the prompts is the folder the photo is saved to even if
    the dialog crosses midnight or 09:00.
    """
    user_id: int
    chat_id: int
    local_path: str
    week_label: str
    night: bool
    step: WizardStep = WizardStep.CATEGORY
    category_key: str | None = None
    base_path: str | None = None
    message_id: int | None = None
    created_at: datetime = field(default_factory=utcnow)


class StateManager:
    """Pending events, wizard dialogs and fallback counters over a KeyValueStore."""

    def __init__(self, store: KeyValueStore | None = None):
        self.store = store if store is not None else InMemoryStore()

    # --- PENDING EVENTS ---
    @staticmethod
    def _pending_key(user_id: int, category_type: str) -> str:
        return f"{PENDING_PREFIX}{user_id}:{category_type}"

    def set_pending(self, user_id: int, category_type: str, event_number: int,
                    folder_path: str | None = None, now: datetime | None = None) -> PendingEntry:
        """Records a pending start; silently replaces an existing entry for the same key."""
        entry = PendingEntry(event_number, category_type, now or utcnow(), folder_path)
        previous = self.store.get(self._pending_key(user_id, category_type))
        if previous is not None and previous.event_number != event_number:
            logger.info(f"Pending {category_type} #{previous.event_number} of user {user_id} replaced by #{event_number}")
        self.store.set(self._pending_key(user_id, category_type), entry)
        return entry

    def get_pending(self, user_id: int, category_type: str) -> PendingEntry | None:
        return self.store.get(self._pending_key(user_id, category_type))

    def delete_pending(self, user_id: int, category_type: str) -> PendingEntry | None:
        return self.store.delete(self._pending_key(user_id, category_type))

    def user_pending(self, user_id: int) -> list[PendingEntry]:
        """All pending entries of a user, oldest first."""
        entries = [entry for _, entry in self.store.items(f"{PENDING_PREFIX}{user_id}:")]
        return sorted(entries, key=lambda e: e.created_at)

    def clear_user_pending(self, user_id: int) -> int:
        cleared = 0
        for key, _ in self.store.items(f"{PENDING_PREFIX}{user_id}:"):
            self.store.delete(key)
            cleared += 1
        return cleared

    def sweep_expired_pending(self, now: datetime | None = None,
                              ttl: timedelta = timedelta(hours=DEFAULT_PENDING_TTL_HOURS)) -> int:
        """Removes pending entries older than `ttl`. Returns how many were removed."""
        now = now or utcnow()
        removed = 0
        for key, entry in self.store.items(PENDING_PREFIX):
            if entry.age(now) > ttl:
                self.store.delete(key)
                logger.info(f"Deleted expired pending event: {key}")
                removed += 1
        return removed

    # --- FALLBACK COUNTERS ---
    def next_fallback_number(self, category_type: str, now: datetime | None = None) -> int:
        """Weekly in-memory counter used when the remote folder cannot be listed."""
        key = f"{COUNTER_PREFIX}{category_type}:{week_bucket_key(now)}"
        counter = (self.store.get(key) or 0) + 1
        self.store.set(key, counter)
        return counter

    # --- WIZARD STATE ---
    @staticmethod
    def _wizard_key(user_id: int) -> str:
        return f"{WIZARD_PREFIX}{user_id}"

    def start_wizard(self, state: WizardState) -> WizardState:
        """Stores a new dialog for `state.user_id`, overwriting any previous one."""
        self.store.set(self._wizard_key(state.user_id), state)
        return state

    def get_wizard(self, user_id: int) -> WizardState | None:
        return self.store.get(self._wizard_key(user_id))

    def finish_wizard(self, user_id: int) -> WizardState | None:
        return self.store.delete(self._wizard_key(user_id))

    def active_wizards(self) -> list[WizardState]:
        return [state for _, state in self.store.items(WIZARD_PREFIX)]

    def sweep_expired_wizards(self, now: datetime | None = None,
                              ttl: timedelta = timedelta(hours=DEFAULT_WIZARD_TTL_HOURS)) -> list[WizardState]:
        """Drops abandoned dialogs and returns them so their local files can be removed."""
        now = now or utcnow()
        expired = []
        for key, state in self.store.items(WIZARD_PREFIX):
            if now - state.created_at > ttl:
                self.store.delete(key)
                expired.append(state)
        if expired:
            logger.info(f"Dropped {len(expired)} abandoned wizard(s)")
        return expired
