# -*- coding: utf-8 -*-
"""Report categories and the remote folder layout derived from them.

Remote layout: ``{base_path}/{week_label}/{category folder}``. The folder
names below are what already exists on users' disks, so they must not change.
"""

# --- IMPORTS ---
import random
import string
import time
from dataclasses import dataclass

# Local Imports
from .constants import DEFAULT_IMAGE_EXTENSION


@dataclass(frozen=True)
class Category:
    key: str
    title: str
    emoji: str
    folder: str
    night_folder: str | None = None
    two_stage: bool = False
    file_prefix: str | None = None

    def folder_name(self, night: bool) -> str:
        if night and self.night_folder:
            return self.night_folder
        return self.folder


@dataclass(frozen=True, eq=False)
class FolderKey:
    """Remote folder of one category in one week; equal when the paths are equal."""
    base_path: str
    week_label: str
    folder_name: str

    @property
    def week_path(self) -> str:
        return f"{self.base_path.rstrip('/')}/{self.week_label}"

    @property
    def path(self) -> str:
        return f"{self.week_path}/{self.folder_name}"

    def file_path(self, file_name: str) -> str:
        return f"{self.path}/{file_name}"

    def __eq__(self, other):
        if not isinstance(other, FolderKey):
            return NotImplemented
        return self.path == other.path

    def __hash__(self):
        return hash(self.path)

    def __str__(self):
        return self.path


# --- CATEGORY REGISTRY ---
PUNISHMENTS = Category(
    key="punishments", title="In-game punishments", emoji="🎮",
    folder="Наказания в игре", night_folder="Ночные наказания в игре",
    file_prefix="punishment",
)
MP = Category(key="mp", title="Events hosted (MP)", emoji="📋", folder="МП", two_stage=True)
MP_HELP = Category(key="mp_help", title="Help with MP", emoji="🤝", folder="Помощь в МП", file_prefix="mp_help")
RAIDS = Category(
    key="raids", title="Raids, captures", emoji="🏰",
    folder="Налёты, захваты", night_folder="Ночные налеты, захваты",
    two_stage=True,
)
SUPPLIES = Category(
    key="supplies", title="Supplies, robberies (KrAZ, Air)", emoji="🚚",
    folder="Поставки, ограбления (Краз, Air)", night_folder="Ночные поставки, ограбления (Краз, Air)",
    two_stage=True,
)

CATEGORIES = {c.key: c for c in (PUNISHMENTS, MP, MP_HELP, RAIDS, SUPPLIES)}

# The "Events" entry of the first wizard step opens a second menu with these types.
EVENTS_MENU_KEY = "events"
EVENT_TYPES = (RAIDS, SUPPLIES)
TOP_LEVEL_MENU = (PUNISHMENTS, MP, MP_HELP)
TWO_STAGE_CATEGORIES = tuple(c for c in CATEGORIES.values() if c.two_stage)


def get_category(key: str) -> Category | None:
    return CATEGORIES.get(key)


def normalize_base_path(path: str) -> str:
    """Ensures a leading slash and no trailing slash, e.g. 'Reports/' -> '/Reports'."""
    path = path.strip()
    if not path.startswith("/"):
        path = "/" + path
    return path.rstrip("/") or "/"


def folder_path(base_path: str, week_label: str, category: Category, night: bool) -> FolderKey:
    return FolderKey(base_path=base_path, week_label=week_label, folder_name=category.folder_name(night))


def all_folder_paths(base_path: str, week_label: str) -> list[FolderKey]:
    """Every day and night folder of the week, without duplicates, in registry order."""
    seen = []
    for night in (False, True):
        for category in CATEGORIES.values():
            key = folder_path(base_path, week_label, category, night)
            if key not in seen:
                seen.append(key)
    return seen


def stage_file_name(number: int, stage: int, extension: str = DEFAULT_IMAGE_EXTENSION) -> str:
    """'{number}-{stage}{ext}', number without leading zeros."""
    if not extension.startswith("."):
        extension = "." + extension
    return f"{int(number)}-{stage}{extension}"


def single_file_name(category: Category, extension: str = DEFAULT_IMAGE_EXTENSION) -> str:
    """Unique name for one-screenshot categories: '{prefix}_{epoch_ms}_{random}{ext}'."""
    if not extension.startswith("."):
        extension = "." + extension
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{category.file_prefix or category.key}_{int(time.time() * 1000)}_{suffix}{extension}"
