# -*- coding: utf-8 -*-

# --- IMPORTS ---
import json
import logging
import os
import random
import string
import time
from datetime import datetime, timedelta

# Pillow for image handling
import PIL.Image

# Local Imports
from .constants import (
    DEFAULT_BASE_PATH, PHOTOS_DIR_NAME, SETTINGS_FILE_NAME, DEFAULT_FILE_RETENTION_MINUTES
)

# --- BASIC SETUP ---
logger = logging.getLogger(__name__)

PIL_FORMAT_EXTENSIONS = {"JPEG": ".jpg", "PNG": ".png", "GIF": ".gif"}
LOCAL_PHOTO_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif")


def generate_file_name(prefix: str = "photo", extension: str = ".jpg") -> str:
    """Unique local file name, e.g. photo_1735550000000_k3j9x2.jpg."""
    if not extension.startswith("."):
        extension = "." + extension
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}{extension}"


def detect_image_extension(path: str) -> str | None:
    """Extension matching the real image format (.jpg/.png/.gif), None if not a supported image."""
    try:
        with PIL.Image.open(path) as img:
            return PIL_FORMAT_EXTENSIONS.get(img.format)
    except OSError as e:
        logger.warning(f"Could not identify image {path}: {e}")
        return None


class FileManager:
    """Local photo cache and the JSON file with per-user settings."""

    def __init__(self, data_dir: str, default_base_path: str = DEFAULT_BASE_PATH):
        self.photos_dir = os.path.join(data_dir, PHOTOS_DIR_NAME)
        self.settings_file = os.path.join(data_dir, SETTINGS_FILE_NAME)
        self.default_base_path = default_base_path
        self.user_settings: dict[str, dict] = {}
        os.makedirs(self.photos_dir, exist_ok=True)
        self.load_settings()

    # --- USER SETTINGS ---
    def load_settings(self) -> None:
        if not os.path.exists(self.settings_file):
            self.save_settings()
            return
        try:
            with open(self.settings_file, "r", encoding="utf-8") as f:
                self.user_settings = json.load(f)
            logger.info(f"Loaded settings for {len(self.user_settings)} user(s) from {self.settings_file}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading settings from {self.settings_file}: {e}")
            self.user_settings = {}

    def save_settings(self) -> None:
        try:
            with open(self.settings_file, "w", encoding="utf-8") as f:
                json.dump(self.user_settings, f, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.error(f"Error saving settings to {self.settings_file}: {e}")

    def get_user_settings(self, user_id: int) -> dict:
        key = str(user_id)
        if key not in self.user_settings:
            self.user_settings[key] = {
                "yandex_token": None,
                "yandex_path": self.default_base_path,
                "last_activity": datetime.now().isoformat(),
            }
            self.save_settings()
        return self.user_settings[key]

    def update_user_settings(self, user_id: int, **updates) -> dict:
        settings = self.get_user_settings(user_id)
        settings.update(updates)
        settings["last_activity"] = datetime.now().isoformat()
        self.save_settings()
        return settings

    def get_token(self, user_id: int) -> str | None:
        return self.get_user_settings(user_id).get("yandex_token")

    def base_path_for(self, user_id: int) -> str:
        return self.get_user_settings(user_id).get("yandex_path") or self.default_base_path

    # --- LOCAL PHOTOS ---
    def local_path(self, file_name: str) -> str:
        return os.path.join(self.photos_dir, file_name)

    def list_local_photos(self) -> list[str]:
        try:
            return sorted(
                f for f in os.listdir(self.photos_dir)
                if not f.startswith(".") and f.lower().endswith(LOCAL_PHOTO_EXTENSIONS)
            )
        except OSError as e:
            logger.error(f"Error listing local photos: {e}")
            return []

    def normalize_image_file(self, path: str) -> str | None:
        """Renames a downloaded image so its extension matches its real format.

        Returns the (possibly new) path, or None after deleting a file that is
        not a JPEG, PNG or GIF image.
        """
        extension = detect_image_extension(path)
        if extension is None:
            self.delete_local_file(path)
            return None
        root, current = os.path.splitext(path)
        if current.lower() in (extension, ".jpeg" if extension == ".jpg" else extension):
            return path
        new_path = root + extension
        os.replace(path, new_path)
        return new_path

    def delete_local_file(self, path: str | None) -> bool:
        if not path or not os.path.exists(path):
            return True
        try:
            os.remove(path)
            logger.info(f"File deleted: {path}")
            return True
        except OSError as e:
            logger.error(f"Error deleting file {path}: {e}")
            return False

    def cleanup_old_files(self, max_age: timedelta = timedelta(minutes=DEFAULT_FILE_RETENTION_MINUTES),
                          keep=()) -> int:
        """Deletes cached photos older than `max_age`, except the paths in `keep`.

        Returns how many were deleted.
        """
        cutoff = time.time() - max_age.total_seconds()
        kept = {os.path.abspath(p) for p in keep if p}
        deleted = 0
        try:
            names = [f for f in os.listdir(self.photos_dir) if not f.startswith(".")]
        except OSError as e:
            logger.error(f"Error during cleanup: {e}")
            return 0
        for name in names:
            path = os.path.join(self.photos_dir, name)
            if os.path.abspath(path) in kept:
                continue
            try:
                if os.stat(path).st_mtime < cutoff and self.delete_local_file(path):
                    deleted += 1
            except OSError as e:
                logger.error(f"Error checking file {path}: {e}")
        if deleted:
            logger.info(f"Auto-cleanup: deleted {deleted} file(s)")
        return deleted
