# -*- coding: utf-8 -*-

# --- CONSTANTS AND FILE PATHS ---

# Define directory and file paths for data storage.
# BASE_DIR will be set dynamically in core.py
DATA_DIR_NAME = "bot_data"
PHOTOS_DIR_NAME = "photos"
SETTINGS_FILE_NAME = "user_settings.json"

DEFAULT_BASE_PATH = "/RMRPreport"

# Yandex Disk REST API and OAuth endpoints.
YANDEX_API_BASE = "https://cloud-api.yandex.net/v1/disk"
YANDEX_RESOURCES_PATH = "/resources"
YANDEX_UPLOAD_PATH = "/resources/upload"
YANDEX_OAUTH_AUTHORIZE_URL = "https://oauth.yandex.ru/authorize"
YANDEX_OAUTH_TOKEN_URL = "https://oauth.yandex.ru/token"
YANDEX_DEFAULT_REDIRECT_URI = "https://oauth.yandex.ru/verification_code"
LIST_FILES_LIMIT = 1000

# Time settings. Night folders are used between 00:00 and 09:00 Moscow time.
MOSCOW_UTC_OFFSET_HOURS = 3
NIGHT_START_HOUR = 0
NIGHT_END_HOUR = 9

# Default intervals (overridable through the environment, see config.py).
DEFAULT_CLEANUP_INTERVAL_MINUTES = 30
DEFAULT_FILE_RETENTION_MINUTES = 60
DEFAULT_PENDING_TTL_HOURS = 24
DEFAULT_WIZARD_TTL_HOURS = 2
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

# Stage numbers used in two-stage file names: "{number}-{stage}.{ext}".
STAGE_START = 1
STAGE_END = 2
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif")
DEFAULT_IMAGE_EXTENSION = ".jpg"

# Callback data prefixes for the photo placement wizard.
CB_CATEGORY = "cat"
CB_EVENT_TYPE = "evt"
CB_STAGE = "stage"
CB_BACK = "back"
CB_CANCEL = "cancel"
CB_SETTINGS = "set"
STAGE_START_DATA = "start"
STAGE_END_DATA = "end"

# Keys under which core.py stores the services in application.bot_data.
FILE_MANAGER_KEY = "file_manager"
DISK_KEY = "disk"
STATE_KEY = "state"
EVENTS_KEY = "events"
SETTINGS_KEY = "settings"

SETTINGS_BUTTON_TEXT = "⚙️ Settings"
