# -*- coding: utf-8 -*-

# --- IMPORTS ---
import logging
import asyncio

# Telegram
from telegram.ext import ApplicationBuilder, CommandHandler, MessageHandler, CallbackQueryHandler, filters

# Local Imports
from .config import load_settings
from .constants import (
    CB_CATEGORY, CB_EVENT_TYPE, CB_STAGE, CB_BACK, CB_CANCEL, CB_SETTINGS,
    FILE_MANAGER_KEY, DISK_KEY, STATE_KEY, EVENTS_KEY, SETTINGS_KEY
)
from .disk import YandexDisk
from .events import EventManager
from .files import FileManager
from .state import StateManager
from .handlers import (
    start_command, help_command, auth_command, code_command, test_command, disconnect_command,
    settings_command, setpath_command, setbasepath_command, sync_events_command, pending_command,
    clear_pending_command, init_folders_command, reset_wizard_command, cancel_command,
    list_photos_command, cleanup_command, handle_photo, handle_document, handle_text,
    wizard_callback, settings_callback, error_handler, post_set_commands
)

# --- BASIC SETUP ---
# Configure logging to provide detailed output for monitoring and debugging.
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO
)
# Reduce the verbosity of the httpx library which is used by the Telegram API and the disk client.
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

# --- LOAD SETTINGS ---
settings = load_settings()
WEBHOOK_URL = settings.webhook_url

# Critical check to ensure the bot token is present.
if not settings.telegram_token:
    logger.critical("FATAL: TELEGRAM_BOT_TOKEN is missing!")
    exit("Token Error: Check .env file for TELEGRAM_BOT_TOKEN.")

if not settings.yandex_client_id or not settings.yandex_client_secret:
    logger.warning("YANDEX_CLIENT_ID / YANDEX_CLIENT_SECRET not set. /code will not be able to get tokens.")

# --- APPLICATION SETUP ---
# Defined globally so it can be imported and used by the Flask web server (app.py).
application = (
    ApplicationBuilder()
    .token(settings.telegram_token)
    .build()
)

COMMANDS = {
    "start": start_command,
    "help": help_command,
    "auth": auth_command,
    "code": code_command,
    "test": test_command,
    "disconnect": disconnect_command,
    "settings": settings_command,
    "setpath": setpath_command,
    "setbasepath": setbasepath_command,
    "sync_events": sync_events_command,
    "pending": pending_command,
    "clear_pending": clear_pending_command,
    "init_folders": init_folders_command,
    "reset_wizard": reset_wizard_command,
    "cancel": cancel_command,
    "list_photos": list_photos_command,
    "cleanup": cleanup_command,
}

WIZARD_CALLBACK_PATTERN = rf"^({CB_CATEGORY}|{CB_EVENT_TYPE}|{CB_STAGE}|{CB_BACK}):|^{CB_CANCEL}$"
SETTINGS_CALLBACK_PATTERN = rf"^{CB_SETTINGS}:"


# --- BACKGROUND MAINTENANCE ---
def run_maintenance(bot_data: dict) -> None:
    """One cleanup pass: old cached photos, expired pending events, abandoned dialogs."""
    file_manager: FileManager = bot_data[FILE_MANAGER_KEY]
    state: StateManager = bot_data[STATE_KEY]
    events: EventManager = bot_data[EVENTS_KEY]
    config = bot_data[SETTINGS_KEY]

    for wizard in state.sweep_expired_wizards(ttl=config.wizard_ttl):
        file_manager.delete_local_file(wizard.local_path)
    # Photos of dialogs still open are kept whatever their age.
    live_paths = [wizard.local_path for wizard in state.active_wizards()]
    file_manager.cleanup_old_files(config.file_retention, keep=live_paths)
    expired = events.sweep_expired_pending(ttl=config.pending_ttl)
    if expired:
        logger.info(f"Removed {expired} expired pending event(s)")


async def maintenance_loop(bot_data: dict) -> None:
    interval = bot_data[SETTINGS_KEY].cleanup_interval.total_seconds()
    while True:
        await asyncio.sleep(interval)
        try:
            run_maintenance(bot_data)
        except Exception as e:
            logger.error(f"Maintenance pass failed: {e}", exc_info=True)


# --- MAIN BOT SETUP FUNCTION ---
async def main() -> None:
    """
    Sets up the services and handlers, initializes the application,
    configures the webhook and starts the maintenance task. This function
    is called once when the web server starts.
    """
    # --- SERVICES ---
    file_manager = FileManager(settings.data_dir, settings.default_base_path)
    state = StateManager()
    disk = YandexDisk(file_manager, timeout=settings.request_timeout)
    application.bot_data.update({
        SETTINGS_KEY: settings,
        FILE_MANAGER_KEY: file_manager,
        STATE_KEY: state,
        DISK_KEY: disk,
        EVENTS_KEY: EventManager(disk, state),
    })

    # --- ADD HANDLERS ---
    # Add the global error handler first.
    application.add_error_handler(error_handler)

    for name, callback in COMMANDS.items():
        application.add_handler(CommandHandler(name, callback))

    application.add_handler(MessageHandler(filters.PHOTO, handle_photo))
    application.add_handler(MessageHandler(filters.Document.IMAGE, handle_document))
    application.add_handler(CallbackQueryHandler(wizard_callback, pattern=WIZARD_CALLBACK_PATTERN))
    application.add_handler(CallbackQueryHandler(settings_callback, pattern=SETTINGS_CALLBACK_PATTERN))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    # --- INITIALIZE APPLICATION ---
    logger.info("Initializing application...")
    await application.initialize()
    logger.info("Application initialized.")

    # --- WEBHOOK SETUP ---
    if not settings.polling:
        webhook_full_url = f"{WEBHOOK_URL}/webhook"
        logger.info(f"Setting webhook to {webhook_full_url}...")
        await application.bot.set_webhook(url=webhook_full_url)
        logger.info("Webhook set successfully.")
    else:
        logger.info("Deleting any existing webhook for polling...")
        await application.bot.delete_webhook()

    # --- MAINTENANCE TASK ---
    application.bot_data["maintenance_task"] = asyncio.create_task(maintenance_loop(application.bot_data))
    logger.info(f"Maintenance scheduled every {settings.cleanup_interval}.")
    logger.info("Bot setup complete.")

    # Set the bot commands menu
    await post_set_commands(application)


async def run_polling() -> None:
    """Runs setup and long polling in one event loop until cancelled."""
    await main()
    await application.start()
    await application.updater.start_polling()
    logger.info("Starting bot in POLLING mode...")
    try:
        await asyncio.Event().wait()
    finally:
        await application.updater.stop()
        await application.stop()
        await application.bot_data[DISK_KEY].close()
        await application.shutdown()


if __name__ == "__main__":
    # This allows running the bot in polling mode directly using: python -m reportbot.core
    try:
        asyncio.run(run_polling())
    except KeyboardInterrupt:
        logger.info("Bot stopped.")
