# -*- coding: utf-8 -*-

# --- IMPORTS ---
import logging
import os

# Telegram
from telegram import (
    Update, InlineKeyboardButton, InlineKeyboardMarkup, ReplyKeyboardMarkup, BotCommand, Message
)
from telegram.ext import ContextTypes, Application
from telegram.constants import ParseMode
from telegram.helpers import escape_markdown

# Local Imports
from .categories import (
    Category, FolderKey, EVENTS_MENU_KEY, EVENT_TYPES, TOP_LEVEL_MENU, TWO_STAGE_CATEGORIES,
    get_category, folder_path, all_folder_paths, normalize_base_path, stage_file_name, single_file_name
)
from .constants import (
    CB_CATEGORY, CB_EVENT_TYPE, CB_STAGE, CB_BACK, CB_CANCEL, CB_SETTINGS,
    STAGE_START_DATA, STAGE_END_DATA, STAGE_START, STAGE_END, DEFAULT_IMAGE_EXTENSION,
    FILE_MANAGER_KEY, DISK_KEY, STATE_KEY, EVENTS_KEY, SETTINGS_KEY, SETTINGS_BUTTON_TEXT
)
from .errors import ReportBotError, AuthenticationMissingError, OAuthError
from .events import EndOutcome
from .files import generate_file_name
from .oauth import authorize_url, exchange_code
from .state import WizardState, WizardStep
from .timeutils import current_week_label, is_night_window

# --- BASIC SETUP ---
logger = logging.getLogger(__name__)

NOT_CONNECTED_TEXT = "❌ Yandex Disk is not connected. Use /auth first."
STAGE_TITLES = {STAGE_START_DATA: "🚀 Start", STAGE_END_DATA: "🏁 End"}


def _services(context: ContextTypes.DEFAULT_TYPE):
    data = context.bot_data
    return data[FILE_MANAGER_KEY], data[DISK_KEY], data[STATE_KEY], data[EVENTS_KEY], data[SETTINGS_KEY]


# --- KEYBOARDS ---

def category_keyboard() -> InlineKeyboardMarkup:
    keyboard = [[InlineKeyboardButton(f"{c.emoji} {c.title}", callback_data=f"{CB_CATEGORY}:{c.key}")] for c in TOP_LEVEL_MENU]
    keyboard.append([InlineKeyboardButton("⚡ Events", callback_data=f"{CB_CATEGORY}:{EVENTS_MENU_KEY}")])
    keyboard.append([InlineKeyboardButton("❌ Cancel", callback_data=CB_CANCEL)])
    return InlineKeyboardMarkup(keyboard)


def event_type_keyboard() -> InlineKeyboardMarkup:
    keyboard = [[InlineKeyboardButton(f"{c.emoji} {c.title}", callback_data=f"{CB_EVENT_TYPE}:{c.key}")] for c in EVENT_TYPES]
    keyboard.append([InlineKeyboardButton("⬅️ Back", callback_data=f"{CB_BACK}:{WizardStep.CATEGORY.value}")])
    keyboard.append([InlineKeyboardButton("❌ Cancel", callback_data=CB_CANCEL)])
    return InlineKeyboardMarkup(keyboard)


def stage_keyboard(category: Category) -> InlineKeyboardMarkup:
    back_step = WizardStep.EVENT_TYPE if category in EVENT_TYPES else WizardStep.CATEGORY
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(STAGE_TITLES[STAGE_START_DATA], callback_data=f"{CB_STAGE}:{STAGE_START_DATA}")],
        [InlineKeyboardButton(STAGE_TITLES[STAGE_END_DATA], callback_data=f"{CB_STAGE}:{STAGE_END_DATA}")],
        [InlineKeyboardButton("⬅️ Back", callback_data=f"{CB_BACK}:{back_step.value}")],
        [InlineKeyboardButton("❌ Cancel", callback_data=CB_CANCEL)],
    ])


def settings_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("🔐 Authorize", callback_data=f"{CB_SETTINGS}:auth"),
         InlineKeyboardButton("📁 Path", callback_data=f"{CB_SETTINGS}:path")],
        [InlineKeyboardButton("🔄 Test", callback_data=f"{CB_SETTINGS}:test"),
         InlineKeyboardButton("⚙️ Current", callback_data=f"{CB_SETTINGS}:show")],
        [InlineKeyboardButton("❌ Disconnect", callback_data=f"{CB_SETTINGS}:disconnect")],
    ])


# --- SHARED TEXT BUILDERS ---

def wizard_folder(context: ContextTypes.DEFAULT_TYPE, wizard: WizardState, category: Category) -> FolderKey:
    """Folder for the dialog's photo, using the week and day/night captured at dialog start."""
    file_manager = context.bot_data[FILE_MANAGER_KEY]
    base_path = wizard.base_path or file_manager.base_path_for(wizard.user_id)
    return folder_path(base_path, wizard.week_label, category, wizard.night)


def current_folder(context: ContextTypes.DEFAULT_TYPE, user_id: int, category: Category) -> FolderKey:
    file_manager = context.bot_data[FILE_MANAGER_KEY]
    return folder_path(file_manager.base_path_for(user_id), current_week_label(), category, is_night_window())


def settings_text(file_manager, user_id: int) -> str:
    settings = file_manager.get_user_settings(user_id)
    token = settings.get("yandex_token")
    token_line = f"✅ Set ({token[:10]}...)" if token else "❌ Not set"
    return (
        "⚙️ Your settings:\n\n"
        f"🔑 Yandex Disk token: {token_line}\n"
        f"📁 Save path: {settings.get('yandex_path')}\n\n"
        "/auth - connect Yandex Disk\n"
        "/setpath <path> - change the save path\n"
        "/test - check the connection\n"
        "/disconnect - disconnect Yandex Disk"
    )


def auth_text(settings) -> str:
    return (
        "🔐 YANDEX DISK AUTHORIZATION\n\n"
        f"1. Open the link:\n{authorize_url(settings)}\n\n"
        "2. Press \"Allow\"\n"
        "3. Copy the code you get\n"
        "4. Send it to me: /code <your_code>\n\n"
        "The code is only valid for a few minutes."
    )


async def run_connection_test(message: Message, context: ContextTypes.DEFAULT_TYPE, user_id: int) -> None:
    file_manager, disk, _, _, _ = _services(context)
    if not file_manager.get_token(user_id):
        await message.reply_text("❌ Token is not set.")
        return
    await message.reply_text("🔄 Checking the connection to Yandex Disk...")
    try:
        free_gb = await disk.check_connection(user_id, file_manager.base_path_for(user_id))
        await message.reply_text(f"✅ Connected to Yandex Disk.\n\nFree space: {free_gb} GB")
    except ReportBotError as e:
        logger.error(f"Connection test failed for user {user_id}: {e}")
        await message.reply_text(f"❌ Could not connect to Yandex Disk:\n{e}")


# --- TELEGRAM COMMAND HANDLERS ---

async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Greets the user and shows the settings button."""
    user = update.effective_user
    logger.info(f"User {user.id} ({user.username or 'NoUsername'}) executed /start.")
    keyboard = ReplyKeyboardMarkup([[SETTINGS_BUTTON_TEXT]], resize_keyboard=True)
    await update.message.reply_text(
        f"👋 Hi, {user.first_name}!\n\n"
        "I save report screenshots to your Yandex Disk, sorted by week and category.\n"
        "Local copies are removed automatically.\n\n"
        "Send me a photo to begin!",
        reply_markup=keyboard,
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Displays the help message with available commands."""
    help_text = '''*Report Bot Help*

Send a photo (or an image file) and pick where it belongs.
Events and MP need two screenshots: start and end.

/auth - connect Yandex Disk, then /code <code>
/settings - show your settings
/setpath <path> - change the save path
/setbasepath <path> - save path for the current photo only
/test - check the disk connection
/sync_events - event status for this week
/pending - your unfinished events
/clear_pending - forget your unfinished events
/init_folders - create this week's folders
/reset_wizard - drop the current photo dialog
/cancel - cancel saving the current photo
/list_photos - photos waiting in the local cache
/cleanup - remove old cached photos
/disconnect - disconnect Yandex Disk
'''
    await update.message.reply_text(escape_markdown(help_text, version=2), parse_mode=ParseMode.MARKDOWN_V2)


async def auth_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Sends the Yandex OAuth link."""
    await update.message.reply_text(auth_text(context.bot_data[SETTINGS_KEY]))


async def code_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Exchanges the OAuth code for a token and stores it."""
    user_id = update.effective_user.id
    if not context.args:
        await update.message.reply_text("Please provide the code: /code <your_code>")
        return
    file_manager = context.bot_data[FILE_MANAGER_KEY]
    try:
        token = await exchange_code(context.bot_data[SETTINGS_KEY], context.args[0])
    except OAuthError as e:
        logger.error(f"Auth error for user {user_id}: {e}")
        await update.message.reply_text("❌ Authorization failed. Check the code and try again.")
        return
    file_manager.update_user_settings(user_id, yandex_token=token)
    logger.info(f"User {user_id} connected Yandex Disk.")
    await update.message.reply_text("✅ Authorized! Token saved.\n\nUse /test to check the connection.")


async def test_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Checks the connection to Yandex Disk."""
    await run_connection_test(update.message, context, update.effective_user.id)


async def disconnect_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Forgets the stored token."""
    context.bot_data[FILE_MANAGER_KEY].update_user_settings(update.effective_user.id, yandex_token=None)
    await update.message.reply_text("✅ Yandex Disk disconnected.")


async def settings_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(settings_text(context.bot_data[FILE_MANAGER_KEY], update.effective_user.id))


async def setpath_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Changes the saved base path; also applies to an open dialog."""
    user_id = update.effective_user.id
    if not context.args:
        await update.message.reply_text("Please provide a path: /setpath <path on Yandex Disk>\nExample: /setpath /Telegram/Photos")
        return
    _, _, state, _, _ = _services(context)
    new_path = normalize_base_path(" ".join(context.args))
    context.bot_data[FILE_MANAGER_KEY].update_user_settings(user_id, yandex_path=new_path)
    wizard = state.get_wizard(user_id)
    if wizard:
        wizard.base_path = new_path
    await update.message.reply_text(f"✅ Save path set: {new_path}")


async def setbasepath_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Overrides the base path for the open dialog only."""
    user_id = update.effective_user.id
    if not context.args:
        await update.message.reply_text("Please provide a base path: /setbasepath <path>\nExample: /setbasepath /Reports")
        return
    _, _, state, _, _ = _services(context)
    wizard = state.get_wizard(user_id)
    if not wizard:
        await update.message.reply_text("There is no photo being saved right now. Send a photo first.")
        return
    wizard.base_path = normalize_base_path(" ".join(context.args))
    await update.message.reply_text(f"✅ Base path for this photo: {wizard.base_path}")


async def sync_events_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Shows completed/incomplete counts for every two-stage folder of this week."""
    user_id = update.effective_user.id
    file_manager, _, _, events, _ = _services(context)
    if not file_manager.get_token(user_id):
        await update.message.reply_text(NOT_CONNECTED_TEXT)
        return
    await update.message.reply_text("🔄 Syncing events with Yandex Disk...")
    lines = ["📋 Event status on Yandex Disk:", ""]
    for category in TWO_STAGE_CATEGORIES:
        folder = current_folder(context, user_id, category)
        lines.append(f"{folder.folder_name}:")
        try:
            summary = await events.summarize(user_id, folder.path)
        except ReportBotError as e:
            logger.warning(f"Summary failed for {folder.path}: {e}")
            lines.extend([f"  • Error: {e}", ""])
            continue
        lines.append(f"  • Total: {summary.total}")
        lines.append(f"  • Completed: {summary.completed}")
        lines.append(f"  • Not completed: {summary.incomplete}")
        if summary.unmatched_ends:
            lines.append(f"  • End without start: {summary.unmatched_ends}")
        lines.append("")
    await update.message.reply_text("\n".join(lines))


async def pending_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Lists unfinished events remembered in memory and found on the disk."""
    user_id = update.effective_user.id
    file_manager, _, state, events, _ = _services(context)
    lines = ["📋 Your unfinished events:", ""]
    found = False

    for entry in state.user_pending(user_id):
        category = get_category(entry.category_type)
        title = category.title if category else entry.category_type
        lines.append(f"🧠 In memory: #{entry.event_number} - {title}")
        lines.append(f"⏱️ Started {entry.age_minutes()} minutes ago")
        lines.append("")
        found = True

    if file_manager.get_token(user_id):
        for category in TWO_STAGE_CATEGORIES:
            folder = current_folder(context, user_id, category)
            try:
                unfinished = await events.list_unfinished(user_id, folder.path)
            except ReportBotError as e:
                logger.warning(f"Could not list unfinished events in {folder.path}: {e}")
                continue
            for number in unfinished:
                lines.append(f"📁 On disk: #{number} - {category.title}")
                lines.append(f"📍 Path: {folder.path}")
                lines.append("")
                found = True

    if not found:
        await update.message.reply_text("✅ You have no unfinished events")
        return
    lines.append("To finish an event, send a photo and choose \"End\".")
    await update.message.reply_text("\n".join(lines))


async def clear_pending_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    cleared = context.bot_data[STATE_KEY].clear_user_pending(update.effective_user.id)
    if cleared:
        await update.message.reply_text(f"✅ Cleared {cleared} unfinished event(s)")
    else:
        await update.message.reply_text("✅ You had no unfinished events")


async def init_folders_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Creates this week's day and night folders for every category."""
    user_id = update.effective_user.id
    file_manager, disk, _, _, _ = _services(context)
    if not file_manager.get_token(user_id):
        await update.message.reply_text(NOT_CONNECTED_TEXT)
        return
    await update.message.reply_text("🔄 Creating the folder structure...")
    base_path = file_manager.base_path_for(user_id)
    week_label = current_week_label()
    failed = 0
    for folder in all_folder_paths(base_path, week_label):
        try:
            await disk.ensure_path(user_id, folder.path)
        except ReportBotError as e:
            logger.error(f"Error creating folder {folder.path}: {e}")
            failed += 1
    if failed:
        await update.message.reply_text(f"⚠️ Folder structure created with {failed} error(s).\n\nPath: {base_path}/{week_label}")
    else:
        await update.message.reply_text(f"✅ Folder structure created!\n\nPath: {base_path}/{week_label}")


async def reset_wizard_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Drops the open photo dialog and its cached file."""
    file_manager, _, state, _, _ = _services(context)
    wizard = state.finish_wizard(update.effective_user.id)
    if wizard:
        file_manager.delete_local_file(wizard.local_path)
    await update.message.reply_text("✅ Photo dialog reset")


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Cancels saving of the current photo."""
    file_manager, _, state, _, _ = _services(context)
    wizard = state.finish_wizard(update.effective_user.id)
    if not wizard:
        await update.message.reply_text("Nothing to cancel. Send a photo to begin.")
        return
    file_manager.delete_local_file(wizard.local_path)
    await update.message.reply_text("❌ Saving cancelled.\n\nThe photo was not uploaded.")


async def list_photos_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    files = context.bot_data[FILE_MANAGER_KEY].list_local_photos()
    if not files:
        await update.message.reply_text("📁 No cached photos")
        return
    text = f"📸 Cached photos ({len(files)}):\n\n" + "\n".join(f"{i}. {name}" for i, name in enumerate(files[:10], 1))
    if len(files) > 10:
        text += f"\n\n... and {len(files) - 10} more"
    await update.message.reply_text(text)


async def cleanup_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    file_manager, _, state, _, settings = _services(context)
    live_paths = [wizard.local_path for wizard in state.active_wizards()]
    deleted = file_manager.cleanup_old_files(settings.file_retention, keep=live_paths)
    await update.message.reply_text(f"✅ Cleanup finished. Files deleted: {deleted}")


# --- PHOTO HANDLERS ---

async def begin_wizard(update: Update, context: ContextTypes.DEFAULT_TYPE, local_path: str) -> None:
    """Stores the dialog state and shows the category step."""
    file_manager, _, state, _, _ = _services(context)
    message = update.effective_message
    user_id = update.effective_user.id

    previous = state.get_wizard(user_id)
    if previous and previous.local_path != local_path:
        logger.info(f"User {user_id} sent a new photo; dropping the previous dialog")
        file_manager.delete_local_file(previous.local_path)

    wizard = state.start_wizard(WizardState(
        user_id=user_id,
        chat_id=update.effective_chat.id,
        local_path=local_path,
        week_label=current_week_label(),
        night=is_night_window(),
    ))
    sent = await message.reply_text(
        "📸 Where should this photo go?\n\n"
        "🎮 In-game punishments - 1 screenshot\n"
        "📋 MP - 2 screenshots: start and end\n"
        "🤝 Help with MP - 1 screenshot\n"
        "⚡ Events - 2 screenshots: start and end\n\n"
        f"🗓️ Week: {wizard.week_label}{' (night)' if wizard.night else ''}",
        reply_markup=category_keyboard(),
    )
    wizard.message_id = sent.message_id


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Downloads a photo message and starts the placement dialog."""
    user_id = update.effective_user.id
    file_manager = context.bot_data[FILE_MANAGER_KEY]
    photo = update.message.photo[-1]
    local_path = file_manager.local_path(generate_file_name("photo", DEFAULT_IMAGE_EXTENSION))
    try:
        tg_file = await photo.get_file()
        await tg_file.download_to_drive(local_path)
        logger.info(f"Photo of user {user_id} downloaded to {local_path}")
        await begin_wizard(update, context, local_path)
    except Exception as e:
        logger.error(f"Error processing photo from user {user_id}: {e}", exc_info=True)
        file_manager.delete_local_file(local_path)
        await update.message.reply_text("❌ An error occurred while processing the photo")


async def handle_document(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Accepts an image sent as a file; the extension follows the real image format."""
    user_id = update.effective_user.id
    file_manager = context.bot_data[FILE_MANAGER_KEY]
    document = update.message.document
    extension = os.path.splitext(document.file_name or "")[1] or DEFAULT_IMAGE_EXTENSION
    local_path = file_manager.local_path(generate_file_name("photo", extension.lower()))
    try:
        tg_file = await document.get_file()
        await tg_file.download_to_drive(local_path)
        normalized = file_manager.normalize_image_file(local_path)
        if normalized is None:
            await update.message.reply_text("❌ Unsupported image format. Please send JPG, PNG or GIF.")
            return
        await begin_wizard(update, context, normalized)
    except Exception as e:
        logger.error(f"Error processing image document from user {user_id}: {e}", exc_info=True)
        file_manager.delete_local_file(local_path)
        await update.message.reply_text("❌ An error occurred while saving the image file")


# --- WIZARD CALLBACKS ---

async def show_category_step(query, wizard: WizardState) -> None:
    wizard.step = WizardStep.CATEGORY
    wizard.category_key = None
    await query.edit_message_text("📸 Where should this photo go?\n\nChoose a category:", reply_markup=category_keyboard())


async def show_event_type_step(query, wizard: WizardState) -> None:
    wizard.step = WizardStep.EVENT_TYPE
    night_prefix = "Night " if wizard.night else ""
    lines = ["⚡ Choose the event type:", ""]
    lines.extend(f"{c.emoji} {night_prefix}{c.title}" for c in EVENT_TYPES)
    lines.extend(["", "Events need 2 screenshots: start and end."])
    await query.edit_message_text("\n".join(lines), reply_markup=event_type_keyboard())


async def show_stage_step(query, context: ContextTypes.DEFAULT_TYPE, wizard: WizardState, category: Category) -> None:
    """Asks start or end, listing what is still open in the target folder."""
    _, _, state, events, _ = _services(context)
    wizard.step = WizardStep.STAGE
    wizard.category_key = category.key
    folder = wizard_folder(context, wizard, category)

    lines = [f"{category.emoji} {folder.folder_name}: choose the stage", ""]
    pending = state.get_pending(wizard.user_id, category.key)
    if pending:
        lines.append(f"📋 You have an unfinished #{pending.event_number}")
    try:
        unfinished = await events.list_unfinished(wizard.user_id, folder.path)
    except ReportBotError as e:
        logger.warning(f"Error checking events in {folder.path}: {e}")
        unfinished = []
    if unfinished:
        lines.append(f"📁 Unfinished in the folder: {', '.join(str(n) for n in unfinished)}")
        lines.append("Choose \"End\" to finish them.")
    if pending or unfinished:
        lines.append("")
    lines.extend([
        "• 🚀 Start - screenshot of the beginning",
        "• 🏁 End - screenshot of the end",
        "",
        "File name: NUMBER-1 (start) or NUMBER-2 (end)",
    ])
    await query.edit_message_text("\n".join(lines), reply_markup=stage_keyboard(category))


def _extension(local_path: str) -> str:
    return os.path.splitext(local_path)[1] or DEFAULT_IMAGE_EXTENSION


async def save_single_photo(query, context: ContextTypes.DEFAULT_TYPE, wizard: WizardState, category: Category) -> None:
    """Uploads a one-screenshot category and closes the dialog."""
    file_manager, disk, state, _, _ = _services(context)
    user_id = wizard.user_id
    try:
        if not file_manager.get_token(user_id):
            await query.edit_message_text(NOT_CONNECTED_TEXT)
            return
        folder = wizard_folder(context, wizard, category)
        file_name = single_file_name(category, _extension(wizard.local_path))
        if await disk.upload_file(user_id, wizard.local_path, folder.file_path(file_name)):
            await query.edit_message_text(
                "✅ Photo saved!\n\n"
                f"📁 Category: {folder.folder_name}\n"
                f"🗓️ Week: {folder.week_label}\n"
                f"📄 File: {file_name}"
            )
        else:
            await query.edit_message_text("❌ Could not save the photo.\n\nCheck your Yandex Disk settings (/settings)")
    except ReportBotError as e:
        logger.error(f"Error saving {category.key} photo for user {user_id}: {e}", exc_info=True)
        await query.edit_message_text(f"❌ Error while saving:\n{e}")
    finally:
        state.finish_wizard(user_id)
        file_manager.delete_local_file(wizard.local_path)


def stage_result_text(category: Category, folder: FolderKey, number: int, stage: str,
                      file_name: str, outcome: EndOutcome | None) -> str:
    lines = [
        "✅ Photo saved!",
        "",
        f"📁 Category: {folder.folder_name}",
        f"🗓️ Week: {folder.week_label}",
        f"🔢 Number: #{number}",
        f"📸 Stage: {STAGE_TITLES[stage]}",
        f"📄 File: {file_name}",
        "",
    ]
    if outcome is None:
        lines.append("Don't forget to send the end screenshot.")
    elif outcome is EndOutcome.SUPERSEDED_COMPLETED:
        lines.append("⚠️ Your started event was already closed, so this end starts a new number.")
    elif outcome is EndOutcome.FRESH:
        lines.append("⚠️ No start found; saved as an end without a start.")
    else:
        lines.append("✅ Both screenshots are saved.")
    return "\n".join(lines)


async def save_stage_photo(query, context: ContextTypes.DEFAULT_TYPE, wizard: WizardState, stage: str) -> None:
    """Numbers and uploads a start/end screenshot of a two-stage category."""
    file_manager, disk, state, events, _ = _services(context)
    user_id = wizard.user_id
    category = get_category(wizard.category_key or "")
    if category is None or not category.two_stage:
        await query.edit_message_text("Please choose a category first.", reply_markup=category_keyboard())
        return

    async with events.stage_lock(user_id, category.key):
        # A second tap waits here and finds the dialog already closed.
        if state.get_wizard(user_id) is not wizard:
            return
        try:
            if not file_manager.get_token(user_id):
                raise AuthenticationMissingError(user_id)
            folder = wizard_folder(context, wizard, category)
            outcome = None
            if stage == STAGE_START_DATA:
                number = await events.assign_number_for_start(user_id, category.key, folder.path)
            else:
                assignment = await events.assign_number_for_end(user_id, category.key, folder.path)
                number, outcome = assignment.number, assignment.outcome

            file_name = stage_file_name(number, STAGE_START if stage == STAGE_START_DATA else STAGE_END,
                                        _extension(wizard.local_path))
            if await disk.upload_file(user_id, wizard.local_path, folder.file_path(file_name)):
                await query.edit_message_text(stage_result_text(category, folder, number, stage, file_name, outcome))
                return

            # Keep the pending table in line with what is actually on the disk.
            if stage == STAGE_START_DATA:
                state.delete_pending(user_id, category.key)
            elif outcome is EndOutcome.CONTINUATION:
                state.set_pending(user_id, category.key, number, folder.path)
            await query.edit_message_text("❌ Could not save the photo.\n\nCheck your Yandex Disk settings (/settings)")
        except AuthenticationMissingError:
            await query.edit_message_text(NOT_CONNECTED_TEXT)
        except ReportBotError as e:
            logger.error(f"Error saving {category.key} {stage} for user {user_id}: {e}", exc_info=True)
            await query.edit_message_text(f"❌ Error while saving:\n{e}\n\nPlease try again.")
        finally:
            state.finish_wizard(user_id)
            file_manager.delete_local_file(wizard.local_path)


async def cancel_wizard(query, context: ContextTypes.DEFAULT_TYPE, wizard: WizardState) -> None:
    file_manager, _, state, _, _ = _services(context)
    state.finish_wizard(wizard.user_id)
    file_manager.delete_local_file(wizard.local_path)
    await query.edit_message_text("❌ Saving cancelled.\n\nThe photo was not uploaded.")


async def wizard_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Routes the inline buttons of the photo placement dialog."""
    query = update.callback_query
    user_id = query.from_user.id
    state = context.bot_data[STATE_KEY]
    wizard = state.get_wizard(user_id)
    if wizard is None or (query.message is not None and wizard.message_id not in (None, query.message.message_id)):
        # Leave the message alone: it may already show the saved result.
        await query.answer("This dialog is no longer active.")
        return
    await query.answer()

    action, _, value = query.data.partition(":")
    if action == CB_CANCEL:
        await cancel_wizard(query, context, wizard)
    elif action == CB_CATEGORY and value == EVENTS_MENU_KEY:
        await show_event_type_step(query, wizard)
    elif action in (CB_CATEGORY, CB_EVENT_TYPE) and get_category(value):
        category = get_category(value)
        if category.two_stage:
            await show_stage_step(query, context, wizard, category)
        else:
            await save_single_photo(query, context, wizard, category)
    elif action == CB_STAGE and value in (STAGE_START_DATA, STAGE_END_DATA):
        await save_stage_photo(query, context, wizard, value)
    elif action == CB_BACK and value == WizardStep.EVENT_TYPE.value:
        await show_event_type_step(query, wizard)
    elif action == CB_BACK:
        await show_category_step(query, wizard)
    else:
        logger.warning(f"Unknown wizard callback data '{query.data}' from user {user_id}")


# --- SETTINGS BUTTONS ---

async def settings_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handles the buttons of the settings keyboard."""
    query = update.callback_query
    await query.answer()
    user_id = query.from_user.id
    file_manager = context.bot_data[FILE_MANAGER_KEY]
    action = query.data.partition(":")[2]
    if action == "auth":
        await query.message.reply_text(auth_text(context.bot_data[SETTINGS_KEY]))
    elif action == "path":
        await query.message.reply_text("To change the path use:\n/setpath <new_path>\n\nExample: /setpath /Telegram/Photos")
    elif action == "test":
        await run_connection_test(query.message, context, user_id)
    elif action == "show":
        await query.message.reply_text(settings_text(file_manager, user_id))
    elif action == "disconnect":
        file_manager.update_user_settings(user_id, yandex_token=None)
        await query.message.reply_text("✅ Yandex Disk disconnected.")


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Settings button of the reply keyboard; any other text gets a hint."""
    if update.message.text == SETTINGS_BUTTON_TEXT:
        await update.message.reply_text("⚙️ Yandex Disk settings:", reply_markup=settings_keyboard())
        return
    await update.message.reply_text("I save report photos. Just send me a photo!\nUse /settings to set up Yandex Disk.")


# --- POST INIT FUNCTION ---
async def post_set_commands(application: Application) -> None:
    """Sets the bot's command list in Telegram."""
    commands = [
        BotCommand("start", "Start the bot"),
        BotCommand("help", "Show the help message"),
        BotCommand("auth", "Connect Yandex Disk"),
        BotCommand("code", "Finish authorization with the code"),
        BotCommand("settings", "Show your settings"),
        BotCommand("setpath", "Change the save path"),
        BotCommand("setbasepath", "Save path for the current photo"),
        BotCommand("test", "Check the disk connection"),
        BotCommand("sync_events", "Event status for this week"),
        BotCommand("pending", "Your unfinished events"),
        BotCommand("clear_pending", "Forget your unfinished events"),
        BotCommand("init_folders", "Create this week's folders"),
        BotCommand("reset_wizard", "Drop the current photo dialog"),
        BotCommand("cancel", "Cancel saving the current photo"),
        BotCommand("list_photos", "Cached photos"),
        BotCommand("cleanup", "Remove old cached photos"),
        BotCommand("disconnect", "Disconnect Yandex Disk"),
    ]
    try:
        await application.bot.set_my_commands(commands)
        logger.info("Bot commands menu updated successfully.")
    except Exception as e:
        logger.error(f"Failed to set bot commands: {e}")


# --- GLOBAL ERROR HANDLER ---
async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Logs errors caused by Updates and notifies the user."""
    logger.error(f"Exception while handling an update: {context.error}", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text("Sorry, an unexpected error occurred. Please try again later.")
        except Exception as e:
            logger.error(f"Failed to send error message to user: {e}")
