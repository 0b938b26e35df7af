# -*- coding: utf-8 -*-

# --- IMPORTS ---
import logging
import asyncio
import threading
from flask import Flask, request, jsonify
from telegram import Update

# Import the main bot setup function and the application object
from reportbot.core import main as initialize_bot, application, settings

# --- BASIC SETUP ---
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


# --- ASYNCIO EVENT LOOP IN A SEPARATE THREAD ---
# python-telegram-bot and the disk client are async; Flask request threads
# submit work to this single loop.
loop = asyncio.new_event_loop()


def run_asyncio_loop():
    """Sets the event loop for the current thread and runs it forever."""
    asyncio.set_event_loop(loop)
    loop.run_forever()


thread = threading.Thread(target=run_asyncio_loop)
thread.daemon = True
thread.start()
logger.info("Asyncio event loop running in a background thread.")


# --- INITIALIZE THE BOT ---
# main() also starts the maintenance task, so it has to run on this loop.
logger.info("Scheduling bot initialization...")
asyncio.run_coroutine_threadsafe(initialize_bot(), loop).result()
logger.info("Bot initialization complete.")

# --- POLLING SUPPORT ---
if settings.polling:
    logger.info("Starting bot in POLLING mode...")
    asyncio.run_coroutine_threadsafe(application.start(), loop).result()
    asyncio.run_coroutine_threadsafe(application.updater.start_polling(), loop)
    logger.info("Polling started.")


# --- FLASK APP INITIALIZATION ---
app = Flask(__name__)


# --- WEBHOOK ENDPOINT ---
@app.route('/webhook', methods=['POST'])
def webhook():
    """Receives updates from Telegram and schedules them on the event loop."""
    try:
        update = Update.de_json(request.get_json(force=True), application.bot)
        asyncio.run_coroutine_threadsafe(application.process_update(update), loop)
        # Telegram only needs a fast 200 OK.
        return jsonify({"status": "ok"}), 200
    except Exception as e:
        app.logger.error(f"Error processing webhook: {e}", exc_info=True)
        return jsonify({"status": "error"}), 200


# --- HEALTH CHECK ENDPOINT ---
@app.route('/', methods=['GET'])
def index():
    """Health check: the server is up."""
    return "Report bot is alive!", 200

# Run with a WSGI server, e.g. gunicorn app:app or waitress-serve app:app.
