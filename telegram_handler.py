import hmac
import logging
import threading
from urllib.parse import quote

from exceptions import TelegramAPIError

logger = logging.getLogger(__name__)

SECRET_HEADER = 'X-Telegram-Bot-Api-Secret-Token'
START_COMMANDS = ('start', 'quiz')
START_PROMPT = "Hi! Ready to test your knowledge and win a free bet?\nTap the button below to start the quiz."
START_BUTTON_TEXT = "🚀 Start the quiz"


def verify_telegram_request(header_value, secret_token):
    """
    Verifies the secret token Telegram echoes back on every webhook call.

    Args:
        header_value (str): Value of the X-Telegram-Bot-Api-Secret-Token header
        secret_token (str): The secret registered with setWebhook

    Returns:
        bool: True if the token matches, False otherwise
    """
    return hmac.compare_digest(str.encode(header_value or ''), str.encode(secret_token))


def validate_telegram_request(request, secret_token):
    """
    Validates a webhook request by checking the secret token header.

    When no secret is configured every request is accepted.

    Args:
        request: The Flask request object
        secret_token (str): The configured secret, may be empty

    Returns:
        tuple: (bool, dict, int) - (is_valid, error_response, status_code)
    """
    if not secret_token:
        return True, None, None

    if SECRET_HEADER not in request.headers:
        logger.error("Missing Telegram secret token header")
        return False, {"error": "Unauthorized"}, 403

    if not verify_telegram_request(request.headers[SECRET_HEADER], secret_token):
        logger.error("Telegram secret token verification failed")
        return False, {"error": "Unauthorized"}, 403

    return True, None, None


def build_quiz_link(web_url, session_id):
    return f"{web_url.rstrip('/')}/?sessionId={quote(session_id)}"


def create_start_keyboard(url):
    """
    Creates the inline keyboard holding the single button that opens the web quiz.

    Args:
        url (str): The session deep link

    Returns:
        dict: Telegram reply_markup
    """
    return {
        "inline_keyboard": [
            [{"text": START_BUTTON_TEXT, "url": url}]
        ]
    }


def extract_command(text, bot_username=None):
    """
    Return the bot command in ``text`` without the slash, or None.

    A command addressed to a bot (/start@SomeBot) only counts when the name
    matches ``bot_username``; in group chats other bots receive the same text.
    """
    if not text or not text.startswith('/'):
        return None
    command, _, addressee = text.split()[0][1:].partition('@')
    if addressee and (not bot_username or addressee.lower() != bot_username.lstrip('@').lower()):
        return None
    return command.lower() or None


def handle_update(update, quiz_manager, client, web_url, bot_username=None):
    """
    Processes one Telegram update.

    /start and its /quiz alias open a new quiz session for the chat and reply
    with a button linking to the web client. Everything else is ignored.

    Args:
        update (dict): The decoded Telegram update
        quiz_manager (QuizManager): Creates the session
        client (TelegramClient): Sends the reply
        web_url (str): Base URL of the web client
        bot_username (str): This bot's username, used for /command@username

    Returns:
        bool: True if the update started a quiz session
    """
    message = update.get('message') or {}
    command = extract_command(message.get('text'), bot_username)
    chat_id = (message.get('chat') or {}).get('id')

    if command not in START_COMMANDS or chat_id is None:
        logger.debug(f"Ignoring update {update.get('update_id')}")
        return False

    session_id = quiz_manager.start_session(chat_id)
    url = build_quiz_link(web_url, session_id)
    try:
        client.send_message(chat_id, START_PROMPT, reply_markup=create_start_keyboard(url))
    except TelegramAPIError as e:
        # The session stays open; it is simply never used
        logger.error(f"Failed to send quiz link to chat {chat_id}: {e}")
    return True


class TelegramPoller:
    """Long-polls getUpdates on a background thread until stopped."""

    def __init__(self, client, on_update, poll_timeout=30, retry_delay=5):
        self.client = client
        self.on_update = on_update
        self.poll_timeout = poll_timeout
        self.retry_delay = retry_delay
        self.offset = None
        self._stop_event = threading.Event()
        self._thread = None

    def start(self):
        if self._thread is not None:
            return
        # getUpdates is refused while a webhook is registered
        try:
            self.client.delete_webhook()
        except TelegramAPIError as e:
            logger.warning(f"Could not remove webhook before polling: {e}")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='telegram-poller', daemon=True)
        self._thread.start()
        logger.info("Bot started (polling mode)")

    def stop(self, timeout=None):
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("Bot stopped")

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def poll_once(self):
        """Fetch one batch of updates and hand each to ``on_update``. Returns the batch size."""
        updates = self.client.get_updates(offset=self.offset, timeout=self.poll_timeout) or []
        for update in updates:
            update_id = update.get('update_id') if isinstance(update, dict) else None
            if not isinstance(update_id, int):
                logger.warning(f"Skipping update without update_id: {update!r}")
                continue
            self.offset = update_id + 1
            try:
                self.on_update(update)
            except Exception:
                logger.exception(f"Error handling update {update_id}")
        return len(updates)

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except TelegramAPIError as e:
                logger.error(f"Polling failed: {e}")
                self._stop_event.wait(self.retry_delay)
            except Exception:
                logger.exception("Unexpected error while polling")
                self._stop_event.wait(self.retry_delay)
