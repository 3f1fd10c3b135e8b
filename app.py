# Freebet QuizBot - a Telegram bot that hands out one-time links to a web quiz
# The flow is:
# 1. A user sends /start (or /quiz) to the bot and receives a button with a one-time session link
# 2. The web client fetches the questions from /api/questions and shows the quiz
# 3. The web client posts the answers to /api/submit together with the session id
# 4. The server grades the answers and messages the chat: a promo code for a perfect score,
#    a thank-you note otherwise

import logging
import signal
import sys

from flask import Flask, request, jsonify
from flask_cors import CORS

from config import Config
from exceptions import ConfigurationError, InvalidPayload, SessionNotFound, TelegramAPIError
from notifications import NotificationDispatcher
from quiz_manager import PromoIssuer, QuizManager, load_questions
from telegram_client import TelegramClient
from telegram_handler import TelegramPoller, handle_update, validate_telegram_request

# Set logging level from configuration (INFO unless LOG_LEVEL says otherwise)
logging.basicConfig(level=Config.LOG_LEVEL)
logger = logging.getLogger(__name__)


class BotRuntime:
    """
    Everything one running bot owns: the API client, the notification dispatcher,
    the quiz state and, in polling mode, the update poller.
    """

    def __init__(self, config, client, dispatcher, quiz_manager):
        self.config = config
        self.client = client
        self.dispatcher = dispatcher
        self.quiz_manager = quiz_manager
        self.poller = None
        self.bot_username = config.get('BOT_USERNAME') or None

    def handle_update(self, update):
        return handle_update(update, self.quiz_manager, self.client, self.config['WEB_URL'], self.bot_username)

    def start(self):
        """Connect the bot to Telegram using the configured mode."""
        if not self.bot_username:
            # Needed to tell /start@ThisBot from commands meant for other bots
            try:
                self.bot_username = self.client.get_me().get('username')
            except TelegramAPIError as e:
                logger.warning(f"Could not look up bot username, only bare commands will be handled: {e}")

        if self.config['BOT_MODE'] == 'webhook':
            # In webhook mode Telegram calls /telegram/webhook; we only (re)register the URL
            if self.config['WEBHOOK_URL']:
                self.client.set_webhook(self.config['WEBHOOK_URL'], self.config['TELEGRAM_SECRET_TOKEN'] or None)
                logger.info(f"Webhook registered at {self.config['WEBHOOK_URL']}")
            return

        if self.poller is None:
            self.poller = TelegramPoller(self.client, self.handle_update)
        self.poller.start()

    def stop(self):
        """Tear down the chat connection and let pending notifications finish."""
        if self.poller is not None:
            self.poller.stop()
        self.dispatcher.shutdown(wait=True)
        self.client.close()


def create_app(test_config=None, telegram_client=None):
    """
    Build the Flask application and the bot runtime behind it.

    Args:
        test_config: Optional mapping overriding values from Config
        telegram_client: Optional client to use instead of a real TelegramClient

    Returns:
        Flask: The configured application. The runtime lives in app.extensions['quizbot']
    """
    # Flask is a lightweight web framework for Python that handles HTTP requests
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # The bot cannot do anything without its token, so refuse to start
    if not app.config['BOT_TOKEN']:
        raise ConfigurationError("BOT_TOKEN is missing. Please set it in .env")

    # The web client is served from a different origin than the API
    CORS(app)

    client = telegram_client or TelegramClient(
        app.config['BOT_TOKEN'],
        api_url=app.config['TELEGRAM_API_URL'],
        timeout=app.config['NOTIFY_TIMEOUT'],
    )
    dispatcher = NotificationDispatcher(
        client,
        max_retries=app.config['NOTIFY_MAX_RETRIES'],
        backoff=app.config['NOTIFY_BACKOFF'],
        synchronous=not app.config['NOTIFY_ASYNC'],
    )

    # Load all quiz questions into memory when the application starts
    # A missing or broken file leaves the bank empty; nobody can win a promo code then
    questions = load_questions(app.config['QUESTIONS_PATH'])
    if not questions:
        app.logger.warning("Question bank is empty, every submission will be graded 0/0")

    quiz_manager = QuizManager(questions, dispatcher, promos=PromoIssuer(prefix=app.config['PROMO_PREFIX']))
    runtime = BotRuntime(app.config, client, dispatcher, quiz_manager)
    app.extensions['quizbot'] = runtime

    if not app.config['TELEGRAM_SECRET_TOKEN'] and app.config['BOT_MODE'] == 'webhook':
        app.logger.warning("TELEGRAM_SECRET_TOKEN is not set, webhook requests are not verified")

    @app.route('/api/submit', methods=['POST'])
    def submit():
        """
        Receive quiz answers from the web client.

        Expects {"sessionId": "...", "answers": [1, 0, ...]}. The session is used up
        by the first valid submission, so a repeated submission gets a 404.
        The chat is notified in the background; the response does not wait for it.
        """
        # silent=True gives None for a missing or malformed JSON body instead of raising
        payload = request.get_json(silent=True)

        try:
            quiz_manager.submit(payload)
        except InvalidPayload as e:
            app.logger.info(f"Rejected submission: {e}")
            return jsonify({"error": "Invalid payload"}), 400
        except SessionNotFound as e:
            app.logger.info(f"Submission for unknown session {e}")
            return jsonify({"error": "Session not found"}), 404
        except Exception as e:
            # Log any errors for debugging
            app.logger.error(f"Error in /api/submit: {str(e)}")
            return jsonify({"error": "Internal server error"}), 500

        return jsonify({"ok": True}), 200

    @app.route('/api/questions', methods=['GET'])
    def questions_list():
        """
        Return the full question bank, correct answer indices included.

        The web client only needs the text and options; the answers are sent as well.
        """
        return jsonify({"questions": quiz_manager.questions})

    @app.route('/telegram/webhook', methods=['POST'])
    def telegram_webhook():
        """
        Handle updates pushed by Telegram in webhook mode.

        Always answers 200 once the request is verified, otherwise Telegram
        keeps redelivering the same update.
        """
        # Security check: make sure the request really comes from Telegram
        is_valid, error, status = validate_telegram_request(request, app.config['TELEGRAM_SECRET_TOKEN'])
        if not is_valid:
            return jsonify(error), status

        update = request.get_json(silent=True)
        if not isinstance(update, dict):
            return jsonify({"ok": False}), 200

        try:
            runtime.handle_update(update)
        except Exception as e:
            app.logger.error(f"Error in /telegram/webhook: {str(e)}")
            return jsonify({"ok": False}), 200

        return jsonify({"ok": True}), 200

    @app.route('/')
    def index():
        """Simple health check endpoint."""
        return "QuizBot is running!"

    return app


def start_bot(app):
    app.extensions['quizbot'].start()


def stop_bot(app):
    app.extensions['quizbot'].stop()


def main():
    try:
        app = create_app()
    except ConfigurationError as e:
        logging.error(str(e))
        sys.exit(1)

    def handle_signal(signum, frame):
        app.logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        raise SystemExit(0)

    # Stop the bot cleanly on Ctrl+C and on service manager shutdown
    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    start_bot(app)
    try:
        # host='0.0.0.0' makes it accessible from external connections (not just localhost)
        app.run(host='0.0.0.0', port=app.config['PORT'])
    finally:
        stop_bot(app)


# Main application entry point
if __name__ == '__main__':
    main()
