import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    # Telegram Configuration
    BOT_TOKEN = os.getenv('BOT_TOKEN', '')
    TELEGRAM_API_URL = os.getenv('TELEGRAM_API_URL', 'https://api.telegram.org')
    TELEGRAM_SECRET_TOKEN = os.getenv('TELEGRAM_SECRET_TOKEN', '')
    BOT_MODE = os.getenv('BOT_MODE', 'polling').lower()  # "polling" or "webhook"
    WEBHOOK_URL = os.getenv('WEBHOOK_URL', '')
    BOT_USERNAME = os.getenv('BOT_USERNAME', '')  # looked up with getMe when empty

    # Application Configuration
    PORT = int(os.getenv('PORT', '3001'))
    WEB_URL = os.getenv('WEB_URL', 'http://localhost:5173')
    QUESTIONS_PATH = os.getenv('QUESTIONS_PATH', './questions.json')
    PROMO_PREFIX = os.getenv('PROMO_PREFIX', 'FREEBET')

    # Logging Configuration
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Outbound notifications
    NOTIFY_TIMEOUT = float(os.getenv('NOTIFY_TIMEOUT', '10'))  # seconds per request
    NOTIFY_MAX_RETRIES = int(os.getenv('NOTIFY_MAX_RETRIES', '3'))
    NOTIFY_BACKOFF = float(os.getenv('NOTIFY_BACKOFF', '0.5'))
    NOTIFY_ASYNC = _env_bool('NOTIFY_ASYNC', True)
