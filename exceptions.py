"""Error types shared by the HTTP boundary, the chat boundary and the quiz core."""


class QuizBotError(Exception):
    """Base class for every error raised by the quiz bot."""


class ConfigurationError(QuizBotError):
    """Required settings (such as the bot token) are missing."""


class InvalidPayload(QuizBotError):
    """A submission body does not have the expected shape."""


class SessionNotFound(QuizBotError):
    """The session id is unknown, expired or already used."""


class StartupLoadFailure(QuizBotError):
    """The question bank could not be read or parsed."""


class PromoCodesExhausted(QuizBotError):
    """Every promo code of the configured shape has already been issued."""


class TelegramAPIError(QuizBotError):
    """A call to the Telegram Bot API failed or returned ok=false."""


class NotificationDispatchFailure(QuizBotError):
    """A chat notification could not be delivered after all retries."""

    def __init__(self, chat_id, attempts, cause=None):
        self.chat_id = chat_id
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Failed to notify chat {chat_id} after {attempts} attempt(s): {cause}"
        )
