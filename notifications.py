import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor

from exceptions import NotificationDispatchFailure, TelegramAPIError

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Delivers chat messages off the request path.

    Each message is retried with exponential backoff. A message that still
    cannot be delivered is logged as a NotificationDispatchFailure and dropped;
    callers never see the error.
    """

    def __init__(self, client, max_retries=3, backoff=0.5, synchronous=False, max_workers=4):
        self.client = client
        self.max_retries = max(0, max_retries)
        self.backoff = backoff
        self.synchronous = synchronous
        self._executor = None if synchronous else ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix='notify'
        )

    def dispatch(self, chat_id, text) -> Future:
        """Schedule delivery of ``text`` to ``chat_id`` and return right away."""
        if self._executor is None:
            future = Future()
            future.set_result(self._deliver(chat_id, text))
            return future
        return self._executor.submit(self._deliver, chat_id, text)

    def _deliver(self, chat_id, text) -> bool:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.client.send_message(chat_id, text)
                logger.info(f"Notified chat {chat_id}")
                return True
            except TelegramAPIError as e:
                if attempt == attempts:
                    failure = NotificationDispatchFailure(chat_id, attempts, e)
                    logger.error(str(failure))
                    return False
                delay = self.backoff * 2 ** (attempt - 1)
                logger.warning(f"Notifying chat {chat_id} failed (attempt {attempt}/{attempts}), retrying in {delay:.1f}s: {e}")
                time.sleep(delay)
            except Exception as e:
                # Not a transport problem, retrying would fail the same way
                failure = NotificationDispatchFailure(chat_id, attempt, e)
                logger.exception(str(failure))
                return False

    def shutdown(self, wait=True):
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
