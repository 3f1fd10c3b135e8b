import logging

import requests

from exceptions import TelegramAPIError

logger = logging.getLogger(__name__)


class TelegramClient:
    """Minimal client for the Telegram Bot HTTP API."""

    def __init__(self, token, api_url='https://api.telegram.org', timeout=10):
        self.base_url = f"{api_url.rstrip('/')}/bot{token}"
        self.timeout = timeout
        self.session = requests.Session()

    def _call(self, method, payload=None, timeout=None):
        """
        POST a Bot API method and return its ``result`` field.

        Raises:
            TelegramAPIError: On transport errors or an ``ok: false`` reply
        """
        try:
            response = self.session.post(
                f"{self.base_url}/{method}",
                json=payload or {},
                timeout=timeout or self.timeout,
            )
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TelegramAPIError(f"{method} failed: {e}") from e

        if not data.get('ok'):
            raise TelegramAPIError(
                f"{method} failed with {response.status_code}: {data.get('description', 'no description')}"
            )
        return data.get('result')

    def get_me(self):
        return self._call('getMe')

    def send_message(self, chat_id, text, reply_markup=None):
        payload = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return self._call('sendMessage', payload)

    def get_updates(self, offset=None, timeout=30):
        payload = {"timeout": timeout, "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        # Leave room for the long poll itself on top of the request timeout
        return self._call('getUpdates', payload, timeout=timeout + self.timeout)

    def set_webhook(self, url, secret_token=None):
        payload = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        return self._call('setWebhook', payload)

    def delete_webhook(self):
        return self._call('deleteWebhook')

    def close(self):
        self.session.close()
