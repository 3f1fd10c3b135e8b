import json
import time

import pytest

from app import create_app
from exceptions import TelegramAPIError


class FakeTelegramClient:
    """Stands in for TelegramClient and records every call."""

    def __init__(self):
        self.sent = []
        self.fail_sends = 0
        self.updates = []
        self.webhooks = []
        self.deleted_webhooks = 0
        self.closed = False
        self.username = "FreebetQuizBot"

    def get_me(self):
        return {"id": 1, "is_bot": True, "username": self.username}

    def send_message(self, chat_id, text, reply_markup=None):
        if self.fail_sends:
            self.fail_sends -= 1
            raise TelegramAPIError("sendMessage failed with 502: Bad Gateway")
        self.sent.append({"chat_id": chat_id, "text": text, "reply_markup": reply_markup})
        return {"message_id": len(self.sent)}

    def get_updates(self, offset=None, timeout=30):
        batch, self.updates = self.updates, []
        if not batch:
            # Keep a running poller from spinning
            time.sleep(0.01)
        return batch

    def set_webhook(self, url, secret_token=None):
        self.webhooks.append((url, secret_token))
        return True

    def delete_webhook(self):
        self.deleted_webhooks += 1
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def questions_file(tmp_path):
    """Two-question bank: the correct answers are [1, 0]."""
    path = tmp_path / "questions.json"
    path.write_text(json.dumps([
        {"question": "Q1", "options": ["a", "b"], "answerIndex": 1},
        {"question": "Q2", "options": ["a", "b"], "answerIndex": 0},
    ]))
    return str(path)


@pytest.fixture
def fake_client():
    return FakeTelegramClient()


@pytest.fixture
def app(questions_file, fake_client):
    app = create_app({
        "TESTING": True,
        "BOT_TOKEN": "test-token",
        "QUESTIONS_PATH": questions_file,
        "WEB_URL": "https://quiz.example",
        "BOT_MODE": "polling",
        "TELEGRAM_SECRET_TOKEN": "",
        "NOTIFY_ASYNC": False,
        "NOTIFY_BACKOFF": 0,
    }, telegram_client=fake_client)
    yield app
    app.extensions['quizbot'].stop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runtime(app):
    return app.extensions['quizbot']
