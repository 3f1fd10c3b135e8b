import json
import logging
import secrets
import string
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import uuid4

from exceptions import (
    InvalidPayload,
    PromoCodesExhausted,
    SessionNotFound,
    StartupLoadFailure,
)

logger = logging.getLogger(__name__)

CONGRATULATIONS_TEXT = "🎉 Congratulations! All of your answers are correct.\nYour promo code: {promo_code}"
CONSOLATION_TEXT = "Thanks for taking part! You have been entered into the prize draw automatically."


def load_questions(file_path: str) -> List[dict]:
    """
    Load the question bank from a JSON file.

    The file holds an ordered list of question records, each with an integer
    ``answerIndex``. An object with a ``questions`` key is accepted too. Any
    failure is logged and an empty bank is returned so the process can keep
    serving in a degraded state.

    Args:
        file_path (str): Path to the JSON file

    Returns:
        List[dict]: The question records, in order
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as file:
            data = json.load(file)
        if isinstance(data, dict):
            data = data.get('questions')
        if not isinstance(data, list):
            raise StartupLoadFailure(f"{file_path} does not contain a list of questions")
        for position, question in enumerate(data):
            if not isinstance(question, dict) or not _is_index(question.get('answerIndex')):
                raise StartupLoadFailure(f"Question {position} in {file_path} has no integer answerIndex")
    except (OSError, ValueError, StartupLoadFailure) as e:
        logger.error(f"Failed to load questions from {file_path}: {e}")
        return []

    logger.info(f"Loaded {len(data)} questions from {file_path}")
    return data


def _is_index(value) -> bool:
    # bool is a subclass of int but never a valid answer index
    return isinstance(value, int) and not isinstance(value, bool)


class MemoryStore:
    """Process-local key/value store guarded by a lock."""

    def __init__(self):
        self._data: Dict[Any, Any] = {}
        self._lock = threading.Lock()

    def get(self, key, default=None):
        with self._lock:
            return self._data.get(key, default)

    def set(self, key, value):
        with self._lock:
            self._data[key] = value

    def pop(self, key, default=None):
        with self._lock:
            return self._data.pop(key, default)

    def put_if_absent(self, key, value) -> bool:
        """Store ``value`` unless ``key`` exists. Returns True if it was stored."""
        with self._lock:
            if key in self._data:
                return False
            self._data[key] = value
            return True

    def __contains__(self, key):
        with self._lock:
            return key in self._data

    def __len__(self):
        with self._lock:
            return len(self._data)


class SessionRegistry:
    """Maps one-time session ids to the chat that should receive the result."""

    def __init__(self, store: Optional[MemoryStore] = None):
        self._store = store if store is not None else MemoryStore()

    def create_session(self, recipient) -> str:
        session_id = str(uuid4())
        self._store.set(session_id, recipient)
        return session_id

    def resolve_and_consume(self, session_id: str):
        """
        Return the recipient bound to ``session_id`` and forget the binding.

        Unknown, expired and already used ids are reported the same way.

        Raises:
            SessionNotFound: If no binding exists for ``session_id``
        """
        # pop is atomic on the store, so only one caller can ever win
        recipient = self._store.pop(session_id)
        if recipient is None:
            raise SessionNotFound(session_id)
        return recipient

    def __len__(self):
        return len(self._store)


@dataclass(frozen=True)
class GradingResult:
    correct_count: int
    total: int
    all_correct: bool


def grade_answers(answers: List[Optional[int]], questions: List[dict]) -> GradingResult:
    """
    Compare submitted answers with the question bank, position by position.

    Missing or skipped (None) answers count as incorrect and answers past the
    end of the bank are ignored. An empty bank never counts as all correct.

    Args:
        answers (List[Optional[int]]): Selected option index per question
        questions (List[dict]): The question bank

    Returns:
        GradingResult: Number of correct answers, total and the all-correct flag
    """
    correct_count = 0
    for position, question in enumerate(questions):
        if position >= len(answers):
            break
        answer = answers[position]
        if _is_index(answer) and answer == question['answerIndex']:
            correct_count += 1

    total = len(questions)
    return GradingResult(
        correct_count=correct_count,
        total=total,
        all_correct=total > 0 and correct_count == total,
    )


class PromoIssuer:
    """Issues promo codes that are unique for the lifetime of the process."""

    ALPHABET = string.ascii_uppercase + string.digits

    def __init__(self, prefix: str = 'FREEBET', length: int = 4, store: Optional[MemoryStore] = None):
        self.prefix = prefix
        self.length = length
        self.capacity = len(self.ALPHABET) ** length
        self._issued = store if store is not None else MemoryStore()

    def issue(self) -> str:
        """
        Generate a new promo code and record it as issued.

        Raises:
            PromoCodesExhausted: If every possible code has been issued already
        """
        while True:
            if len(self._issued) >= self.capacity:
                raise PromoCodesExhausted(f"All {self.capacity} {self.prefix} codes have been issued")
            suffix = ''.join(secrets.choice(self.ALPHABET) for _ in range(self.length))
            code = f"{self.prefix}-{suffix}"
            if self._issued.put_if_absent(code, True):
                return code
            logger.debug(f"Promo code collision on {code}, regenerating")

    @property
    def issued_count(self) -> int:
        return len(self._issued)


@dataclass(frozen=True)
class ResultRecord:
    answers: List[Optional[int]]
    correct_count: int
    total: int
    all_correct: bool
    promo_code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "answers": list(self.answers),
            "correctCount": self.correct_count,
            "total": self.total,
            "allCorrect": self.all_correct,
            "promoCode": self.promo_code,
        }


class ResultStore:
    """Keeps the latest result per recipient. Each new submission overwrites the last."""

    def __init__(self, store: Optional[MemoryStore] = None):
        self._store = store if store is not None else MemoryStore()

    def save(self, recipient, record: ResultRecord):
        self._store.set(recipient, record)

    def get(self, recipient) -> Optional[ResultRecord]:
        return self._store.get(recipient)

    def __len__(self):
        return len(self._store)


@dataclass(frozen=True)
class SubmissionOutcome:
    recipient: Any
    result: GradingResult
    promo_code: Optional[str] = None


class QuizManager:
    def __init__(self, questions: List[dict], notifier, sessions: Optional[SessionRegistry] = None,
                 promos: Optional[PromoIssuer] = None, results: Optional[ResultStore] = None):
        """
        Initialize the QuizManager with a question bank and a notifier.

        Args:
            questions (List[dict]): The loaded question bank, read-only from here on
            notifier: Object with a ``dispatch(chat_id, text)`` method
            sessions (SessionRegistry): Session registry, in-memory by default
            promos (PromoIssuer): Promo issuer, in-memory by default
            results (ResultStore): Result store, in-memory by default
        """
        self.questions = questions
        self.notifier = notifier
        self.sessions = sessions if sessions is not None else SessionRegistry()
        self.promos = promos if promos is not None else PromoIssuer()
        self.results = results if results is not None else ResultStore()

    def start_session(self, recipient) -> str:
        """
        Open a one-time quiz session for a chat.

        Args:
            recipient: The chat id that will receive the result

        Returns:
            str: The new session id
        """
        session_id = self.sessions.create_session(recipient)
        logger.info(f"Created session {session_id} for chat {recipient}")
        return session_id

    def submit(self, payload) -> SubmissionOutcome:
        """
        Grade a submission from the web client and notify the chat.

        Validation and session lookup happen before anything is changed. Once
        the session is consumed, the result is stored and the chat is notified;
        notification failures are handled by the notifier and never raised here.

        Args:
            payload: Decoded request body, expected ``{"sessionId": str, "answers": [int, ...]}``

        Returns:
            SubmissionOutcome: Recipient, grading result and promo code (if any)

        Raises:
            InvalidPayload: If the payload has the wrong shape
            SessionNotFound: If the session is unknown or already used
        """
        session_id, answers = self._validate(payload)

        recipient = self.sessions.resolve_and_consume(session_id)
        result = grade_answers(answers, self.questions)
        logger.info(f"Chat {recipient} scored {result.correct_count}/{result.total}")

        promo_code = self.promos.issue() if result.all_correct else None
        self.results.save(recipient, ResultRecord(
            answers=answers,
            correct_count=result.correct_count,
            total=result.total,
            all_correct=result.all_correct,
            promo_code=promo_code,
        ))

        if promo_code:
            logger.info(f"Issued promo code {promo_code} to chat {recipient}")
            self.notifier.dispatch(recipient, CONGRATULATIONS_TEXT.format(promo_code=promo_code))
        else:
            self.notifier.dispatch(recipient, CONSOLATION_TEXT)

        return SubmissionOutcome(recipient=recipient, result=result, promo_code=promo_code)

    @staticmethod
    def _validate(payload):
        if not isinstance(payload, dict):
            raise InvalidPayload("Body must be a JSON object")

        session_id = payload.get('sessionId')
        answers = payload.get('answers')
        if not isinstance(session_id, str) or not session_id:
            raise InvalidPayload("sessionId must be a non-empty string")
        if not isinstance(answers, list):
            raise InvalidPayload("answers must be an array")
        if not all(answer is None or _is_index(answer) for answer in answers):
            raise InvalidPayload("answers must contain integers or null")

        return session_id, answers
