import json
import re
import threading

import pytest

from exceptions import InvalidPayload, PromoCodesExhausted, SessionNotFound
from quiz_manager import (
    CONSOLATION_TEXT,
    GradingResult,
    MemoryStore,
    PromoIssuer,
    QuizManager,
    ResultRecord,
    ResultStore,
    SessionRegistry,
    grade_answers,
    load_questions,
)

BANK = [{"answerIndex": 1}, {"answerIndex": 0}]


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def dispatch(self, chat_id, text):
        self.messages.append((chat_id, text))


# --- question bank ---

def test_load_questions_reads_list(questions_file):
    questions = load_questions(questions_file)
    assert [q["answerIndex"] for q in questions] == [1, 0]


def test_load_questions_accepts_questions_key(tmp_path):
    path = tmp_path / "bank.json"
    path.write_text(json.dumps({"questions": BANK}))
    assert load_questions(str(path)) == BANK


def test_load_questions_missing_file_returns_empty(tmp_path, caplog):
    assert load_questions(str(tmp_path / "nope.json")) == []
    assert "Failed to load questions" in caplog.text


def test_load_questions_invalid_json_returns_empty(tmp_path):
    path = tmp_path / "bank.json"
    path.write_text("{not json")
    assert load_questions(str(path)) == []


def test_load_questions_without_answer_index_returns_empty(tmp_path):
    path = tmp_path / "bank.json"
    path.write_text(json.dumps([{"answerIndex": 1}, {"question": "no answer"}]))
    assert load_questions(str(path)) == []


# --- store and registry ---

def test_memory_store_put_if_absent():
    store = MemoryStore()
    assert store.put_if_absent("k", 1) is True
    assert store.put_if_absent("k", 2) is False
    assert store.get("k") == 1
    assert len(store) == 1


def test_session_is_single_use():
    registry = SessionRegistry()
    session_id = registry.create_session(42)
    assert registry.resolve_and_consume(session_id) == 42
    with pytest.raises(SessionNotFound):
        registry.resolve_and_consume(session_id)
    assert len(registry) == 0


def test_session_ids_are_unique():
    registry = SessionRegistry()
    ids = {registry.create_session(1) for _ in range(200)}
    assert len(ids) == 200


def test_unknown_session_not_found():
    with pytest.raises(SessionNotFound):
        SessionRegistry().resolve_and_consume("never-issued")


def test_concurrent_resolution_has_one_winner():
    registry = SessionRegistry()
    session_id = registry.create_session(7)
    barrier = threading.Barrier(8)
    winners = []

    def attempt():
        barrier.wait()
        try:
            winners.append(registry.resolve_and_consume(session_id))
        except SessionNotFound:
            pass

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert winners == [7]


def test_registry_uses_injected_store():
    store = MemoryStore()
    registry = SessionRegistry(store)
    session_id = registry.create_session(5)
    assert store.get(session_id) == 5


# --- grading ---

def test_grade_all_correct():
    assert grade_answers([1, 0], BANK) == GradingResult(correct_count=2, total=2, all_correct=True)


def test_grade_single_mismatch():
    assert grade_answers([1, 1], BANK) == GradingResult(correct_count=1, total=2, all_correct=False)


def test_grade_short_answers_count_as_wrong():
    assert grade_answers([1], BANK) == GradingResult(correct_count=1, total=2, all_correct=False)


def test_grade_ignores_extra_answers():
    assert grade_answers([1, 0, 3, 3], BANK).all_correct is True


def test_grade_skipped_answers():
    assert grade_answers([None, 0], BANK).correct_count == 1


def test_grade_booleans_do_not_match():
    # True == 1 in Python, but a boolean is not an answer index
    assert grade_answers([True, False], BANK).correct_count == 0


def test_grade_empty_bank_is_not_all_correct():
    assert grade_answers([], []) == GradingResult(correct_count=0, total=0, all_correct=False)


def test_grade_is_deterministic():
    answers = [1, 3, 0]
    assert grade_answers(answers, BANK) == grade_answers(answers, BANK)


# --- promo codes ---

def test_promo_code_shape():
    code = PromoIssuer().issue()
    assert re.fullmatch(r"FREEBET-[A-Z0-9]{4}", code)


def test_promo_codes_are_distinct():
    issuer = PromoIssuer()
    codes = [issuer.issue() for _ in range(500)]
    assert len(set(codes)) == 500
    assert issuer.issued_count == 500


def test_promo_codes_exhausted():
    issuer = PromoIssuer(prefix="T", length=1)
    codes = {issuer.issue() for _ in range(36)}
    assert len(codes) == 36
    with pytest.raises(PromoCodesExhausted):
        issuer.issue()


# --- results ---

def test_result_store_overwrites():
    results = ResultStore()
    results.save(1, ResultRecord(answers=[0], correct_count=0, total=2, all_correct=False))
    results.save(1, ResultRecord(answers=[1, 0], correct_count=2, total=2, all_correct=True, promo_code="FREEBET-AB12"))
    assert results.get(1).to_dict() == {
        "answers": [1, 0],
        "correctCount": 2,
        "total": 2,
        "allCorrect": True,
        "promoCode": "FREEBET-AB12",
    }
    assert results.get(2) is None


# --- coordinator ---

@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def manager(notifier):
    return QuizManager(BANK, notifier)


def test_submit_all_correct_issues_promo(manager, notifier):
    session_id = manager.start_session(100)
    outcome = manager.submit({"sessionId": session_id, "answers": [1, 0]})

    assert outcome.result == GradingResult(correct_count=2, total=2, all_correct=True)
    assert re.fullmatch(r"FREEBET-[A-Z0-9]{4}", outcome.promo_code)
    assert notifier.messages == [(100, f"🎉 Congratulations! All of your answers are correct.\nYour promo code: {outcome.promo_code}")]
    assert manager.results.get(100).promo_code == outcome.promo_code


def test_submit_with_mistake_sends_consolation(manager, notifier):
    session_id = manager.start_session(100)
    outcome = manager.submit({"sessionId": session_id, "answers": [1, 1]})

    assert outcome.result.correct_count == 1
    assert outcome.promo_code is None
    assert manager.promos.issued_count == 0
    assert notifier.messages == [(100, CONSOLATION_TEXT)]
    assert manager.results.get(100).answers == [1, 1]


def test_submit_twice_with_same_session(manager, notifier):
    session_id = manager.start_session(100)
    manager.submit({"sessionId": session_id, "answers": [1, 0]})
    with pytest.raises(SessionNotFound):
        manager.submit({"sessionId": session_id, "answers": [1, 0]})
    assert len(notifier.messages) == 1
    assert manager.promos.issued_count == 1


def test_submit_unknown_session_has_no_effects(manager, notifier):
    with pytest.raises(SessionNotFound):
        manager.submit({"sessionId": "random-string", "answers": [1, 0]})
    assert notifier.messages == []
    assert manager.promos.issued_count == 0
    assert len(manager.results) == 0


@pytest.mark.parametrize("payload", [
    None,
    [],
    {"answers": [1, 0]},
    {"sessionId": "", "answers": [1, 0]},
    {"sessionId": 123, "answers": [1, 0]},
    {"sessionId": "abc", "answers": "1,0"},
    {"sessionId": "abc"},
    {"sessionId": "abc", "answers": [1, "0"]},
    {"sessionId": "abc", "answers": [1.5]},
])
def test_submit_invalid_payload_leaves_session(manager, payload):
    session_id = manager.start_session(100)
    with pytest.raises(InvalidPayload):
        manager.submit(payload)
    assert len(manager.sessions) == 1
    # The session is still usable afterwards
    manager.submit({"sessionId": session_id, "answers": [1, 0]})


def test_later_submission_overwrites_result(manager):
    first = manager.start_session(100)
    second = manager.start_session(100)
    manager.submit({"sessionId": first, "answers": [1, 0]})
    manager.submit({"sessionId": second, "answers": [0, 0]})
    assert manager.results.get(100).correct_count == 1
    assert manager.results.get(100).all_correct is False


def test_empty_bank_never_awards_promo(notifier):
    manager = QuizManager([], notifier)
    session_id = manager.start_session(100)
    outcome = manager.submit({"sessionId": session_id, "answers": []})
    assert outcome.result.all_correct is False
    assert outcome.promo_code is None
    assert notifier.messages == [(100, CONSOLATION_TEXT)]
