import asyncio
import json

import pytest
from pymongo.errors import AutoReconnect, DuplicateKeyError, WriteError

from app import exceptions, models
from app.services import progress
from app.services.diagnostics import log_to_file
from app.services.scoring import evaluate_answers
from conftest import make_test_doc


def _result(test_id="test_t1", score=2, total=5, passed_at="2026-10-01T10:00:00+00:00"):
    return models.TestResult(
        test_id=test_id,
        score=score,
        total_points=total,
        percentage=score * 100 / total,
        answers=[models.EvaluatedAnswer(question_id="Q1", option_id="A", correct=True, points=score)],
        time_spent=120,
        passed_at=passed_at,
    )


def _stored(mock_db, user_id):
    return mock_db.sync.user_progress.find_one({"user_id": user_id}, {"_id": 0})


def test_first_save_creates_aggregate(mock_db):
    saved = asyncio.run(progress.save_test_progress("user_1", "test_t1", _result()))

    assert saved.user_id == "user_1"
    assert list(saved.passed_tests) == ["test_t1"]
    assert saved.passed_tests["test_t1"] == _result()

    doc = _stored(mock_db, "user_1")
    assert doc["completed_lessons"] == []
    assert doc["solved_tasks"] == []
    assert doc["created_at"]
    assert doc["passed_tests"]["test_t1"]["score"] == 2


def test_save_is_idempotent(mock_db):
    result = _result()

    asyncio.run(progress.save_test_progress("user_1", "test_t1", result))
    first = _stored(mock_db, "user_1")["passed_tests"]
    asyncio.run(progress.save_test_progress("user_1", "test_t1", result))
    second = _stored(mock_db, "user_1")["passed_tests"]

    assert first == second
    assert list(second) == ["test_t1"]
    assert mock_db.sync.user_progress.count_documents({"user_id": "user_1"}) == 1


def test_resubmission_replaces_entry_in_place(mock_db):
    test = models.TestDefinition(**make_test_doc(points=(2, 3), correct=("A", "B")))
    first = evaluate_answers(test, [models.SubmittedAnswer(question_id="Q1", option_id="A"),
                                    models.SubmittedAnswer(question_id="Q2", option_id="C")])
    asyncio.run(progress.save_test_progress("user_1", "test_t0", _result(test_id="test_t0")))
    asyncio.run(progress.save_test_progress("user_1", "test_t1", first))
    asyncio.run(progress.save_test_progress("user_1", "test_t9", _result(test_id="test_t9")))

    second = evaluate_answers(test, [models.SubmittedAnswer(question_id="Q1", option_id="B"),
                                     models.SubmittedAnswer(question_id="Q2", option_id="B")])
    saved = asyncio.run(progress.save_test_progress("user_1", "test_t1", second))

    assert list(saved.passed_tests) == ["test_t0", "test_t1", "test_t9"]
    entry = saved.passed_tests["test_t1"]
    assert entry.score == 3
    assert entry.total_points == 5
    assert entry.percentage == 60.0


def test_many_writes_never_duplicate_a_test(mock_db):
    for user_id in ("user_1", "user_2"):
        for score in (1, 4, 2, 5):
            asyncio.run(progress.save_test_progress(user_id, "test_t1", _result(score=score)))

    for user_id in ("user_1", "user_2"):
        doc = _stored(mock_db, user_id)
        assert list(doc["passed_tests"]) == ["test_t1"]
        assert doc["passed_tests"]["test_t1"]["score"] == 5


def test_concurrent_saves_keep_one_entry(mock_db):
    async def race():
        await asyncio.gather(*[
            progress.save_test_progress("user_1", "test_t1", _result(score=s)) for s in (1, 2, 3)
        ])

    asyncio.run(race())

    doc = _stored(mock_db, "user_1")
    assert list(doc["passed_tests"]) == ["test_t1"]
    assert doc["passed_tests"]["test_t1"]["score"] in (1, 2, 3)


def test_transient_failure_is_retried(mock_db, progress_config):
    mock_db.user_progress.fail_next("find_one_and_update", times=2)

    saved = asyncio.run(progress.save_test_progress("user_1", "test_t1", _result()))

    assert "test_t1" in saved.passed_tests
    assert mock_db.user_progress.calls.count("find_one_and_update") == 3
    assert not progress_config.PROGRESS_ERROR_LOG.exists()


def test_duplicate_key_race_on_new_aggregate_is_retried(mock_db):
    mock_db.user_progress.fail_next("find_one_and_update", times=1, error=DuplicateKeyError("E11000"))

    saved = asyncio.run(progress.save_test_progress("user_1", "test_t1", _result()))

    assert list(saved.passed_tests) == ["test_t1"]


def test_exhausted_attempts_raise_and_write_diagnostic_log(mock_db, progress_config):
    mock_db.user_progress.fail_next("find_one_and_update", times=3, error=AutoReconnect("primary down"))

    with pytest.raises(exceptions.ProgressPersistenceFailure) as exc_info:
        asyncio.run(progress.save_test_progress("user_1", "test_t1", _result()))

    failure = exc_info.value
    assert failure.user_id == "user_1"
    assert failure.test_id == "test_t1"
    assert [e.attempt for e in failure.errors] == [1, 2, 3]
    assert failure.payload["score"] == 2

    log_text = progress_config.PROGRESS_ERROR_LOG.read_text(encoding="utf-8")
    assert "All attempts to save test progress failed" in log_text
    body = json.loads(log_text.split("\n", 1)[1].strip())
    assert body["test_id"] == "test_t1"
    assert body["test_data"]["total_points"] == 5
    assert [e["error"] for e in body["errors"]] == ["primary down"] * 3
    assert _stored(mock_db, "user_1") is None


def test_single_attempt_configuration(mock_db, progress_config, monkeypatch):
    monkeypatch.setattr(progress_config, "PROGRESS_SAVE_ATTEMPTS", 1)
    mock_db.user_progress.fail_next("find_one_and_update", times=1)

    with pytest.raises(exceptions.ProgressPersistenceFailure) as exc_info:
        asyncio.run(progress.save_test_progress("user_1", "test_t1", _result()))

    assert len(exc_info.value.errors) == 1


@pytest.mark.parametrize("test_id", ["", "test.1", "$where"])
def test_unusable_test_ids_are_rejected(mock_db, test_id):
    with pytest.raises(exceptions.ValidationFailure):
        asyncio.run(progress.save_test_progress("user_1", test_id, _result()))

    assert "find_one_and_update" not in mock_db.user_progress.calls


def test_legacy_list_aggregate_is_read_and_upgraded(mock_db):
    mock_db.sync.user_progress.insert_one({
        "user_id": "user_1",
        "completedLessons": [],
        "passed_tests": [
            {"test": "test_t1", "score": 1, "total_points": 5, "percentage": 20},
            {"test": "test_t2", "score": 4, "total_points": 4, "percentage": 100},
            {"test": "test_t1", "score": 3, "total_points": 5, "percentage": 60},
        ],
    })

    legacy = asyncio.run(progress.get_user_progress("user_1"))
    assert list(legacy.passed_tests) == ["test_t1", "test_t2"]
    assert legacy.passed_tests["test_t1"].score == 3

    assert asyncio.run(progress.upgrade_legacy_aggregate("user_1")) is True
    assert asyncio.run(progress.upgrade_legacy_aggregate("user_1")) is False

    saved = asyncio.run(progress.save_test_progress("user_1", "test_t3", _result(test_id="test_t3")))
    assert list(saved.passed_tests) == ["test_t1", "test_t2", "test_t3"]


def _seed_legacy_aggregate(mock_db):
    mock_db.sync.user_progress.insert_one({
        "user_id": "user_1",
        "passed_tests": [
            {"test": "test_t1", "score": 1, "total_points": 5, "percentage": 20},
            {"test": "test_t2", "score": 4, "total_points": 4, "percentage": 100},
        ],
    })
    # the server refuses a keyed $set on an array field
    mock_db.user_progress.fail_next(
        "find_one_and_update", times=1,
        error=WriteError("Cannot create field 'test_t1' in element {passed_tests: [...]}", code=28),
    )


def test_failed_write_on_legacy_aggregate_upgrades_and_retries(mock_db, progress_config):
    _seed_legacy_aggregate(mock_db)

    saved = asyncio.run(progress.save_test_progress("user_1", "test_t1", _result(score=5)))

    assert list(saved.passed_tests) == ["test_t1", "test_t2"]
    assert saved.passed_tests["test_t1"].score == 5
    assert "update_one" in mock_db.user_progress.calls
    assert mock_db.user_progress.calls.count("find_one_and_update") == 2

    doc = _stored(mock_db, "user_1")
    assert isinstance(doc["passed_tests"], dict)
    assert doc["passed_tests"]["test_t1"]["score"] == 5
    assert doc["passed_tests"]["test_t2"]["score"] == 4
    assert not progress_config.PROGRESS_ERROR_LOG.exists()


def test_legacy_aggregate_is_written_with_single_attempt(mock_db, progress_config, monkeypatch):
    monkeypatch.setattr(progress_config, "PROGRESS_SAVE_ATTEMPTS", 1)
    _seed_legacy_aggregate(mock_db)

    saved = asyncio.run(progress.save_test_progress("user_1", "test_t1", _result(score=5)))

    assert saved.passed_tests["test_t1"].score == 5
    assert mock_db.user_progress.calls.count("find_one_and_update") == 2


def test_get_passed_test(mock_db):
    assert asyncio.run(progress.get_passed_test("user_1", "test_t1")) is None

    asyncio.run(progress.save_test_progress("user_1", "test_t1", _result()))

    assert asyncio.run(progress.get_passed_test("user_1", "test_t1")).score == 2
    assert asyncio.run(progress.get_passed_test("user_1", "test_other")) is None


def test_diagnostic_log_appends_blocks_and_follows_configured_path(progress_config, tmp_path, monkeypatch):
    log_to_file("first failure", {"test_id": "test_t1"})
    log_to_file("second failure", {"test_id": "test_t2", "when": object()})

    blocks = progress_config.PROGRESS_ERROR_LOG.read_text(encoding="utf-8").strip().split("\n\n")
    assert len(blocks) == 2
    assert "first failure" in blocks[0]
    assert json.loads(blocks[0].split("\n", 1)[1])["test_id"] == "test_t1"
    assert json.loads(blocks[1].split("\n", 1)[1])["test_id"] == "test_t2"

    other = tmp_path / "elsewhere" / "errors.log"
    monkeypatch.setattr(progress_config, "PROGRESS_ERROR_LOG", other)
    log_to_file("third failure", {"test_id": "test_t3"})

    assert "third failure" in other.read_text(encoding="utf-8")
    assert "third failure" not in blocks[0] + blocks[1]
