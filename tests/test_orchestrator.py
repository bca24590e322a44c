"""Tests for the submission orchestrator."""
from datetime import datetime, timezone, timedelta

import pytest

from models.submission_result import SubmissionResult
from models.submission_task import SubmissionTask
from models.validation_result import ValidationResult
from services.exceptions import AuthenticationError


def failed(message):
    return SubmissionResult(success=False, errors=[message])


def half_open(orchestrator, servicer_id="chase"):
    """Trip the breaker and let its open timeout lapse"""
    breaker = orchestrator.get_circuit_breaker(servicer_id)
    for _ in range(breaker.failure_threshold):
        breaker.record_failure()
    breaker.last_failure_time = datetime.now(timezone.utc) - timedelta(milliseconds=breaker.timeout_ms + 1000)
    return breaker


async def submit(orchestrator, application, priority="urgent", **kwargs):
    return await orchestrator.submit_document(
        transaction_id="txn-1",
        servicer_id=kwargs.pop("servicer_id", "chase"),
        document_type="loss_mitigation_package",
        document_data=application,
        priority=priority,
        **kwargs
    )


class TestSubmitDocument:
    """Tests for accepting submissions."""

    @pytest.mark.asyncio
    async def test_urgent_submission_completes_synchronously(self, orchestrator, sample_application, memory_db, stub_adapter):
        result = await submit(orchestrator, sample_application, "urgent")

        assert result["success"] is True
        assert result["status"] == "completed"
        assert result["confirmation_number"] == "CONF-1"
        assert result["tracking_number"] == "TRK-1"
        assert stub_adapter.submit_calls == 1

        record = memory_db.records[result["task_id"]]
        assert record["status"] == "completed"
        assert record["confirmation_number"] == "CONF-1"
        assert record["submitted_at"] is not None

    @pytest.mark.asyncio
    async def test_high_priority_is_processed_immediately(self, orchestrator, sample_application, stub_adapter):
        result = await submit(orchestrator, sample_application, "high")

        assert result["status"] == "completed"
        assert stub_adapter.submit_calls == 1

    @pytest.mark.asyncio
    async def test_normal_submission_is_queued(self, orchestrator, sample_application, memory_db, stub_adapter):
        result = await submit(orchestrator, sample_application, "normal")

        assert result["success"] is True
        assert result["status"] == "queued"
        assert result["scheduled_in_ms"] == 1800000
        assert orchestrator.queue.is_scheduled(result["task_id"])
        assert memory_db.records[result["task_id"]]["status"] == "pending"
        assert stub_adapter.submit_calls == 0

    @pytest.mark.asyncio
    async def test_task_gets_priority_retry_budget(self, orchestrator, sample_application):
        result = await submit(orchestrator, sample_application, "low")

        assert orchestrator.tasks[result["task_id"]].max_retries == 2

    @pytest.mark.asyncio
    async def test_invalid_priority_is_rejected(self, orchestrator, sample_application, memory_db):
        result = await submit(orchestrator, sample_application, "critical")

        assert result["success"] is False
        assert "Invalid priority" in result["error"]
        assert memory_db.records == {}

    @pytest.mark.asyncio
    async def test_unknown_servicer_is_rejected(self, orchestrator, sample_application, memory_db):
        result = await submit(orchestrator, sample_application, "normal", servicer_id="nobody")

        assert result["success"] is False
        assert "nobody" in result["error"]
        assert memory_db.records == {}

    @pytest.mark.asyncio
    async def test_servicer_id_is_normalized(self, orchestrator, sample_application):
        result = await submit(orchestrator, sample_application, "normal", servicer_id="CHASE")

        assert orchestrator.tasks[result["task_id"]].servicer_id == "chase"

    @pytest.mark.asyncio
    async def test_initial_insert_failure_propagates(self, orchestrator, sample_application, memory_db):
        memory_db.fail_inserts = True

        with pytest.raises(ConnectionError):
            await submit(orchestrator, sample_application, "normal")

        assert orchestrator.tasks == {}

    @pytest.mark.asyncio
    async def test_dict_document_data_is_accepted(self, orchestrator, sample_application, stub_adapter):
        result = await submit(orchestrator, sample_application.model_dump(mode="json"), "urgent")

        assert result["status"] == "completed"


class TestRetries:
    """Tests for failure handling."""

    @pytest.mark.asyncio
    async def test_transient_failure_schedules_retry(self, orchestrator, sample_application, stub_adapter, memory_db):
        stub_adapter.outcomes = [failed("Service unavailable")]
        before = datetime.now(timezone.utc)

        result = await submit(orchestrator, sample_application, "urgent")

        assert result["success"] is False
        assert result["retry_scheduled"] is True
        assert result["retry_count"] == 1
        task = orchestrator.tasks[result["task_id"]]
        assert task.status == "pending"
        assert orchestrator.queue.is_scheduled(task.id)
        # base delay with no jitter
        assert before + timedelta(milliseconds=1000) <= task.next_retry
        assert task.next_retry <= datetime.now(timezone.utc) + timedelta(milliseconds=1000)
        assert task.error_history[0]["error"] == "Service unavailable"
        assert task.error_history[0]["context"]["error_type"] == "transient"
        assert memory_db.records[task.id]["retry_count"] == 1

    @pytest.mark.asyncio
    async def test_authentication_failure_is_terminal(self, orchestrator, sample_application, stub_adapter, escalations):
        stub_adapter.outcomes = [AuthenticationError("Chase authentication failed (HTTP 401)")]
        queued = await submit(orchestrator, sample_application, "normal")
        task = orchestrator.tasks[queued["task_id"]]

        result = await orchestrator.process_task(task)

        assert result["retry_scheduled"] is False
        assert result["requires_escalation"] is False
        assert task.status == "failed"
        assert task.error_history[-1]["context"]["error_type"] == "authentication"
        assert not orchestrator.queue.is_scheduled(task.id)
        assert escalations == []
        assert orchestrator.get_circuit_breaker("chase").failure_count == 1

    @pytest.mark.asyncio
    async def test_validation_failure_on_urgent_task_escalates(self, orchestrator, sample_application, stub_adapter, escalations):
        stub_adapter.validation = ValidationResult.from_findings(["Missing required documents: tax_return"], [], [])

        result = await submit(orchestrator, sample_application, "urgent")

        assert result["requires_escalation"] is True
        assert result["status"] == "failed"
        assert "Package validation failed" in result["error"]
        assert stub_adapter.submit_calls == 0
        assert escalations == [(result["task_id"], result["error"])]
        assert orchestrator.tasks[result["task_id"]].meta_data["requires_escalation"] is True

    @pytest.mark.asyncio
    async def test_repeated_identical_errors_escalate_after_budget(self, orchestrator, sample_application, stub_adapter, escalations):
        stub_adapter.outcomes = [failed("Service unavailable") for _ in range(4)]
        queued = await submit(orchestrator, sample_application, "normal")
        task = orchestrator.tasks[queued["task_id"]]

        results = [await orchestrator.process_task(task) for _ in range(4)]

        assert [r["retry_scheduled"] for r in results] == [True, True, True, False]
        assert task.retry_count == 3
        assert task.status == "failed"
        assert results[-1]["requires_escalation"] is True
        assert len(escalations) == 1

    @pytest.mark.asyncio
    async def test_deadline_inside_window_escalates(self, orchestrator, sample_application, stub_adapter, escalations):
        stub_adapter.outcomes = [AuthenticationError("Chase authentication failed (HTTP 403)")]
        deadline = (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat()
        queued = await submit(orchestrator, sample_application, "normal", metadata={"deadline": deadline})

        result = await orchestrator.process_task(orchestrator.tasks[queued["task_id"]])

        assert result["requires_escalation"] is True
        assert len(escalations) == 1

    @pytest.mark.asyncio
    async def test_invalid_document_data_fails_without_retry(self, orchestrator, stub_adapter):
        queued = await submit(orchestrator, {"case_id": "only"}, "normal")
        task = orchestrator.tasks[queued["task_id"]]

        result = await orchestrator.process_task(task)

        assert task.status == "failed"
        assert "Invalid document data" in result["error"]
        assert stub_adapter.submit_calls == 0

    @pytest.mark.asyncio
    async def test_terminal_task_is_not_attempted_again(self, orchestrator, sample_application, stub_adapter):
        result = await submit(orchestrator, sample_application, "urgent")
        task = orchestrator.tasks[result["task_id"]]

        again = await orchestrator.process_task(task)

        assert again["status"] == "completed"
        assert again["success"] is True
        assert stub_adapter.submit_calls == 1

    @pytest.mark.asyncio
    async def test_escalation_flag_survives_in_terminal_result(self, orchestrator, sample_application, stub_adapter):
        stub_adapter.validation = ValidationResult.from_findings(["Missing required documents: tax_return"], [], [])
        result = await submit(orchestrator, sample_application, "urgent")

        again = await orchestrator.process_task(orchestrator.tasks[result["task_id"]])

        assert again["status"] == "failed"
        assert again["requires_escalation"] is True

    @pytest.mark.asyncio
    async def test_task_lock_is_released_once_terminal(self, orchestrator, sample_application):
        result = await submit(orchestrator, sample_application, "urgent")

        assert result["status"] == "completed"
        assert result["task_id"] not in orchestrator._task_locks

    @pytest.mark.asyncio
    async def test_async_escalation_handler_is_awaited(self, orchestrator, sample_application, stub_adapter):
        handled = []

        async def handler(task, reason):
            handled.append(task["id"])

        orchestrator.escalation_handler = handler
        stub_adapter.validation = ValidationResult.from_findings(["bad package"], [], [])

        result = await submit(orchestrator, sample_application, "urgent")

        assert handled == [result["task_id"]]


class TestCircuitBreaking:
    """Tests for per-servicer circuit breakers."""

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast_and_waits_out_the_timeout(self, orchestrator, sample_application, stub_adapter):
        breaker = orchestrator.get_circuit_breaker("chase")
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == "open"

        result = await submit(orchestrator, sample_application, "urgent")

        assert stub_adapter.submit_calls == 0
        assert result["retry_scheduled"] is True
        assert "Circuit breaker open" in result["error"]
        task = orchestrator.tasks[result["task_id"]]
        assert task.error_history[-1]["context"]["error_type"] == "circuit_open"
        assert task.next_retry >= datetime.now(timezone.utc) + timedelta(seconds=59)
        # A refused call is not counted against the servicer
        assert breaker.failure_count == 2

    @pytest.mark.asyncio
    async def test_outstanding_probe_delays_retry_until_probe_window_ends(self, orchestrator, sample_application, stub_adapter):
        breaker = half_open(orchestrator)
        assert breaker.is_open() is False

        queued = await submit(orchestrator, sample_application, "normal")
        task = orchestrator.tasks[queued["task_id"]]
        result = await orchestrator.process_task(task)

        assert stub_adapter.submit_calls == 0
        assert result["retry_scheduled"] is True
        assert "Circuit breaker open" in result["error"]
        assert task.next_retry >= datetime.now(timezone.utc) + timedelta(seconds=59)

    @pytest.mark.asyncio
    async def test_failed_probe_reopens_the_breaker(self, orchestrator, sample_application, stub_adapter, memory_db):
        breaker = half_open(orchestrator)
        stub_adapter.outcomes = [failed("Service unavailable")]

        result = await submit(orchestrator, sample_application, "urgent")

        assert result["retry_scheduled"] is True
        assert breaker.state == "open"
        assert memory_db.breaker_states["chase"]["state"] == "open"

    @pytest.mark.asyncio
    async def test_probe_slot_is_released_when_servicer_is_not_contacted(self, orchestrator, sample_application, stub_adapter):
        breaker = half_open(orchestrator)
        stub_adapter.validation = ValidationResult.from_findings(["Missing required documents: tax_return"], [], [])

        await submit(orchestrator, sample_application, "urgent")

        assert stub_adapter.submit_calls == 0
        assert breaker.state == "half-open"
        assert breaker.is_open() is False

    @pytest.mark.asyncio
    async def test_local_validation_failures_do_not_open_the_breaker(self, orchestrator, sample_application, stub_adapter):
        stub_adapter.validation = ValidationResult.from_findings(["Missing required documents: tax_return"], [], [])
        for _ in range(2):
            queued = await submit(orchestrator, sample_application, "normal")
            await orchestrator.process_task(orchestrator.tasks[queued["task_id"]])

        breaker = orchestrator.get_circuit_breaker("chase")
        assert breaker.state == "closed"
        assert breaker.failure_count == 0

        stub_adapter.validation = ValidationResult()
        result = await submit(orchestrator, sample_application, "urgent")

        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_terminal_failures_open_the_breaker(self, orchestrator, sample_application, stub_adapter, memory_db):
        stub_adapter.outcomes = [AuthenticationError("authentication failed") for _ in range(2)]

        for _ in range(2):
            queued = await submit(orchestrator, sample_application, "normal")
            await orchestrator.process_task(orchestrator.tasks[queued["task_id"]])

        assert orchestrator.get_circuit_breaker("chase").state == "open"
        assert memory_db.breaker_states["chase"]["state"] == "open"

    @pytest.mark.asyncio
    async def test_breakers_are_created_per_servicer(self, orchestrator):
        assert orchestrator.get_circuit_breaker("Chase") is orchestrator.get_circuit_breaker("chase")
        assert orchestrator.get_circuit_breaker("bofa") is not orchestrator.get_circuit_breaker("chase")

    @pytest.mark.asyncio
    async def test_start_restores_persisted_breakers(self, orchestrator, memory_db):
        memory_db.breaker_states["chase"] = {
            "servicer_id": "chase",
            "state": "open",
            "failure_count": 2,
            "success_count": 0,
            "last_failure_time": datetime.now(timezone.utc).isoformat()
        }

        await orchestrator.start()
        try:
            assert orchestrator.is_running is True
            assert orchestrator.get_circuit_breaker("chase").state == "open"
            assert orchestrator.get_circuit_breaker("chase").is_open() is True
        finally:
            await orchestrator.stop()

        assert orchestrator.is_running is False


class TestPersistence:
    """Tests for tolerating persistence outages."""

    @pytest.mark.asyncio
    async def test_update_failures_do_not_block_submission(self, orchestrator, sample_application, memory_db):
        memory_db.fail_updates = True

        result = await submit(orchestrator, sample_application, "urgent")

        assert result["success"] is True
        assert result["task_id"] in orchestrator.unsynced_tasks
        assert orchestrator.persistence_failures >= 2
        assert memory_db.records[result["task_id"]]["status"] == "pending"

        memory_db.fail_updates = False
        await orchestrator.monitor_queue_health()

        assert orchestrator.unsynced_tasks == set()
        assert memory_db.records[result["task_id"]]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_get_task_falls_back_to_persistence(self, orchestrator, sample_application):
        result = await submit(orchestrator, sample_application, "urgent")
        orchestrator.tasks.pop(result["task_id"])

        task = await orchestrator.get_task(result["task_id"])

        assert task is not None
        assert task.status == "completed"
        assert await orchestrator.get_task("sub_missing") is None

    @pytest.mark.asyncio
    async def test_transaction_tasks_merge_registry_and_persistence(self, orchestrator, sample_application):
        first = await submit(orchestrator, sample_application, "urgent")
        second = await submit(orchestrator, sample_application, "normal")
        orchestrator.tasks.pop(first["task_id"])

        tasks = await orchestrator.get_transaction_tasks("txn-1")

        assert [task.id for task in tasks] == [first["task_id"], second["task_id"]]
        assert tasks[1] is orchestrator.tasks[second["task_id"]]
        assert await orchestrator.get_transaction_tasks("txn-other") == []


class TestChannelsAndEscalation:
    """Tests for channel selection and escalation rules."""

    def test_default_channel_without_intelligence(self, orchestrator):
        assert orchestrator.select_submission_channel(None) == "portal"
        assert orchestrator.select_submission_channel({"patterns": {}}) == "portal"

    def test_channel_with_best_success_rate_wins(self, orchestrator):
        intelligence = {
            "patterns": {
                "submission_channels": {
                    "email": {"success_rate": 0.4},
                    "api": {"success_rate": 0.9},
                    "portal": {"success_rate": 0.7}
                }
            }
        }

        assert orchestrator.select_submission_channel(intelligence) == "api"

    @pytest.mark.asyncio
    async def test_selected_channel_is_recorded(self, orchestrator, sample_application, intelligence_service):
        result = await submit(orchestrator, sample_application, "urgent")

        assert result["submission_channel"] == "portal"
        intelligence = await intelligence_service.get_servicer_intelligence("chase")
        assert intelligence["patterns"]["submission_channels"]["portal"]["successes"] == 1

    def _task(self, priority="normal", metadata=None):
        return SubmissionTask.create("txn-1", "chase", "loss_mitigation_package", priority, 3, metadata)

    def test_immediate_priorities_always_escalate(self, orchestrator):
        assert orchestrator.check_escalation_criteria(self._task("high")) is True
        assert orchestrator.check_escalation_criteria(self._task("normal")) is False

    def test_identical_recent_errors_escalate(self, orchestrator):
        task = self._task()
        for _ in range(3):
            task.add_error("Service unavailable")

        assert orchestrator.check_escalation_criteria(task) is True

    def test_mixed_recent_errors_do_not_escalate(self, orchestrator):
        task = self._task()
        task.add_error("Service unavailable")
        task.add_error("Gateway timeout")
        task.add_error("Service unavailable")

        assert orchestrator.check_escalation_criteria(task) is False

    def test_distant_deadline_does_not_escalate(self, orchestrator):
        deadline = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()

        assert orchestrator.check_escalation_criteria(self._task(metadata={"deadline": deadline})) is False

    def test_unparseable_deadline_is_ignored(self, orchestrator):
        assert orchestrator.check_escalation_criteria(self._task(metadata={"deadline": "next week"})) is False


class TestReporting:
    """Tests for status, stats and health."""

    @pytest.mark.asyncio
    async def test_queue_stats(self, orchestrator, sample_application):
        await submit(orchestrator, sample_application, "urgent")
        await submit(orchestrator, sample_application, "normal")

        stats = await orchestrator.get_queue_stats()

        assert stats["queue_size"] == 2
        assert stats["by_status"]["completed"] == 1
        assert stats["by_status"]["pending"] == 1
        assert stats["by_priority"]["urgent"] == 1
        assert stats["by_servicer"] == {"chase": 2}
        assert stats["success_rate"] == 0.5
        assert stats["scheduled"] == 1
        assert stats["circuit_breakers"] == {"chase": "closed"}
        assert stats["persistence"] == {"failures": 0, "unsynced_tasks": 0}

    @pytest.mark.asyncio
    async def test_empty_queue_stats(self, orchestrator):
        stats = await orchestrator.get_queue_stats()

        assert stats["queue_size"] == 0
        assert stats["success_rate"] == 0
        assert stats["average_retries"] == 0

    @pytest.mark.asyncio
    async def test_health_warns_about_backlog(self, orchestrator, sample_application):
        await submit(orchestrator, sample_application, "normal")
        await submit(orchestrator, sample_application, "low")

        health = await orchestrator.monitor_queue_health()

        assert health["healthy"] is False
        assert health["pending"] == 2
        assert "High number of pending submissions: 2" in health["warnings"]

    @pytest.mark.asyncio
    async def test_health_warns_about_stale_tasks(self, orchestrator, sample_application):
        queued = await submit(orchestrator, sample_application, "normal")
        orchestrator.tasks[queued["task_id"]].created_at = datetime.now(timezone.utc) - timedelta(hours=5)

        health = await orchestrator.monitor_queue_health()

        assert health["healthy"] is False
        assert health["oldest_pending_age_hours"] >= 5

    @pytest.mark.asyncio
    async def test_status_check_for_completed_task(self, orchestrator, sample_application, stub_adapter):
        result = await submit(orchestrator, sample_application, "urgent")

        status = await orchestrator.check_submission_status(result["task_id"])

        assert status["servicer_status"] == "in_review"
        assert stub_adapter.status_checks == ["TRK-1"]

    @pytest.mark.asyncio
    async def test_status_check_for_queued_task(self, orchestrator, sample_application, stub_adapter):
        queued = await submit(orchestrator, sample_application, "normal")

        status = await orchestrator.check_submission_status(queued["task_id"])

        assert status["task_status"] == "pending"
        assert status["servicer_status"] is None
        assert stub_adapter.status_checks == []

    @pytest.mark.asyncio
    async def test_status_check_for_unknown_task(self, orchestrator):
        status = await orchestrator.check_submission_status("sub_missing")

        assert status["success"] is False

    @pytest.mark.asyncio
    async def test_servicer_connection(self, orchestrator):
        result = await orchestrator.test_servicer_connection("chase")

        assert result == {"servicer_id": "chase", "success": True, "message": "Connection successful"}
