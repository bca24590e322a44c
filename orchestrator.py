"""
Submission Orchestrator
Coordinates delivery of prepared document packages to loan servicers: queueing, retries,
per-servicer circuit breakers, channel selection, crash recovery and escalation
"""

import asyncio
import inspect
import json
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Any, Optional, Callable, Set

from adapters.adapter_factory import ServicerAdapterFactory
from config.submission_config import SubmissionConfig, PRIORITIES
from models.application import PreparedApplication
from models.submission_task import SubmissionTask, TASK_STATUSES
from services.circuit_breaker import CircuitBreaker, HALF_OPEN
from services.database_service import DatabaseService
from services.exceptions import (
    CircuitOpenError,
    SubmissionFailedError,
    SubmissionValidationError,
    UnknownServicerError
)
from services.intelligence_service import ServicerIntelligenceService
from services.retry_strategy import ExponentialBackoffStrategy
from services.submission_queue_service import SubmissionQueueService
from utils.logger import get_logger

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionOrchestrator:
    """
    Main orchestrator for servicer submissions:
    1. Persists every submission as a SubmissionTask and schedules it by priority
    2. Fails fast while a servicer's circuit breaker is open
    3. Validates, transforms and submits through the servicer's adapter
    4. Retries transient failures with exponential backoff
    5. Marks exhausted or permanent failures terminal and escalates them when warranted
    """

    def __init__(
        self,
        db_service: Optional[DatabaseService] = None,
        adapter_factory: Optional[ServicerAdapterFactory] = None,
        intelligence_service: Optional[ServicerIntelligenceService] = None,
        retry_strategy: Optional[ExponentialBackoffStrategy] = None,
        submission_config: Optional[SubmissionConfig] = None,
        escalation_handler: Optional[Callable[[Dict[str, Any], str], Any]] = None
    ):
        self.submission_config = submission_config or SubmissionConfig()
        self.db_service = db_service or DatabaseService()
        self.intelligence_service = intelligence_service or ServicerIntelligenceService()
        self.adapter_factory = adapter_factory or ServicerAdapterFactory(
            intelligence_service=self.intelligence_service
        )
        self.retry_strategy = retry_strategy or ExponentialBackoffStrategy.from_config(self.submission_config)
        self.escalation_handler = escalation_handler or self._log_escalation

        self.queue = SubmissionQueueService(
            self._process_scheduled_task,
            max_concurrent=self.submission_config.get_max_concurrent_submissions(),
            health_check=self.monitor_queue_health,
            health_interval_seconds=self.submission_config.get_health_check_interval_seconds()
        )

        self.tasks: Dict[str, SubmissionTask] = {}
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self._task_locks: Dict[str, asyncio.Lock] = {}
        self.unsynced_tasks: Set[str] = set()
        self.persistence_failures = 0
        self.is_running = False

    # Lifecycle
    async def start(self):
        """Restore breaker state, resume unfinished tasks and start the health monitor"""
        if self.is_running:
            logger.warning("Submission orchestrator is already running")
            return

        await self._restore_circuit_breakers()
        resumed = await self.resume_pending_tasks()
        self.queue.start()
        self.is_running = True
        logger.info(f"Submission orchestrator started, resumed {resumed} tasks")

    async def stop(self):
        """Disarm timers, stop monitoring and wait for running attempts"""
        await self.queue.stop()
        await self._flush_unsynced()
        self.is_running = False
        logger.info("Submission orchestrator stopped")

    async def resume_pending_tasks(self) -> int:
        """
        Reload pending and mid-attempt tasks from persistence and reschedule them

        Returns:
            Number of tasks rescheduled
        """
        try:
            records = await self.db_service.get_resumable_submission_tasks()
        except Exception as e:
            logger.error(f"Error loading resumable submission tasks: {str(e)}")
            return 0

        tasks = [SubmissionTask.from_record(record) for record in records]
        tasks.sort(key=lambda t: (-t.priority_rank(), t.created_at or datetime.min.replace(tzinfo=timezone.utc)))

        resumed = 0
        for task in tasks:
            if task.id in self.tasks:
                continue

            self.tasks[task.id] = task
            if task.is_in_progress():
                # Crashed mid-attempt
                task.status = "pending"
                task.next_retry = None
                await self._persist(task)
                delay_ms = 0
            else:
                delay_ms = self._initial_delay_ms(task)

            self.queue.schedule(task.id, delay_ms)
            resumed += 1

        if resumed:
            logger.info(f"Resumed {resumed} submission tasks")
        return resumed

    # Public operations
    async def submit_document(
        self,
        transaction_id: str,
        servicer_id: str,
        document_type: str,
        document_data: Any,
        priority: str = "normal",
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Submit a prepared package to a servicer

        Args:
            transaction_id: Transaction the package belongs to
            servicer_id: Servicer to deliver to
            document_type: Package type, e.g. loss_mitigation_package
            document_data: PreparedApplication or its JSON dict form
            priority: urgent, high, normal or low
            metadata: Extra task metadata, may include a deadline

        Returns:
            Dict with success and task_id. Urgent and high priority tasks return
            the result of their first attempt.
        """
        priority = priority or "normal"
        if not self.submission_config.is_valid_priority(priority):
            return {
                "success": False,
                "error": f"Invalid priority: {priority}. Expected one of: {', '.join(PRIORITIES)}"
            }

        try:
            await self.adapter_factory.get_adapter(servicer_id)
        except UnknownServicerError as e:
            logger.error(f"Rejecting submission for transaction {transaction_id}: {str(e)}")
            return {"success": False, "error": str(e)}

        task_metadata = dict(metadata or {})
        task_metadata["document_data"] = self._normalize_document_data(document_data)

        task = SubmissionTask.create(
            transaction_id=str(transaction_id),
            servicer_id=servicer_id.strip().lower(),
            document_type=document_type,
            priority=priority,
            max_retries=self.retry_strategy.get_max_retries(priority),
            metadata=task_metadata
        )

        await self.db_service.create_submission_task(task.to_record())
        self.tasks[task.id] = task
        logger.info(f"Created submission task {task.id} for {task.servicer_id} ({priority})")

        if priority in self.submission_config.get_immediate_priorities():
            return await self.queue.run_now(task.id)

        delay_ms = self.submission_config.get_priority_delay_ms(priority)
        self.queue.schedule(task.id, delay_ms)

        return {
            "success": True,
            "task_id": task.id,
            "status": "queued",
            "scheduled_in_ms": delay_ms,
            "next_steps": [
                "Submission queued for processing",
                "Check the task status for confirmation details"
            ]
        }

    async def process_task(self, task: SubmissionTask) -> Dict[str, Any]:
        """
        Run one submission attempt for a task

        Attempts on the same task are serialized. A terminal task is left untouched.
        """
        lock = self._task_locks.setdefault(task.id, asyncio.Lock())
        async with lock:
            result = await self._attempt(task)

        if task.is_terminal():
            self._task_locks.pop(task.id, None)
        return result

    async def _attempt(self, task: SubmissionTask) -> Dict[str, Any]:
        if task.is_terminal():
            return self._terminal_result(task)

        self.queue.cancel(task.id)

        task.status = "in_progress"
        task.last_attempt = _utc_now()
        await self._persist(task)

        breaker = self.get_circuit_breaker(task.servicer_id)
        probing = False
        contacted = False

        try:
            if breaker.is_open():
                raise CircuitOpenError(task.servicer_id, breaker.remaining_open_ms())
            probing = breaker.state == HALF_OPEN

            adapter = await self.adapter_factory.get_adapter(task.servicer_id)

            intelligence = await self._get_servicer_intelligence(task.servicer_id)
            task.submission_channel = self.select_submission_channel(intelligence)

            application = self._load_application(task)

            validation = await adapter.validate_requirements(application)
            if not validation.valid:
                raise SubmissionValidationError(
                    f"Package validation failed: {validation.get_error_summary()}",
                    validation.errors
                )

            transformed = await adapter.transform(application)
            contacted = True
            result = await adapter.submit(transformed)

            if not result.success:
                raise SubmissionFailedError(result.get_primary_error(), result.errors)

        except Exception as e:
            return await self._handle_failure(task, e, breaker, contacted=contacted, probing=probing)

        return await self._handle_success(task, result, breaker)

    def check_escalation_criteria(self, task: SubmissionTask) -> bool:
        """Decide whether a terminally failed task needs a human"""
        if task.priority in self.submission_config.get_immediate_priorities():
            return True

        threshold = self.submission_config.get_repeated_error_threshold()
        recent_errors = task.get_recent_errors(threshold)
        if len(recent_errors) >= threshold and len(set(recent_errors)) == 1:
            return True

        try:
            deadline = task.get_deadline()
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unparseable deadline on task {task.id}")
            deadline = None

        if deadline is not None:
            window = timedelta(hours=self.submission_config.get_deadline_window_hours())
            if deadline - _utc_now() < window:
                return True

        return False

    def select_submission_channel(self, intelligence: Optional[Dict[str, Any]]) -> str:
        """Pick the channel with the best historical success rate"""
        default_channel = self.submission_config.get_default_channel()
        if not intelligence:
            return default_channel

        channels = (intelligence.get("patterns") or {}).get("submission_channels") or {}
        if not channels:
            return default_channel

        return max(channels, key=lambda channel: (channels[channel] or {}).get("success_rate", 0))

    def get_circuit_breaker(self, servicer_id: str) -> CircuitBreaker:
        """Get or lazily create the breaker for a servicer"""
        key = servicer_id.lower()
        breaker = self.circuit_breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(key, **self.submission_config.get_circuit_breaker_settings())
            self.circuit_breakers[key] = breaker
        return breaker

    async def get_task(self, task_id: str) -> Optional[SubmissionTask]:
        """Get a task from the registry, falling back to persistence"""
        task = self.tasks.get(task_id)
        if task is not None:
            return task

        try:
            record = await self.db_service.get_submission_task(task_id)
        except Exception as e:
            logger.error(f"Error loading submission task {task_id}: {str(e)}")
            return None

        return SubmissionTask.from_record(record) if record else None

    async def get_transaction_tasks(self, transaction_id: str) -> List[SubmissionTask]:
        """All tasks for a transaction, oldest first, preferring registry entries"""
        transaction_id = str(transaction_id)
        try:
            records = await self.db_service.get_submission_tasks_by_transaction(transaction_id)
        except Exception as e:
            logger.error(f"Error loading submission tasks for transaction {transaction_id}: {str(e)}")
            records = []

        tasks: Dict[str, SubmissionTask] = {}
        for record in records:
            tasks[record["id"]] = self.tasks.get(record["id"]) or SubmissionTask.from_record(record)
        for task in list(self.tasks.values()):
            if task.transaction_id == transaction_id:
                tasks.setdefault(task.id, task)

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(tasks.values(), key=lambda t: t.created_at or epoch)

    async def check_submission_status(self, task_id: str) -> Dict[str, Any]:
        """Ask the servicer about a completed submission"""
        task = await self.get_task(task_id)
        if task is None:
            return {"success": False, "error": f"Submission task {task_id} not found"}

        reference = task.tracking_number or task.confirmation_number
        if not task.is_completed() or not reference:
            return {
                "success": True,
                "task_id": task.id,
                "task_status": task.status,
                "servicer_status": None,
                "message": "Submission has not been accepted by the servicer yet"
            }

        try:
            adapter = await self.adapter_factory.get_adapter(task.servicer_id)
        except UnknownServicerError as e:
            return {"success": False, "task_id": task.id, "error": str(e)}

        status = await adapter.check_status(reference)
        return {
            "success": True,
            "task_id": task.id,
            "task_status": task.status,
            "servicer_status": status.status,
            "message": status.message,
            "last_updated": status.last_updated.isoformat()
        }

    async def test_servicer_connection(self, servicer_id: str) -> Dict[str, Any]:
        result = await self.adapter_factory.test_adapter(servicer_id)
        return {"servicer_id": servicer_id, **result.model_dump()}

    async def get_queue_stats(self) -> Dict[str, Any]:
        """Operational snapshot of the task registry"""
        tasks = list(self.tasks.values())

        by_status = {status: 0 for status in TASK_STATUSES}
        by_priority = {priority: 0 for priority in PRIORITIES}
        by_servicer: Dict[str, int] = {}
        total_retries = 0

        for task in tasks:
            by_status[task.status] = by_status.get(task.status, 0) + 1
            by_priority[task.priority] = by_priority.get(task.priority, 0) + 1
            by_servicer[task.servicer_id] = by_servicer.get(task.servicer_id, 0) + 1
            total_retries += task.retry_count or 0

        total = len(tasks)
        return {
            "queue_size": total,
            "by_status": by_status,
            "by_priority": by_priority,
            "by_servicer": by_servicer,
            "average_retries": total_retries / total if total else 0,
            "success_rate": by_status["completed"] / total if total else 0,
            "scheduled": len(self.queue.scheduled_task_ids()),
            "circuit_breakers": {
                servicer_id: breaker.state for servicer_id, breaker in self.circuit_breakers.items()
            },
            "persistence": {
                "failures": self.persistence_failures,
                "unsynced_tasks": len(self.unsynced_tasks)
            }
        }

    async def monitor_queue_health(self) -> Dict[str, Any]:
        """Sample the registry, warn about backlog or stale tasks, and re-flush unsynced tasks"""
        now = _utc_now()
        pending = [task for task in list(self.tasks.values()) if task.is_pending()]

        oldest_age_hours = 0.0
        if pending:
            oldest = min((task.last_attempt or task.created_at or now) for task in pending)
            oldest_age_hours = (now - oldest).total_seconds() / 3600

        warnings = []
        max_pending = self.submission_config.get_max_pending_tasks()
        if len(pending) > max_pending:
            warnings.append(f"High number of pending submissions: {len(pending)}")

        max_age_hours = self.submission_config.get_max_pending_age_hours()
        if oldest_age_hours > max_age_hours:
            warnings.append(f"Oldest pending submission is {oldest_age_hours:.1f} hours old")

        for warning in warnings:
            logger.warning(warning)

        await self._flush_unsynced()

        health = {
            "healthy": not warnings,
            "pending": len(pending),
            "oldest_pending_age_hours": round(oldest_age_hours, 2),
            "in_flight": self.queue.in_flight_count(),
            "unsynced_tasks": len(self.unsynced_tasks),
            "warnings": warnings
        }
        logger.info(f"Queue health: {health}")
        return health

    # Attempt outcomes
    async def _handle_success(self, task: SubmissionTask, result, breaker: CircuitBreaker) -> Dict[str, Any]:
        task.status = "completed"
        task.confirmation_number = result.confirmation_number
        task.tracking_number = result.tracking_number
        task.submitted_at = result.submitted_at or _utc_now()
        task.next_retry = None
        await self._persist(task)

        breaker.record_success()
        await self._save_circuit_breaker(breaker)

        await self._record_submission(task, {
            "success": True,
            "channel": task.submission_channel,
            "confirmation_number": task.confirmation_number,
            "attempt_number": task.retry_count + 1
        })

        logger.info(f"Task {task.id} submitted to {task.servicer_id}: {result.get_reference()}")

        return {
            "success": True,
            "task_id": task.id,
            "status": task.status,
            "confirmation_number": task.confirmation_number,
            "tracking_number": task.tracking_number,
            "submission_channel": task.submission_channel,
            "submitted_at": task.submitted_at.isoformat(),
            "estimated_response_time": result.estimated_response_time,
            "next_steps": result.next_steps,
            "warnings": result.warnings
        }

    async def _handle_failure(
        self,
        task: SubmissionTask,
        error: Exception,
        breaker: CircuitBreaker,
        contacted: bool = False,
        probing: bool = False
    ) -> Dict[str, Any]:
        message = str(error) or error.__class__.__name__
        error_type = self.retry_strategy.classify_error(error)
        task.add_error(message, {
            "attempt_number": task.retry_count + 1,
            "error_type": error_type
        })
        logger.error(f"Task {task.id} attempt {task.retry_count + 1} failed ({error_type}): {message}")

        if probing:
            if contacted:
                # Failed probe reopens the breaker
                breaker.record_failure()
                await self._save_circuit_breaker(breaker)
            else:
                breaker.release_probe()

        if self.retry_strategy.should_retry(task, error):
            task.retry_count += 1
            delay_ms = self.retry_strategy.calculate_delay(task.retry_count)
            if isinstance(error, CircuitOpenError):
                delay_ms = max(delay_ms, error.remaining_ms)

            task.next_retry = _utc_now() + timedelta(milliseconds=delay_ms)
            task.status = "pending"
            await self._persist(task)
            self.queue.schedule(task.id, delay_ms)

            return {
                "success": False,
                "task_id": task.id,
                "status": task.status,
                "error": message,
                "retry_scheduled": True,
                "retry_count": task.retry_count,
                "next_retry": task.next_retry.isoformat(),
                "requires_escalation": False,
                "next_steps": [f"Retry scheduled for {task.next_retry.isoformat()}"]
            }

        requires_escalation = self.check_escalation_criteria(task)
        task.status = "failed"
        if requires_escalation:
            task.meta_data = {**(task.meta_data or {}), "requires_escalation": True}
        task.next_retry = None
        await self._persist(task)

        # Only failures from the servicer itself count against it
        if contacted and not probing:
            breaker.record_failure()
            await self._save_circuit_breaker(breaker)

        await self._record_submission(task, {
            "success": False,
            "channel": task.submission_channel,
            "error": message,
            "error_type": error_type,
            "attempt_number": task.retry_count + 1
        })

        if requires_escalation:
            await self._escalate(task, message)

        return {
            "success": False,
            "task_id": task.id,
            "status": task.status,
            "error": message,
            "retry_scheduled": False,
            "requires_escalation": requires_escalation,
            "next_steps": (
                ["Escalating to human expert for manual submission"]
                if requires_escalation
                else ["Maximum retries reached", "Please contact support"]
            )
        }

    def _terminal_result(self, task: SubmissionTask) -> Dict[str, Any]:
        return {
            "success": task.is_completed(),
            "task_id": task.id,
            "status": task.status,
            "confirmation_number": task.confirmation_number,
            "tracking_number": task.tracking_number,
            "requires_escalation": task.status == "escalated" or bool((task.meta_data or {}).get("requires_escalation")),
            "next_steps": [f"Submission already {task.get_status_display().lower()}"]
        }

    async def _escalate(self, task: SubmissionTask, reason: str):
        try:
            outcome = self.escalation_handler(task.to_dict(), reason)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Escalation handler failed for task {task.id}: {str(e)}")

    async def _log_escalation(self, task: Dict[str, Any], reason: str):
        logger.warning(
            f"Escalating task {task['id']} for transaction {task['transaction_id']} "
            f"({task['servicer_id']}, {task['priority']}): {reason}"
        )

    # Scheduling helpers
    async def _process_scheduled_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        task = self.tasks.get(task_id)
        if task is None:
            logger.warning(f"Timer fired for unknown task {task_id}")
            return None
        return await self.process_task(task)

    def _initial_delay_ms(self, task: SubmissionTask) -> float:
        if task.next_retry:
            return max(0.0, (task.next_retry - _utc_now()).total_seconds() * 1000)
        return self.submission_config.get_priority_delay_ms(task.priority)

    # Collaborator helpers
    def _normalize_document_data(self, document_data: Any) -> Any:
        """JSON-safe form of the package stored in task metadata"""
        if isinstance(document_data, PreparedApplication):
            return document_data.model_dump(mode="json")
        try:
            # Dict form carries base64 document content, as on the wire
            return PreparedApplication.model_validate_json(json.dumps(document_data)).model_dump(mode="json")
        except (TypeError, ValueError) as e:
            # Stored as-is; the attempt fails validation and is not retried
            logger.warning(f"Document data is not a valid prepared application: {str(e)}")
            return json.loads(json.dumps(document_data, default=str))

    def _load_application(self, task: SubmissionTask) -> PreparedApplication:
        document_data = (task.meta_data or {}).get("document_data")
        if document_data is None:
            raise SubmissionValidationError(f"Task {task.id} has no document data")
        try:
            return PreparedApplication.model_validate_json(json.dumps(document_data))
        except ValueError as e:
            raise SubmissionValidationError(f"Invalid document data: {str(e)}")

    async def _get_servicer_intelligence(self, servicer_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.intelligence_service.get_servicer_intelligence(servicer_id)
        except Exception as e:
            logger.warning(f"Servicer intelligence unavailable for {servicer_id}: {str(e)}")
            return None

    async def _record_submission(self, task: SubmissionTask, data: Dict[str, Any]):
        try:
            await self.intelligence_service.record_interaction({
                "type": "submission",
                "transaction_id": task.transaction_id,
                "servicer_id": task.servicer_id,
                "data": {"task_id": task.id, "document_type": task.document_type, **data}
            })
        except Exception as e:
            logger.error(f"Error recording submission interaction for task {task.id}: {str(e)}")

    async def _persist(self, task: SubmissionTask):
        """Write a task back; failures leave it marked unsynced"""
        task.updated_at = _utc_now()
        try:
            await self.db_service.update_submission_task(task.to_record())
        except Exception as e:
            self.persistence_failures += 1
            self.unsynced_tasks.add(task.id)
            logger.error(f"Error persisting submission task {task.id}: {str(e)}")
            return

        self.unsynced_tasks.discard(task.id)
        if self.unsynced_tasks:
            await self._flush_unsynced()

    async def _flush_unsynced(self):
        for task_id in list(self.unsynced_tasks):
            task = self.tasks.get(task_id)
            if task is None:
                self.unsynced_tasks.discard(task_id)
                continue
            try:
                await self.db_service.update_submission_task(task.to_record())
            except Exception as e:
                logger.error(f"Error re-flushing submission task {task_id}: {str(e)}")
                return
            self.unsynced_tasks.discard(task_id)
            logger.info(f"Re-synced submission task {task_id}")

    async def _save_circuit_breaker(self, breaker: CircuitBreaker):
        try:
            await self.db_service.save_circuit_breaker_state(breaker.snapshot())
        except Exception as e:
            logger.error(f"Error saving circuit breaker for {breaker.servicer_id}: {str(e)}")

    async def _restore_circuit_breakers(self):
        try:
            snapshots = await self.db_service.get_circuit_breaker_states()
        except Exception as e:
            logger.error(f"Error loading circuit breaker states: {str(e)}")
            return

        for snapshot in snapshots:
            self.get_circuit_breaker(snapshot["servicer_id"]).restore(snapshot)
        if snapshots:
            logger.info(f"Restored {len(snapshots)} circuit breakers")
