"""
Submission Engine Test Configuration

Shared fixtures: an in-memory persistence double, stub servicer adapters,
and a submission config loaded from temporary YAML files.
"""

import copy
from datetime import datetime, timezone
from pathlib import Path

import pytest

from adapters.base_adapter import ServicerAdapter
from config.servicer_config import ServicerConfigRegistry
from config.submission_config import SubmissionConfig
from config.yaml_config import YAMLConfigLoader
from models.application import PreparedApplication, PreparedDocument, TransformedApplication
from models.servicer import ServicerConfig
from models.submission_result import SubmissionResult, StatusCheckResult, ConnectionTestResult
from models.validation_result import ValidationResult
from orchestrator import SubmissionOrchestrator
from services.exceptions import UnknownServicerError
from services.intelligence_service import ServicerIntelligenceService

PREPARED_AT = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

TEST_SERVICERS_YAML = """
servicers:
  chase:
    name: Chase
    type: api
    adapter: chase
    endpoint: ${TEST_CHASE_ENDPOINT:-https://api.test/chase}
    credentials:
      api_key: test-key
    requirements:
      required_documents: [hardship_letter, financial_statement, income_verification]
      max_file_size_mb: 25
      supported_formats: [pdf]

generic:
  type: portal
  adapter: generic
  allow_fallback: true
  requirements:
    required_documents: [hardship_letter]
"""

TEST_SUBMISSION_YAML = """
retry:
  base_delay_ms: 1000
  max_delay_ms: 8000
  jitter_ratio: 0
  max_retries:
    urgent: 5
    high: 4
    normal: 3
    low: 2

circuit_breaker:
  failure_threshold: 2
  success_threshold: 1
  timeout_ms: 60000

scheduling:
  priority_delays_ms:
    urgent: 0
    high: 300000
    normal: 1800000
    low: 3600000
  max_concurrent_submissions: 2

health:
  check_interval_seconds: 3600
  max_pending_tasks: 1
  max_pending_age_hours: 2

escalation:
  repeated_error_threshold: 3
  deadline_window_hours: 24
  immediate_priorities: [urgent, high]

channels:
  default: portal
"""


class InMemoryDatabaseService:
    """Persistence double with the DatabaseService task and breaker contract"""

    def __init__(self):
        self.records = {}
        self.breaker_states = {}
        self.fail_updates = False
        self.fail_inserts = False
        self.update_calls = 0
        self.closed = False

    async def init_schema(self):
        pass

    async def create_submission_task(self, task_record):
        if self.fail_inserts:
            raise ConnectionError("database unavailable")
        self.records[task_record["id"]] = copy.deepcopy(task_record)
        return task_record["id"]

    async def update_submission_task(self, task_record):
        self.update_calls += 1
        if self.fail_updates:
            raise ConnectionError("database unavailable")
        if task_record["id"] not in self.records:
            return 0
        self.records[task_record["id"]] = copy.deepcopy(task_record)
        return 1

    async def get_submission_task(self, task_id):
        record = self.records.get(task_id)
        return copy.deepcopy(record) if record else None

    async def get_resumable_submission_tasks(self):
        return [
            copy.deepcopy(record)
            for record in self.records.values()
            if record["status"] in ("pending", "in_progress")
        ]

    async def get_submission_tasks_by_transaction(self, transaction_id):
        return [
            copy.deepcopy(record)
            for record in self.records.values()
            if record["transaction_id"] == transaction_id
        ]

    async def save_circuit_breaker_state(self, snapshot):
        self.breaker_states[snapshot["servicer_id"]] = dict(snapshot)

    async def get_circuit_breaker_states(self):
        return [dict(snapshot) for snapshot in self.breaker_states.values()]

    async def close(self):
        self.closed = True


class StubAdapter(ServicerAdapter):
    """Adapter whose submit outcomes are queued by the test"""

    def __init__(self, config, outcomes=None, validation=None):
        super().__init__(config)
        self.outcomes = list(outcomes or [])
        self.validation = validation or ValidationResult()
        self.submit_calls = 0
        self.status_checks = []

    async def validate_requirements(self, application):
        return self.validation

    async def transform(self, application):
        return TransformedApplication(
            servicer_id=self.servicer_id,
            format=self.config.type,
            data={"loanNumber": application.loan_number, "caseId": application.case_id}
        )

    async def submit(self, application):
        self.submit_calls += 1
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = SubmissionResult(success=True, confirmation_number="CONF-1", tracking_number="TRK-1")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def check_status(self, tracking_number):
        self.status_checks.append(tracking_number)
        return StatusCheckResult(status="in_review", message="Under review")

    async def test_connection(self):
        return ConnectionTestResult(success=True, message="Connection successful")


class StubAdapterFactory:
    """Factory double that only knows the adapters it was given"""

    def __init__(self, adapters):
        self.adapters = {servicer_id.lower(): adapter for servicer_id, adapter in adapters.items()}

    async def get_adapter(self, servicer_id):
        adapter = self.adapters.get((servicer_id or "").strip().lower())
        if adapter is None:
            raise UnknownServicerError(f"No adapter registered for servicer {servicer_id}", servicer_id)
        return adapter

    def get_registered_servicers(self):
        return list(self.adapters)

    def get_servicer_config(self, servicer_id):
        adapter = self.adapters.get(servicer_id.lower())
        return adapter.get_config() if adapter else None

    async def test_adapter(self, servicer_id):
        adapter = await self.get_adapter(servicer_id)
        return await adapter.test_connection()


def make_document(doc_type, file_name=None, content=b"%PDF-1.4 test", mime_type="application/pdf", size=0):
    return PreparedDocument(
        type=doc_type,
        file_name=file_name or f"{doc_type}.pdf",
        content=content,
        mime_type=mime_type,
        size=size
    )


@pytest.fixture
def config_dir(tmp_path) -> Path:
    (tmp_path / "servicers.yaml").write_text(TEST_SERVICERS_YAML)
    (tmp_path / "submission.yaml").write_text(TEST_SUBMISSION_YAML)
    return tmp_path


@pytest.fixture
def yaml_loader(config_dir):
    return YAMLConfigLoader(config_dir=config_dir)


@pytest.fixture
def submission_config(yaml_loader):
    return SubmissionConfig(yaml_loader)


@pytest.fixture
def servicer_registry(yaml_loader):
    return ServicerConfigRegistry(yaml_loader)


@pytest.fixture
def sample_application():
    return PreparedApplication(
        case_id="case-1001",
        loan_number="0012345678",
        borrower_name="Jane Doe",
        documents=[
            make_document("hardship_letter"),
            make_document("financial_statement"),
            make_document("income_verification")
        ],
        metadata={"hardship_reason": "Job loss"},
        prepared_at=PREPARED_AT
    )


@pytest.fixture
def memory_db():
    return InMemoryDatabaseService()


@pytest.fixture
def stub_adapter():
    return StubAdapter(ServicerConfig(id="chase", name="Chase", type="api", adapter="chase"))


@pytest.fixture
def escalations():
    return []


@pytest.fixture
def intelligence_service():
    return ServicerIntelligenceService()


@pytest.fixture
async def orchestrator(memory_db, stub_adapter, submission_config, intelligence_service, escalations):
    service = SubmissionOrchestrator(
        db_service=memory_db,
        adapter_factory=StubAdapterFactory({"chase": stub_adapter}),
        intelligence_service=intelligence_service,
        submission_config=submission_config,
        escalation_handler=lambda task, reason: escalations.append((task["id"], reason))
    )
    yield service
    await service.queue.stop()
