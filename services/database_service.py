"""
Database Service
Handles submission task persistence using SQLAlchemy with PostgreSQL
"""

import os
import json
from typing import Dict, List, Any, Optional
from sqlalchemy import text, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from models.submission_task import Base as SubmissionTaskBase
from models.circuit_breaker_state import Base as CircuitBreakerBase, CircuitBreakerState
from services.exceptions import ConfigurationError
from utils.logger import get_logger

logger = get_logger(__name__)

JSON_COLUMNS = ('metadata', 'error_history')

TASK_COLUMNS = (
    'id', 'transaction_id', 'servicer_id', 'document_type', 'priority', 'status',
    'retry_count', 'max_retries', 'submission_channel', 'confirmation_number',
    'tracking_number', 'metadata', 'error_history', 'last_attempt', 'next_retry',
    'submitted_at', 'created_at', 'updated_at'
)


class DatabaseService:
    """Service for database operations"""

    def __init__(self, database_url: str = None):
        self.database_url = database_url or os.getenv("DATABASE_URL")
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL environment variable not set")

        # Convert to async URL if needed
        if self.database_url.startswith("postgresql://"):
            self.database_url = self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

        self.engine = create_async_engine(self.database_url, echo=False)
        self.async_session = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def init_schema(self):
        """Create the submission tables if they don't exist"""
        async with self.engine.begin() as conn:
            await conn.run_sync(SubmissionTaskBase.metadata.create_all)
            await conn.run_sync(CircuitBreakerBase.metadata.create_all)
        logger.info("Database schema ready")

    async def execute_query(self, query: str, params: Dict = None) -> List[Dict]:
        """Execute a raw SQL query"""
        try:
            async with self.async_session() as session:
                result = await session.execute(text(query), params or {})
                rows = result.fetchall()
                return [dict(row._mapping) for row in rows]
        except Exception as e:
            logger.error(f"Database query error: {str(e)}")
            raise

    async def execute_insert(self, query: str, params: Dict = None) -> Any:
        """Execute an insert query and return the result"""
        try:
            async with self.async_session() as session:
                result = await session.execute(text(query), params or {})
                await session.commit()
                # For PostgreSQL with RETURNING clause, get the first row
                if result.returns_rows:
                    return result.fetchone()[0]
                return result.rowcount
        except Exception as e:
            logger.error(f"Database insert error: {str(e)}")
            raise

    async def execute_update(self, query: str, params: Dict = None) -> int:
        """Execute an update query and return affected rows"""
        try:
            async with self.async_session() as session:
                result = await session.execute(text(query), params or {})
                await session.commit()
                return result.rowcount
        except Exception as e:
            logger.error(f"Database update error: {str(e)}")
            raise

    # Submission task operations
    async def create_submission_task(self, task_record: Dict[str, Any]) -> str:
        """Create a new submission task"""
        params = self._task_params(task_record)

        query = """
        INSERT INTO submission_tasks (id, transaction_id, servicer_id, document_type, priority,
                                      status, retry_count, max_retries, submission_channel,
                                      confirmation_number, tracking_number, metadata, error_history,
                                      last_attempt, next_retry, submitted_at, created_at, updated_at)
        VALUES (:id, :transaction_id, :servicer_id, :document_type, :priority,
                :status, :retry_count, :max_retries, :submission_channel,
                :confirmation_number, :tracking_number, CAST(:metadata AS JSONB), CAST(:error_history AS JSONB),
                :last_attempt, :next_retry, :submitted_at, :created_at, :updated_at)
        RETURNING id
        """
        result = await self.execute_insert(query, params)
        return str(result)

    async def update_submission_task(self, task_record: Dict[str, Any]) -> int:
        """Write back the mutable fields of a submission task"""
        params = self._task_params(task_record)

        query = """
        UPDATE submission_tasks
        SET status = :status,
            retry_count = :retry_count,
            submission_channel = :submission_channel,
            confirmation_number = :confirmation_number,
            tracking_number = :tracking_number,
            metadata = CAST(:metadata AS JSONB),
            error_history = CAST(:error_history AS JSONB),
            last_attempt = :last_attempt,
            next_retry = :next_retry,
            submitted_at = :submitted_at,
            updated_at = NOW()
        WHERE id = :id
        """
        return await self.execute_update(query, params)

    async def get_submission_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Get submission task by ID"""
        query = "SELECT * FROM submission_tasks WHERE id = :task_id"
        results = await self.execute_query(query, {"task_id": task_id})
        return results[0] if results else None

    async def get_resumable_submission_tasks(self) -> List[Dict[str, Any]]:
        """Get tasks that were pending or mid-attempt, most urgent and oldest first"""
        query = """
        SELECT * FROM submission_tasks
        WHERE status IN ('pending', 'in_progress')
        ORDER BY CASE priority
                    WHEN 'urgent' THEN 4
                    WHEN 'high' THEN 3
                    WHEN 'normal' THEN 2
                    WHEN 'low' THEN 1
                    ELSE 0
                 END DESC,
                 created_at ASC
        """
        return await self.execute_query(query)

    async def get_submission_tasks_by_transaction(self, transaction_id: str) -> List[Dict[str, Any]]:
        """Get all submission tasks for a transaction"""
        query = "SELECT * FROM submission_tasks WHERE transaction_id = :transaction_id ORDER BY created_at"
        return await self.execute_query(query, {"transaction_id": transaction_id})

    # Circuit breaker operations
    async def save_circuit_breaker_state(self, snapshot: Dict[str, Any]):
        """Upsert a circuit breaker snapshot"""
        try:
            async with self.async_session() as session:
                await session.merge(CircuitBreakerState(
                    servicer_id=snapshot['servicer_id'],
                    state=snapshot['state'],
                    failure_count=snapshot.get('failure_count', 0),
                    success_count=snapshot.get('success_count', 0),
                    last_failure_time=snapshot.get('last_failure_time')
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"Database circuit breaker save error: {str(e)}")
            raise

    async def get_circuit_breaker_states(self) -> List[Dict[str, Any]]:
        """Get every persisted circuit breaker snapshot"""
        try:
            async with self.async_session() as session:
                result = await session.execute(select(CircuitBreakerState))
                return [
                    {
                        'servicer_id': row.servicer_id,
                        'state': row.state,
                        'failure_count': row.failure_count,
                        'success_count': row.success_count,
                        'last_failure_time': row.last_failure_time
                    }
                    for row in result.scalars().all()
                ]
        except Exception as e:
            logger.error(f"Database circuit breaker query error: {str(e)}")
            raise

    @staticmethod
    def _task_params(task_record: Dict[str, Any]) -> Dict[str, Any]:
        params = {column: task_record.get(column) for column in TASK_COLUMNS}
        for column in JSON_COLUMNS:
            if isinstance(params[column], (list, dict)):
                params[column] = json.dumps(params[column])
        if params['metadata'] is None:
            params['metadata'] = json.dumps({})
        if params['error_history'] is None:
            params['error_history'] = json.dumps([])
        return params

    async def close(self):
        """Close database connections"""
        await self.engine.dispose()
