"""
Circuit Breaker State Model
Persisted snapshot of a servicer's circuit breaker
"""

from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from typing import Dict, Any

Base = declarative_base()


class CircuitBreakerState(Base):
    __tablename__ = "circuit_breaker_states"

    servicer_id = Column(String(100), primary_key=True)
    state = Column(String(10), nullable=False, default='closed')  # 'closed', 'open', 'half-open'
    failure_count = Column(Integer, default=0)
    success_count = Column(Integer, default=0)
    last_failure_time = Column(DateTime(timezone=True))
    last_state_change = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<CircuitBreakerState(servicer='{self.servicer_id}', state='{self.state}')>"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            'servicer_id': self.servicer_id,
            'state': self.state,
            'failure_count': self.failure_count,
            'success_count': self.success_count,
            'last_failure_time': self.last_failure_time.isoformat() if self.last_failure_time else None,
            'last_state_change': self.last_state_change.isoformat() if self.last_state_change else None
        }

