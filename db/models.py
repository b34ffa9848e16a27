"""
SQLAlchemy ORM Models
Tables: flow_runs, flow_run_iterations.
One flow_runs row per terminal run of the self-improving agent, one
flow_run_iterations row per recorded validate → review → fix pass.
All enum-like columns use plain TEXT — no PostgreSQL enum types.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, Boolean, Text,
    DateTime, ForeignKey, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class FlowRun(Base):
    __tablename__ = "flow_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    flow_name = Column(Text)
    status = Column(Text, nullable=False)
    success = Column(Boolean, nullable=False, default=False)
    iterations = Column(Integer, nullable=False, default=0)
    meta_rounds = Column(Integer, nullable=False, default=0)
    variable_scope = Column(Text)
    final_flow = Column(JSONB)
    created_at = Column(
        DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    iteration_records = relationship(
        "FlowRunIteration", back_populates="run", cascade="all, delete-orphan",
        order_by="FlowRunIteration.iteration",
    )


class FlowRunIteration(Base):
    __tablename__ = "flow_run_iterations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(
        UUID(as_uuid=True),
        ForeignKey("flow_runs.id", ondelete="CASCADE"),
        nullable=False,
    )
    iteration = Column(Integer, nullable=False)
    meta_round = Column(Integer, nullable=False)
    total_issues = Column(Integer, nullable=False, default=0)
    critical_issues = Column(Integer, nullable=False, default=0)
    deterministic_issues = Column(JSONB, default=list)
    review_issues = Column(JSONB, default=list)

    run = relationship("FlowRun", back_populates="iteration_records")

    __table_args__ = (
        UniqueConstraint(
            "run_id", "iteration",
            name="uq_flow_run_iterations_run_iteration",
        ),
    )
