from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ACTION PLAN
# =============================================================================

class ActionPlan(Base):
    """
    One user's action plan for one analysis.

    Owned exclusively by ``user_id``; phases, tasks, edges, snapshots and
    history rows all hang off ``id`` and go away with it.
    """
    __tablename__ = "action_plans"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    analysis_id = Column(String(64), nullable=False)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="active")  # active | completed | archived

    # Mean of phase percentages, persisted on every recompute
    completion_percentage = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "analysis_id", name="uq_action_plans_user_analysis"),
        Index("idx_action_plans_status", "status"),
    )

    def __repr__(self):
        return f"<ActionPlan(id={self.id}, user_id={self.user_id}, status={self.status})>"


class PlanPhase(Base):
    __tablename__ = "plan_phases"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    order = Column(Integer, nullable=False)  # not required to be contiguous
    estimated_duration = Column(String(50), nullable=True)
    is_custom = Column(Boolean, nullable=False, default=False)

    completion_percentage = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_plan_phases_plan_order", "plan_id", "order"),
    )

    def __repr__(self):
        return f"<PlanPhase(id={self.id}, plan_id={self.plan_id}, order={self.order})>"


class PlanTask(Base):
    __tablename__ = "plan_tasks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phase_id = Column(Uuid(as_uuid=True), ForeignKey("plan_phases.id", ondelete="CASCADE"), nullable=False)
    # Denormalized owner, lets graph queries stay inside one plan without joins
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    estimated_time = Column(String(50), nullable=True)
    resources = Column(JSON, nullable=False, default=list)  # ordered list of links
    order = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default="not_started")
    is_custom = Column(Boolean, nullable=False, default=False)
    assignee_id = Column(String(64), nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_plan_tasks_phase_order", "phase_id", "order"),
        Index("idx_plan_tasks_plan_status", "plan_id", "status"),
    )

    def __repr__(self):
        return f"<PlanTask(id={self.id}, phase_id={self.phase_id}, status={self.status})>"


class TaskDependency(Base):
    """
    Directed edge: ``prerequisite_task_id`` must complete before ``task_id``.

    Removal is soft (``removed_at``); only rows with ``removed_at IS NULL``
    are part of the graph.
    """
    __tablename__ = "task_dependencies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(Uuid(as_uuid=True), ForeignKey("plan_tasks.id", ondelete="CASCADE"), nullable=False)
    prerequisite_task_id = Column(Uuid(as_uuid=True), ForeignKey("plan_tasks.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    removed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("task_id <> prerequisite_task_id", name="ck_task_dependencies_no_self"),
        Index("idx_task_dependencies_plan", "plan_id"),
        Index("idx_task_dependencies_task", "task_id"),
        Index("idx_task_dependencies_prerequisite", "prerequisite_task_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.removed_at is None

    def __repr__(self):
        return f"<TaskDependency(id={self.id}, {self.prerequisite_task_id} -> {self.task_id})>"


# =============================================================================
# AUDIT
# =============================================================================

class ProgressSnapshot(Base):
    """
    Append-only progress record written on every task status change.

    ``sequence`` is per-plan and strictly increasing; it is assigned while the
    plan lock is held so it reflects the order of the status mutations.
    """
    __tablename__ = "progress_snapshots"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)

    completed_task_ids = Column(JSON, nullable=False, default=list)
    phase_completion = Column(JSON, nullable=False, default=dict)  # {phase_id: pct}
    overall_completion = Column(Integer, nullable=False, default=0)

    total_tasks = Column(Integer, nullable=False, default=0)
    completed_tasks = Column(Integer, nullable=False, default=0)
    in_progress_tasks = Column(Integer, nullable=False, default=0)
    skipped_tasks = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("plan_id", "sequence", name="uq_progress_snapshots_plan_sequence"),
        CheckConstraint("overall_completion >= 0 AND overall_completion <= 100", name="ck_progress_snapshots_range"),
    )


class TaskHistory(Base):
    __tablename__ = "task_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False)
    # No FK: history of a deleted task must survive the task row
    task_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    action = Column(String(20), nullable=False)  # created | updated | completed | skipped | reordered | deleted
    previous_state = Column(JSON, nullable=True)
    new_state = Column(JSON, nullable=True)
    user_id = Column(String(64), nullable=True)
    override_prerequisites = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


def as_utc(moment: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)
