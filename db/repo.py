"""
Database Repository — Flow Run Persistence Layer

Two public functions:
    create_flow_run  — insert one terminal run with all of its iteration rows
    list_flow_runs   — most recent runs, newest first

Callers manage commit/rollback.
"""

from sqlalchemy.orm import Session

from db.models import FlowRun, FlowRunIteration


def create_flow_run(db: Session, record: dict) -> FlowRun:
    """Insert a flow run and its iteration history.

    Args:
        db: Active SQLAlchemy session.
        record: Run log record (see tools.run_log.build_run_record).

    Returns:
        The new FlowRun ORM instance (flushed, id populated).
    """
    flow_json = record.get("flow_json") or {}
    run = FlowRun(
        flow_name=flow_json.get("name") if isinstance(flow_json, dict) else None,
        status="success" if record.get("success") else "exhausted",
        success=bool(record.get("success")),
        iterations=record.get("iterations", 0),
        meta_rounds=record.get("meta_rounds", 0),
        variable_scope=record.get("variable_scope"),
        final_flow=flow_json,
    )
    db.add(run)
    db.flush()

    for entry in record.get("history", []):
        db.add(FlowRunIteration(
            run_id=run.id,
            iteration=entry["iteration"],
            meta_round=entry["meta_round"],
            total_issues=entry["total_issues"],
            critical_issues=entry["critical_issues"],
            deterministic_issues=entry["deterministic_issues"],
            review_issues=entry["review_issues"],
        ))
    db.flush()
    return run


def list_flow_runs(db: Session, limit: int = 20) -> list:
    """Return the most recent flow runs, newest first."""
    return (
        db.query(FlowRun)
        .order_by(FlowRun.created_at.desc())
        .limit(limit)
        .all()
    )
