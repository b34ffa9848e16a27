"""
Run Log

Persists one record per terminal run of the self-improving flow agent:
the full iteration history plus the final flow.

  FileRunLog      — <logs_dir>/run-<epoch ms>.json
  DatabaseRunLog  — flow_runs / flow_run_iterations via db.repo

Write-only from the agent's point of view: one write() per run.
"""

import json
import os
import time
from datetime import datetime, timezone

from tools.logger import log

DEFAULT_LOGS_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "logs")


def build_run_record(result, variable_scope=None):
    """Serializable record for a loop result dict."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "success": result["success"],
        "iterations": result["iterations"],
        "meta_rounds": result["meta_rounds"],
        "variable_scope": variable_scope,
        "history": [entry.to_dict() for entry in result["history"]],
        "flow_json": result["flow_json"],
    }


class FileRunLog:

    def __init__(self, logs_dir=None):
        self.logs_dir = logs_dir or os.environ.get("FLOW_AGENT_LOGS_DIR") or DEFAULT_LOGS_DIR

    def write(self, record):
        """Write record as pretty JSON; returns the file path."""
        os.makedirs(self.logs_dir, exist_ok=True)
        path = os.path.join(self.logs_dir, f"run-{int(time.time() * 1000)}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2, default=str)
        log("run_log.saved", path=path, success=record.get("success"))
        return path


class DatabaseRunLog:
    """Stores runs through a SQLAlchemy session factory (e.g. db.session.SessionLocal)."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def write(self, record):
        """Insert the run; returns the new run id."""
        from db.repo import create_flow_run

        db = self.session_factory()
        try:
            run = create_flow_run(db, record)
            db.commit()
            log("run_log.saved", run_id=str(run.id), success=record.get("success"))
            return run.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
