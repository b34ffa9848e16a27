"""
Agentic E2E Flow Builder — FastAPI Application

Endpoints:
  GET  /health    — liveness probe
  POST /validate  — structural + input coverage validation of a flow
  POST /improve   — self-improving validate → review → fix loop
  GET  /runs      — recent persisted runs of the loop

HTTP status codes:
  200 — success (including an exhausted /improve run; see "success")
  400 — invalid loop parameters
  422 — malformed request body
  503 — LLM not configured
"""

from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from db.session import SessionLocal, get_db, check_db
from db.repo import list_flow_runs
from tools.flow_oracle import FlowOracle, resolve_models
from tools.llm_client import LLMError, get_llm_client
from tools.prompt_store import FilePromptStore
from tools.run_log import DatabaseRunLog
from tools.self_improving_flow_agent import deterministic_issues, run_self_improving_loop
from tools.validate_flow_structure import resolve_variable_scope
from tools.validate_input_coverage import DictSchemaProvider, get_schema_provider
from tools.validation_issue import critical_issues

load_dotenv()

_db_ready = False


@asynccontextmanager
async def lifespan(_app: FastAPI):
    global _db_ready
    _db_ready = check_db()
    yield


app = FastAPI(
    title="Agentic E2E Flow Builder",
    version="1.0.0",
    lifespan=lifespan,
)


# ─────────────────────────────────────────
# Request / Response Models
# ─────────────────────────────────────────

class ValidateRequest(BaseModel):
    flow: dict                                   # E2E flow JSON
    variable_scope: Optional[str] = None         # "upstream" | "flow"
    schemas: Optional[dict] = None               # component type → {"required", "properties"}


class ImproveRequest(BaseModel):
    flow: dict
    max_iterations: Optional[int] = 5
    max_meta_rounds: Optional[int] = 3
    variable_scope: Optional[str] = None
    schemas: Optional[dict] = None
    connector_context: Optional[str] = ""
    generator_model: Optional[str] = None
    reviewer_model: Optional[str] = None
    meta_model: Optional[str] = None


def _schema_provider(schemas):
    # Connector schemas on disk come from CONNECTORS_DIR only, never from the request.
    if schemas:
        return DictSchemaProvider(schemas)
    return get_schema_provider()


def _scope_or_400(variable_scope):
    try:
        return resolve_variable_scope(variable_scope)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ─────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────

@app.get("/health")
def health():
    return {"ok": True}


@app.post("/validate")
def validate(request: ValidateRequest):
    """Run the deterministic rules only. No LLM calls."""
    scope = _scope_or_400(request.variable_scope)
    issues = deterministic_issues(
        request.flow,
        _schema_provider(request.schemas),
        scope,
    )
    critical = critical_issues(issues)
    return {
        "valid": len(critical) == 0,
        "variable_scope": scope,
        "critical_count": len(critical),
        "warning_count": len(issues) - len(critical),
        "issues": issues,
    }


@app.post("/improve")
def improve(request: ImproveRequest):
    """Run the self-improving loop against the configured LLM."""
    scope = _scope_or_400(request.variable_scope)
    max_iterations = 5 if request.max_iterations is None else request.max_iterations
    max_meta_rounds = 3 if request.max_meta_rounds is None else request.max_meta_rounds
    if max_iterations < 1 or max_meta_rounds < 1:
        raise HTTPException(status_code=400, detail="max_iterations and max_meta_rounds must be >= 1")
    max_iterations = min(max_iterations, 10)
    max_meta_rounds = min(max_meta_rounds, 5)

    try:
        client = get_llm_client()
    except LLMError as e:
        raise HTTPException(status_code=503, detail=str(e))

    prompt_store = FilePromptStore()
    oracle = FlowOracle(client, prompt_store, resolve_models(
        request.generator_model, request.reviewer_model, request.meta_model))

    result = run_self_improving_loop(
        request.flow,
        oracle,
        prompt_store,
        max_iterations=max_iterations,
        max_meta_rounds=max_meta_rounds,
        schema_provider=_schema_provider(request.schemas),
        variable_scope=scope,
        connector_context=request.connector_context or "",
        run_log=DatabaseRunLog(SessionLocal) if _db_ready else None,
    )
    return {
        "success": result["success"],
        "iterations": result["iterations"],
        "meta_rounds": result["meta_rounds"],
        "flow": result["flow_json"],
        "history": [entry.to_dict() for entry in result["history"]],
    }


@app.get("/runs")
def runs(limit: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)):
    rows = list_flow_runs(db, limit)
    return {
        "runs": [
            {
                "id": str(r.id),
                "flow_name": r.flow_name,
                "status": r.status,
                "success": r.success,
                "iterations": r.iterations,
                "meta_rounds": r.meta_rounds,
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ]
    }
