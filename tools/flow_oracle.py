"""
Flow Oracle

Wraps the LLM client in the three roles the self-improving agent needs:

  review        — flow + deterministic issues → additional issues
  fix           — flow + issues → replacement flow JSON (or None)
  meta_improve  — current prompts + failure summary → new prompt texts (or None)

Each role reads its system prompt from the PromptStore at call time.
Structured output is recovered with tools.extract_json; an unusable answer
or a transport failure is "no output" ([] / None), never an exception.
"""

import json
import os

from tools.extract_json import extract_json
from tools.llm_client import LLMError
from tools.logger import log
from tools.prompt_store import ROLE_GENERATOR, ROLE_META_IMPROVER, ROLE_REVIEWER
from tools.validation_issue import normalize_issues

DEFAULT_MODELS = {
    ROLE_GENERATOR: "claude-sonnet-4-5",
    ROLE_REVIEWER: "claude-haiku-4-5",
    ROLE_META_IMPROVER: "claude-sonnet-4-5",
}

_MODEL_ENV = {
    ROLE_GENERATOR: "FLOW_AGENT_GENERATOR_MODEL",
    ROLE_REVIEWER: "FLOW_AGENT_REVIEWER_MODEL",
    ROLE_META_IMPROVER: "FLOW_AGENT_META_MODEL",
}


def resolve_models(generator_model=None, reviewer_model=None, meta_model=None):
    """Model id per role: explicit argument, then environment, then default."""
    explicit = {
        ROLE_GENERATOR: generator_model,
        ROLE_REVIEWER: reviewer_model,
        ROLE_META_IMPROVER: meta_model,
    }
    return {
        role: explicit[role] or os.environ.get(_MODEL_ENV[role]) or DEFAULT_MODELS[role]
        for role in DEFAULT_MODELS
    }


def _dump(value):
    return json.dumps(value, indent=2)


def build_review_input(flow_json, deterministic_issues, connector_context=""):
    parts = [f"Review this E2E test flow JSON:\n\n{_dump(flow_json)}"]
    if connector_context:
        parts.append(f"Component schemas:\n{connector_context}")
    if deterministic_issues:
        parts.append(f"Deterministic validation found:\n{_dump(deterministic_issues)}")
    return "\n\n".join(parts)


def build_fix_input(flow_json, issues, connector_context=""):
    parts = [
        f"Fix this E2E test flow. Errors found:\n\n{_dump(issues)}",
        f"Current flow:\n{_dump(flow_json)}",
    ]
    if connector_context:
        parts.append(f"Component schemas:\n{connector_context}")
    parts.append("Fix ALL errors. Return ONLY the complete corrected flow JSON.")
    return "\n\n".join(parts)


def build_meta_input(prompts, summary, total_issues, iterations):
    lines = [
        f"- **{g['rule']}** ({g['severity']}, {g['count']}x): {g['message']}"
        for g in summary
    ]
    return (
        f"## Current Generator Prompt\n{prompts[ROLE_GENERATOR]}\n\n"
        f"## Current Reviewer Prompt\n{prompts[ROLE_REVIEWER]}\n\n"
        f"## Error Summary ({total_issues} total across {iterations} iterations)\n"
        + "\n".join(lines)
        + "\n\nImprove both prompts to prevent these recurring errors."
    )


class FlowOracle:
    """Role-specific calls against an LLMClient-like object (anything with call())."""

    def __init__(self, client, prompt_store, models=None):
        self.client = client
        self.prompt_store = prompt_store
        self.models = models or resolve_models()

    def _ask(self, role, user_prompt):
        system_prompt = self.prompt_store.read(role)
        try:
            return self.client.call(system_prompt, user_prompt, self.models[role])
        except LLMError as e:
            log("oracle.error", level="error", role=role, error=str(e), status_code=e.status_code)
            return None

    def review(self, flow_json, deterministic_issues, connector_context=""):
        """Ask the reviewer for issues the rule engines cannot see.

        Returns:
            list of normalized issue dicts; [] when the answer is unusable.
        """
        raw = self._ask(ROLE_REVIEWER, build_review_input(flow_json, deterministic_issues, connector_context))
        result = extract_json(raw) if raw else None
        if not isinstance(result, dict):
            return []
        return normalize_issues(result.get("errors"))

    def fix(self, flow_json, issues, connector_context=""):
        """Ask the generator for a corrected flow.

        Returns:
            The extracted JSON value, or None. Callers decide whether it is a
            usable replacement document.
        """
        raw = self._ask(ROLE_GENERATOR, build_fix_input(flow_json, issues, connector_context))
        return extract_json(raw) if raw else None

    def meta_improve(self, prompts, summary, total_issues, iterations):
        """Ask the meta-improver for rewritten generator/reviewer prompts.

        Returns:
            dict possibly holding generator_prompt, reviewer_prompt, changes;
            None when the answer is unusable.
        """
        raw = self._ask(ROLE_META_IMPROVER, build_meta_input(prompts, summary, total_issues, iterations))
        result = extract_json(raw) if raw else None
        return result if isinstance(result, dict) else None
