"""
Self-Improving Flow Agent

Drives an E2E test flow through validate → review → fix iterations until no
critical issue remains. When a whole round of iterations fails, the
meta-improver rewrites the generator and reviewer prompts from the round's
failure statistics and the next round starts with the new prompts.

    for each meta round (max_meta_rounds):
        for each iteration (max_iterations):
            deterministic = structural + input coverage issues
            review        = oracle.review(flow, deterministic)
            issues        = merge(deterministic, review)
            no critical   → success
            fixed         = oracle.fix(flow, issues)
            usable fix    → flow = fixed   (otherwise the flow is kept)
        not last round → oracle.meta_improve(prompts, frequency summary)
    → exhausted

The deterministic rules always run first, so their findings are present even
when the reviewer's answer cannot be parsed. The flow is never edited in
place: each iteration keeps it or swaps in the generator's replacement.

Input: flow_json (dict), FlowOracle, PromptStore, budgets
Output: dict with success, flow_json, iterations, meta_rounds, history
"""

from dataclasses import dataclass
from typing import Optional

from tools.flow_graph import is_replacement_document
from tools.logger import log
from tools.prompt_store import ROLE_GENERATOR, ROLE_REVIEWER
from tools.run_log import build_run_record
from tools.validate_flow_structure import resolve_variable_scope, structural_issues
from tools.validate_input_coverage import coverage_issues
from tools.validation_issue import critical_issues, format_issue, merge_issues, summarize_issue_frequency


@dataclass(frozen=True)
class IterationRecord:
    """Issue snapshot of one loop pass. Never modified once appended."""

    iteration: int
    meta_round: int
    deterministic_issues: tuple
    review_issues: tuple
    total_issues: int
    critical_issues: int

    def to_dict(self):
        return {
            "iteration": self.iteration,
            "meta_round": self.meta_round,
            "deterministic_issues": [dict(i) for i in self.deterministic_issues],
            "review_issues": [dict(i) for i in self.review_issues],
            "total_issues": self.total_issues,
            "critical_issues": self.critical_issues,
        }


def deterministic_issues(flow_json, schema_provider=None, variable_scope=None):
    """Structural issues plus input coverage issues (when a schema provider is given)."""
    return structural_issues(flow_json, variable_scope) + coverage_issues(flow_json, schema_provider)


def apply_meta_improvement(prompt_store, result):
    """Persist replacement prompt texts from a meta-improver answer.

    Returns:
        list of roles that were replaced.
    """
    replaced = []
    if not isinstance(result, dict):
        return replaced
    for key, role in (("generator_prompt", ROLE_GENERATOR), ("reviewer_prompt", ROLE_REVIEWER)):
        text = result.get(key)
        if isinstance(text, str) and text.strip():
            prompt_store.replace(role, text)
            replaced.append(role)
    return replaced


def run_self_improving_loop(
    flow_json,
    oracle,
    prompt_store,
    *,
    max_iterations: int = 5,
    max_meta_rounds: int = 3,
    schema_provider=None,
    variable_scope: Optional[str] = None,
    connector_context: str = "",
    run_log=None,
) -> dict:
    """Run the validate → review → fix loop with meta-improvement between rounds.

    Args:
        flow_json: Initial flow document.
        oracle: FlowOracle (review / fix / meta_improve).
        prompt_store: PromptStore the meta-improver writes into.
        max_iterations: Iterations per meta round (>= 1).
        max_meta_rounds: Meta rounds (>= 1).
        schema_provider: Optional SchemaProvider enabling input coverage rules.
        variable_scope: "upstream" or "flow" for the variable-path rule.
        connector_context: Extra component schema text handed to the oracle.
        run_log: Optional object with write(record), called once at the end.

    Returns:
        dict with:
            - success: bool — True if the last validated flow had no critical issue
            - flow_json: dict — the last flow (validated flow on success)
            - iterations: int — total iterations recorded
            - meta_rounds: int — meta rounds entered
            - history: list[IterationRecord]

    Raises:
        ValueError: If a budget is below 1 or variable_scope is unknown.
    """
    if max_iterations < 1 or max_meta_rounds < 1:
        raise ValueError(
            f"max_iterations and max_meta_rounds must be >= 1, "
            f"got {max_iterations} and {max_meta_rounds}")
    scope = resolve_variable_scope(variable_scope)

    history = []
    current_flow = flow_json
    total_iterations = 0

    for meta_round in range(max_meta_rounds):
        log("agent.meta_round", meta_round=meta_round + 1, max_meta_rounds=max_meta_rounds)
        round_issues = []

        for iteration in range(max_iterations):
            total_iterations += 1

            det_issues = deterministic_issues(current_flow, schema_provider, scope)
            for issue in det_issues:
                log("agent.issue", level="debug", detail=format_issue(issue))

            review_issues = oracle.review(current_flow, det_issues, connector_context)
            all_issues = merge_issues(det_issues, review_issues)
            critical = critical_issues(all_issues)

            history.append(IterationRecord(
                iteration=total_iterations,
                meta_round=meta_round + 1,
                deterministic_issues=tuple(det_issues),
                review_issues=tuple(review_issues),
                total_issues=len(all_issues),
                critical_issues=len(critical),
            ))
            round_issues.extend(all_issues)
            log("agent.iteration",
                iteration=total_iterations,
                round_iteration=iteration + 1,
                deterministic=len(det_issues),
                review=len(review_issues),
                critical=len(critical))

            if not critical:
                log("agent.success", iterations=total_iterations, meta_round=meta_round + 1)
                return _finish(
                    {
                        "success": True,
                        "flow_json": current_flow,
                        "iterations": total_iterations,
                        "meta_rounds": meta_round + 1,
                        "history": history,
                    },
                    run_log, scope,
                )

            fixed = oracle.fix(current_flow, all_issues, connector_context)
            if is_replacement_document(fixed):
                current_flow = fixed
                log("agent.fix_applied", iteration=total_iterations)
            else:
                log("agent.fix_rejected", level="warning", iteration=total_iterations)

        if meta_round < max_meta_rounds - 1:
            summary = summarize_issue_frequency(round_issues)
            result = oracle.meta_improve(prompt_store.snapshot(), summary, len(round_issues), max_iterations)
            replaced = apply_meta_improvement(prompt_store, result)
            log("agent.meta_improve",
                meta_round=meta_round + 1,
                replaced=replaced,
                changes=(result or {}).get("changes") or [],
                usable=result is not None)

    log("agent.exhausted", level="warning", iterations=total_iterations, meta_rounds=max_meta_rounds)
    return _finish(
        {
            "success": False,
            "flow_json": current_flow,
            "iterations": total_iterations,
            "meta_rounds": max_meta_rounds,
            "history": history,
        },
        run_log, scope,
    )


def _finish(result, run_log, scope):
    if run_log is not None:
        try:
            run_log.write(build_run_record(result, scope))
        except Exception as e:
            log("run_log.error", level="error", error=str(e))
    return result
