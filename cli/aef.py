#!/usr/bin/env python3
"""
aef — Agentic E2E Flow CLI.

Validates and repairs Appmixer E2E test flows from the command line.

Usage:
    aef validate <flow.json>        Run the deterministic rules
    aef improve <flow.json>         Run the self-improving validate → review → fix loop
    aef prompts show [role]         Print the current system prompt(s)

Options for improve:
    --max-iterations N    Iterations per meta round (default: 5)
    --max-meta-rounds N   Meta-improvement rounds (default: 3)
    --generator-model M   Model for the generator
    --reviewer-model M    Model for the reviewer
    --meta-model M        Model for the meta-improver
    --context PATH        File with extra component schema context for the LLM
    --output PATH         Where to write the improved flow (default: overwrite input)

Environment variables:
    ANTHROPIC_API_KEY       LLM credentials (improve only)
    CONNECTORS_DIR          Connectors directory enabling input coverage rules
    FLOW_VARIABLE_SCOPE     "flow" (default) or "upstream"
    FLOW_AGENT_PROMPTS_DIR  Prompt directory
    FLOW_AGENT_LOGS_DIR     Run log directory

Exit codes: 0 valid / improved, 1 invalid / exhausted / bad input.
"""

import argparse
import json
import os
import sys

from dotenv import load_dotenv

from tools.flow_oracle import FlowOracle, resolve_models
from tools.llm_client import LLMError, get_llm_client
from tools.logger import set_level, set_stream
from tools.prompt_store import ROLES, FilePromptStore
from tools.run_log import FileRunLog
from tools.self_improving_flow_agent import deterministic_issues, run_self_improving_loop
from tools.validate_input_coverage import get_schema_provider
from tools.validation_issue import critical_issues, format_issue

OUTPUT_JSON = False


def print_json(data):
    """Print formatted JSON."""
    print(json.dumps(data, indent=2, default=str))


def load_flow(path):
    """Read a flow JSON file or exit with an error message."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        print(f"Error: Cannot read {path}: {e}")
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {path} is not valid JSON: {e}")
        sys.exit(1)


def write_flow(path, flow_json):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(flow_json, f, indent=4)


# ── Commands ─────────────────────────────────────────────────────


def cmd_validate(args):
    """Run the deterministic rules against a flow file."""
    flow_json = load_flow(args.flow)
    try:
        issues = deterministic_issues(flow_json, get_schema_provider(args.connectors_dir), args.variable_scope)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    critical = critical_issues(issues)
    if OUTPUT_JSON:
        print_json({"valid": not critical, "issues": issues})
    elif not issues:
        print("PASSED: no issues")
    else:
        for issue in issues:
            print(format_issue(issue))
        print(f"\n{len(critical)} critical, {len(issues) - len(critical)} warning(s)")
    return 1 if critical else 0


def cmd_improve(args):
    """Run the self-improving loop and write the result."""
    flow_json = load_flow(args.flow)

    connector_context = ""
    if args.context:
        try:
            with open(args.context, "r", encoding="utf-8") as f:
                connector_context = f.read()
        except OSError as e:
            print(f"Error: Cannot read {args.context}: {e}")
            return 1

    try:
        client = get_llm_client()
    except LLMError as e:
        print(f"Error: {e}")
        return 1

    prompt_store = FilePromptStore(args.prompts_dir)
    oracle = FlowOracle(client, prompt_store, resolve_models(
        args.generator_model, args.reviewer_model, args.meta_model))

    try:
        result = run_self_improving_loop(
            flow_json,
            oracle,
            prompt_store,
            max_iterations=args.max_iterations,
            max_meta_rounds=args.max_meta_rounds,
            schema_provider=get_schema_provider(args.connectors_dir),
            variable_scope=args.variable_scope,
            connector_context=connector_context,
            run_log=FileRunLog(args.logs_dir),
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    output_path = args.output or args.flow
    if not result["success"]:
        output_path = output_path + ".failed.json"
    write_flow(output_path, result["flow_json"])

    if OUTPUT_JSON:
        print_json({
            "success": result["success"],
            "output": output_path,
            "iterations": result["iterations"],
            "meta_rounds": result["meta_rounds"],
            "history": [entry.to_dict() for entry in result["history"]],
        })
    else:
        label = "Saved improved flow" if result["success"] else "Best effort saved"
        print(f"\n{label} to {output_path}")
        print(f"   Iterations: {result['iterations']}, Meta rounds: {result['meta_rounds']}")
    return 0 if result["success"] else 1


def cmd_prompts_show(args):
    """Print one or all system prompts."""
    store = FilePromptStore(args.prompts_dir)
    roles = [args.role] if args.role else list(ROLES)
    for role in roles:
        print(f"===== {role} =====")
        print(store.read(role))
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="aef", description="Agentic E2E Flow CLI")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Output raw JSON")
    parser.add_argument("--verbose", action="store_true", help="Log every issue found")
    parser.add_argument("--prompts-dir", default=os.getenv("FLOW_AGENT_PROMPTS_DIR"), help="Prompt directory")

    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("validate", help="Run deterministic validation")
    p.add_argument("flow", help="Path to flow JSON")
    p.add_argument("--connectors-dir", default=None, help="Connectors directory for input coverage")
    p.add_argument("--variable-scope", choices=["upstream", "flow"], default=None)

    p = sub.add_parser("improve", help="Run the self-improving loop")
    p.add_argument("flow", help="Path to flow JSON")
    p.add_argument("--max-iterations", type=int, default=5)
    p.add_argument("--max-meta-rounds", type=int, default=3)
    p.add_argument("--generator-model", default=None)
    p.add_argument("--reviewer-model", default=None)
    p.add_argument("--meta-model", default=None)
    p.add_argument("--context", default=None, help="Connector context file")
    p.add_argument("--connectors-dir", default=None, help="Connectors directory for input coverage")
    p.add_argument("--variable-scope", choices=["upstream", "flow"], default=None)
    p.add_argument("--logs-dir", default=None, help="Run log directory")
    p.add_argument("--output", default=None, help="Output path (default: overwrite input)")

    prompts_p = sub.add_parser("prompts", help="Prompt commands")
    prompts_sub = prompts_p.add_subparsers(dest="prompts_cmd")
    pp = prompts_sub.add_parser("show", help="Show prompts")
    pp.add_argument("role", nargs="?", choices=list(ROLES), default=None)

    return parser


def main(argv=None):
    global OUTPUT_JSON

    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    OUTPUT_JSON = args.json_output
    set_level("debug" if args.verbose else "info")
    # stdout carries only the JSON document in --json mode
    set_stream(sys.stderr if OUTPUT_JSON else sys.stdout)

    if args.command == "validate":
        return cmd_validate(args)
    if args.command == "improve":
        return cmd_improve(args)
    if args.command == "prompts" and args.prompts_cmd == "show":
        return cmd_prompts_show(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
