"""
Flow Structure Validator

Runs the structural rules against an E2E test flow and returns a flat list
of validation issues. Rules never raise on malformed sub-structures; they
report them as issues instead.

Input: flow_json (dict) or FlowDocument, variable_scope ("upstream" | "flow")
Output: list of issue dicts (see tools.validation_issue)

Rules:
  flow-name            — name present and starts with "E2E "
  flow-structure       — "flow" is a non-empty mapping (short-circuits the rest)
  required-component   — OnStart, AfterAll and ProcessE2EResults present
  afterall-connection  — every Assert is in AfterAll's source.in
  source-mismatch      — every transform source is in source.in
  variable-mapping     — every modifier variable appears as {{{varId}}} in its lambda
  variable-path        — every "$.<id>." reference resolves inside the allowed scope
  process-config       — ProcessE2EResults declares successStoreId and failedStoreId
  process-result       — ProcessE2EResults result lambda interpolates its variable

Order of the returned issues is not part of the contract.

Deterministic. No network calls. No conversation context.
"""

import json
import os

from tools.flow_graph import (
    AFTER_ALL_TYPE,
    ASSERT_TYPE,
    ON_START_TYPE,
    PROCESS_RESULTS_TYPE,
    FlowDocument,
    interpolation_token,
    parse_flow_document,
    variable_reference_target,
)
from tools.validation_issue import CRITICAL, make_issue

FLOW_NAME_PREFIX = "E2E "

REQUIRED_TYPES = [
    (ON_START_TYPE, "OnStart"),
    (AFTER_ALL_TYPE, "AfterAll"),
    (PROCESS_RESULTS_TYPE, "ProcessE2EResults"),
]

# "upstream": a variable may only reference the component itself or a member
#             of its source.in.
# "flow":     a variable may reference any component that exists in the flow.
VARIABLE_SCOPE_UPSTREAM = "upstream"
VARIABLE_SCOPE_FLOW = "flow"
VARIABLE_SCOPES = (VARIABLE_SCOPE_UPSTREAM, VARIABLE_SCOPE_FLOW)
DEFAULT_VARIABLE_SCOPE = VARIABLE_SCOPE_FLOW

EXPRESSION_FIELD = "expression"


def resolve_variable_scope(variable_scope=None):
    """Pick the variable-path scope: explicit argument, then FLOW_VARIABLE_SCOPE.

    Raises:
        ValueError: If the chosen scope is not one of VARIABLE_SCOPES.
    """
    scope = variable_scope or os.environ.get("FLOW_VARIABLE_SCOPE") or DEFAULT_VARIABLE_SCOPE
    if scope not in VARIABLE_SCOPES:
        raise ValueError(f"variable scope must be one of {VARIABLE_SCOPES}, got: {scope!r}")
    return scope


# ===== Flow-level rules =====

def check_flow_name(doc, scope):
    name = doc.name
    if not name:
        return [make_issue(CRITICAL, None, "flow-name", "Flow name is missing")]
    if not isinstance(name, str) or not name.startswith(FLOW_NAME_PREFIX):
        return [make_issue(CRITICAL, None, "flow-name",
                           f'Flow name must start with "{FLOW_NAME_PREFIX}". Got: "{name}"')]
    return []


def check_flow_structure(doc, scope):
    if doc.is_well_formed:
        return []
    if "flow" not in doc.raw:
        message = 'Missing "flow" property'
    else:
        message = '"flow" must be a non-empty mapping of components'
    return [make_issue(CRITICAL, None, "flow-structure", message)]


def check_required_components(doc, scope):
    types = doc.component_types()
    return [
        make_issue(CRITICAL, None, "required-component", f"Missing {label} component")
        for component_type, label in REQUIRED_TYPES
        if component_type not in types
    ]


def check_afterall_connections(doc, scope):
    after_all = doc.first_of_type(AFTER_ALL_TYPE)
    if after_all is None:
        return []
    return [
        make_issue(CRITICAL, assert_component.id, "afterall-connection",
                   f"Assert \"{assert_component.id}\" is NOT connected to AfterAll's source.in")
        for assert_component in doc.components_of_type(ASSERT_TYPE)
        if assert_component.id not in after_all.upstream
    ]


def check_process_config(doc, scope):
    process = doc.first_of_type(PROCESS_RESULTS_TYPE)
    if process is None:
        return []
    issues = []
    for prop in ("successStoreId", "failedStoreId"):
        if not process.properties.get(prop):
            issues.append(make_issue(CRITICAL, process.id, "process-config", f"Missing {prop}"))
    return issues


def check_process_result(doc, scope):
    process = doc.first_of_type(PROCESS_RESULTS_TYPE)
    if process is None or not process.bindings:
        return []

    binding = next(iter(process.bindings.values()))
    result_modifier = binding.modifiers.get("result")
    if not isinstance(result_modifier, dict) or len(result_modifier) != 1:
        return []

    var_id = next(iter(result_modifier))
    token = interpolation_token(var_id)
    result_lambda = binding.templates.get("result")
    if isinstance(result_lambda, str) and token in result_lambda:
        return []
    return [make_issue(CRITICAL, process.id, "process-result",
                       f'ProcessE2EResults result should be "{token}" but got "{result_lambda}"')]


# ===== Component-level rules =====

def check_source_mismatch(doc, scope):
    issues = []
    for component in doc.components.values():
        valid = ", ".join(sorted(component.upstream))
        for source_id in component.bindings:
            if source_id not in component.upstream:
                issues.append(make_issue(
                    CRITICAL, component.id, "source-mismatch",
                    f'Transform references "{source_id}" but it\'s not in source.in [{valid}]'))
    return issues


def _variable_mapping_issues(component_id, binding):
    issues = []
    for field_name, modifier_def in binding.modifiers.items():
        if not isinstance(modifier_def, dict) or not modifier_def:
            continue

        var_ids = list(modifier_def)
        template = binding.templates.get(field_name)

        # Assert expression: variables live inside the AND array of conditions
        if field_name == EXPRESSION_FIELD and isinstance(template, dict):
            serialized = json.dumps(template.get("AND") or [])
            for var_id in var_ids:
                if interpolation_token(var_id) not in serialized:
                    issues.append(make_issue(
                        CRITICAL, component_id, "variable-mapping",
                        f'Modifier "{var_id}" in expression not referenced in lambda AND array'))
            continue

        if template is None or template == "":
            issues.append(make_issue(
                CRITICAL, component_id, "variable-mapping",
                f'Lambda for "{field_name}" is empty but modifier defines: {", ".join(var_ids)}'))
        elif isinstance(template, str):
            for var_id in var_ids:
                if interpolation_token(var_id) not in template:
                    issues.append(make_issue(
                        CRITICAL, component_id, "variable-mapping",
                        f'Modifier "{var_id}" for "{field_name}" not referenced in lambda. '
                        f'Lambda: "{template}"'))
    return issues


def check_variable_mapping(doc, scope):
    issues = []
    for component in doc.components.values():
        for binding in component.bindings.values():
            issues.extend(_variable_mapping_issues(component.id, binding))
    return issues


def _iter_variable_paths(node):
    """Yield every "variable" string found anywhere in a modifier subtree."""
    if isinstance(node, dict):
        variable = node.get("variable")
        if isinstance(variable, str):
            yield variable
        for value in node.values():
            yield from _iter_variable_paths(value)
    elif isinstance(node, list):
        for value in node:
            yield from _iter_variable_paths(value)


def check_variable_paths(doc, scope):
    issues = []
    all_ids = set(doc.all_component_ids())
    for component in doc.components.values():
        allowed = component.upstream if scope == VARIABLE_SCOPE_UPSTREAM else all_ids
        for binding in component.bindings.values():
            for path in _iter_variable_paths(binding.modifiers):
                ref = variable_reference_target(path)
                if ref is None or ref == component.id or ref in allowed:
                    continue
                if scope == VARIABLE_SCOPE_UPSTREAM:
                    message = f'Variable "{path}" references "{ref}" not in source.in'
                else:
                    message = f'Variable "{path}" references "{ref}" which doesn\'t exist in the flow'
                issues.append(make_issue(CRITICAL, component.id, "variable-path", message))
    return issues


# Checks that need only the document header; run on every document.
HEADER_CHECKS = [
    ("flow-name", check_flow_name),
    ("flow-structure", check_flow_structure),
]

# Checks that walk the component graph; skipped when flow-structure fails.
GRAPH_CHECKS = [
    ("required-component", check_required_components),
    ("afterall-connection", check_afterall_connections),
    ("process-config", check_process_config),
    ("process-result", check_process_result),
    ("source-mismatch", check_source_mismatch),
    ("variable-mapping", check_variable_mapping),
    ("variable-path", check_variable_paths),
]


def structural_issues(flow, variable_scope=None):
    """Run all structural rules against a flow.

    Args:
        flow: Raw flow JSON dict or an already parsed FlowDocument.
        variable_scope: "upstream" (strict) or "flow" (relaxed). Defaults to
                        FLOW_VARIABLE_SCOPE, then "flow".

    Returns:
        list of issue dicts. A document without a usable "flow" mapping yields
        the header issues only.
    """
    scope = resolve_variable_scope(variable_scope)
    doc = flow if isinstance(flow, FlowDocument) else parse_flow_document(flow)

    issues = []
    for _rule, check in HEADER_CHECKS:
        issues.extend(check(doc, scope))

    if not doc.is_well_formed:
        return issues

    for _rule, check in GRAPH_CHECKS:
        issues.extend(check(doc, scope))
    return issues
