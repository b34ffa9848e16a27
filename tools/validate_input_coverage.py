"""
Input Coverage Validator

Checks the fields an E2E flow fills in for each connector component against
that component's input-port schema (component.json, inPorts[0].schema).

Input: flow_json (dict) or FlowDocument, schema_provider
Output: list of issue dicts (see tools.validation_issue)

Rules:
  input-coverage-required  — critical, one per required field not filled in
  input-coverage-optional  — warning, one per component listing every untested optional field
  unknown-field            — critical, field filled in but absent from the schema
  meaningless-data         — warning, literal placeholder value ("test", "foo", "123", ...)
  invalid-enum             — critical, literal value outside the declared enum
  type-mismatch            — warning, literal value not shaped like integer / boolean

Literal checks skip any lambda value that still contains an interpolation
token; those are resolved at runtime.

Utility components (controls, test harness) are skipped. Components whose
type has no schema are skipped, not failed.

Deterministic. Reads component.json files from disk; no network calls.
"""

import json
import os
import re

from tools.flow_graph import FlowDocument, parse_flow_document
from tools.validation_issue import CRITICAL, WARNING, make_issue

GENERIC_VALUES = {
    "", "test", "string", "value", "example", "foo", "bar", "baz",
    "undefined", "null", "none", "n/a", "todo", "placeholder", "xxx", "abc", "123",
}

UTIL_PREFIXES = (
    "appmixer.utils.controls.",
    "appmixer.utils.test.",
)

CONNECTOR_PREFIX = "appmixer."

INTEGER_PATTERN = re.compile(r"^-?\d+$")
BOOLEAN_VALUES = {"true", "false"}


# ===== Schema providers =====

class SchemaProvider:
    """Resolves a component type to its input schema.

    get_schema returns {"required": [...], "properties": {...}} or None when
    the type is unknown.
    """

    def get_schema(self, component_type):
        raise NotImplementedError


class DictSchemaProvider(SchemaProvider):
    """In-memory schemas keyed by component type."""

    def __init__(self, schemas):
        self.schemas = dict(schemas or {})

    def get_schema(self, component_type):
        schema = self.schemas.get(component_type)
        if schema is None:
            return None
        return _normalize_schema(schema)


class DirectorySchemaProvider(SchemaProvider):
    """Loads component.json files from a connectors directory.

    appmixer.slack.list.SendChannelMessage resolves to
    <connectors_dir>/appmixer/slack/list/SendChannelMessage/component.json.
    """

    def __init__(self, connectors_dir):
        self.connectors_dir = connectors_dir
        self._cache = {}

    def component_path(self, component_type):
        """Path of the type's component.json, or None if a segment is not a plain name."""
        parts = component_type.split(".")
        for part in parts:
            if not part or part in (".", "..") or "/" in part or "\\" in part or os.path.isabs(part):
                return None
        return os.path.join(self.connectors_dir, *parts, "component.json")

    def get_schema(self, component_type):
        if component_type not in self._cache:
            self._cache[component_type] = self._load(component_type)
        return self._cache[component_type]

    def _load(self, component_type):
        path = self.component_path(component_type)
        if path is None:
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                component_json = json.load(f)
        except (OSError, ValueError):
            return None
        return input_schema(component_json)


def input_schema(component_json):
    """Extract {"required", "properties"} from a component.json document."""
    if not isinstance(component_json, dict):
        return None
    in_ports = component_json.get("inPorts")
    first_port = in_ports[0] if isinstance(in_ports, list) and in_ports else {}
    schema = first_port.get("schema") if isinstance(first_port, dict) else None
    return _normalize_schema(schema or {})


def _normalize_schema(schema):
    properties = schema.get("properties") if isinstance(schema, dict) else None
    required = schema.get("required") if isinstance(schema, dict) else None
    return {
        "properties": properties if isinstance(properties, dict) else {},
        "required": [f for f in required if isinstance(f, str)] if isinstance(required, list) else [],
    }


def get_schema_provider(connectors_dir=None):
    """Build a directory provider from the argument or CONNECTORS_DIR; None if unset."""
    connectors_dir = connectors_dir or os.environ.get("CONNECTORS_DIR")
    if not connectors_dir:
        return None
    return DirectorySchemaProvider(connectors_dir)


# ===== Individual rules =====

def check_required_fields(component_id, used_fields, required_fields, component_type):
    return [
        make_issue(CRITICAL, component_id, "input-coverage-required",
                   f'Required field "{field}" is not provided (schema: {component_type})')
        for field in required_fields
        if field not in used_fields
    ]


def check_optional_coverage(component_id, used_fields, schema_fields, required_fields):
    missing = [f for f in schema_fields if f not in required_fields and f not in used_fields]
    if not missing:
        return []
    return [make_issue(
        WARNING, component_id, "input-coverage-optional",
        f"Optional fields not tested: [{', '.join(missing)}] "
        f"({len(missing)}/{len(schema_fields)} missing)")]


def check_unknown_fields(component_id, used_fields, schema_fields):
    known = ", ".join(schema_fields)
    return [
        make_issue(CRITICAL, component_id, "unknown-field",
                   f'Field "{field}" is not defined in component schema. Available: [{known}]')
        for field in sorted(used_fields)
        if field not in schema_fields
    ]


def check_data_quality(component, schema_properties):
    issues = []
    for binding in component.bindings.values():
        for field_name, value in binding.templates.items():
            if not isinstance(value, str) or "{{{" in value:
                continue

            trimmed = value.strip().lower()
            field_schema = schema_properties.get(field_name)
            if not isinstance(field_schema, dict):
                field_schema = {}

            if trimmed in GENERIC_VALUES:
                issues.append(make_issue(
                    WARNING, component.id, "meaningless-data",
                    f'Field "{field_name}" has generic/empty value "{value}". Use realistic test data.'))

            enum = field_schema.get("enum")
            if isinstance(enum, list) and value not in enum:
                issues.append(make_issue(
                    CRITICAL, component.id, "invalid-enum",
                    f'Field "{field_name}" value "{value}" not in enum: '
                    f'[{", ".join(str(e) for e in enum)}]'))

            field_type = field_schema.get("type")
            if field_type == "integer" and not INTEGER_PATTERN.match(value):
                issues.append(make_issue(
                    WARNING, component.id, "type-mismatch",
                    f'Field "{field_name}" expects integer but got "{value}"'))
            if field_type == "boolean" and trimmed not in BOOLEAN_VALUES:
                issues.append(make_issue(
                    WARNING, component.id, "type-mismatch",
                    f'Field "{field_name}" expects boolean but got "{value}"'))
    return issues


def is_checked_type(component_type):
    if not component_type.startswith(CONNECTOR_PREFIX):
        return False
    return not component_type.startswith(UTIL_PREFIXES)


# ===== Composition =====

def coverage_issues(flow, schema_provider=None):
    """Run the input coverage rules for every connector component in a flow.

    Args:
        flow: Raw flow JSON dict or parsed FlowDocument.
        schema_provider: SchemaProvider; when None the check is inactive.

    Returns:
        list of issue dicts.
    """
    if schema_provider is None:
        return []

    doc = flow if isinstance(flow, FlowDocument) else parse_flow_document(flow)
    if not doc.is_well_formed:
        return []

    issues = []
    for component in doc.components.values():
        if not is_checked_type(component.type):
            continue

        schema = schema_provider.get_schema(component.type)
        if not schema:
            continue
        properties = schema.get("properties") or {}
        schema_fields = list(properties)
        if not schema_fields:
            continue
        required_fields = schema.get("required") or []

        used_fields = component.populated_fields()
        issues.extend(check_required_fields(component.id, used_fields, required_fields, component.type))
        issues.extend(check_optional_coverage(component.id, used_fields, schema_fields, required_fields))
        issues.extend(check_unknown_fields(component.id, used_fields, schema_fields))
        issues.extend(check_data_quality(component, properties))
    return issues
