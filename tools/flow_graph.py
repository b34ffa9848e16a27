"""
Flow Graph Model

Parses an Appmixer E2E test flow document into an id-keyed component
arena. Components reference each other only by string id; all lookups go
through the arena.

Input: raw flow JSON (dict) with "name" and "flow" keys
Output: FlowDocument with components keyed by component id

Wire shape per component:
    type                                     — component type identifier
    source.in                                — {upstreamId: [ports]} (upstream set)
    config.properties                        — static component properties
    config.transform.in.<upstreamId>.out     — field binding:
        modifiers: {field: {varId: {"variable": "$.<id>.<path>", ...}}}
        lambda:    {field: "template with {{{varId}}}" | nested expression}

No normalization beyond presence checks. Deterministic. No network calls.
"""

import re

ON_START_TYPE = "appmixer.utils.controls.OnStart"
AFTER_ALL_TYPE = "appmixer.utils.test.AfterAll"
PROCESS_RESULTS_TYPE = "appmixer.utils.test.ProcessE2EResults"
ASSERT_TYPE = "appmixer.utils.test.Assert"

VARIABLE_PATH_PATTERN = re.compile(r"^\$\.([^.]+)\.")


def interpolation_token(var_id):
    """Return the three-brace token a template uses to embed var_id."""
    return "{{{" + str(var_id) + "}}}"


def variable_reference_target(path):
    """Return the component id a "$.<id>.<rest>" path points at, or None."""
    if not isinstance(path, str):
        return None
    match = VARIABLE_PATH_PATTERN.match(path)
    return match.group(1) if match else None


class FieldBinding:
    """Modifiers and lambda templates declared for one upstream source."""

    __slots__ = ("source_id", "modifiers", "templates")

    def __init__(self, source_id, modifiers=None, templates=None):
        self.source_id = source_id
        self.modifiers = modifiers if isinstance(modifiers, dict) else {}
        self.templates = templates if isinstance(templates, dict) else {}

    @property
    def has_mapping(self):
        """True when both a modifiers and a lambda mapping were declared."""
        return bool(self.modifiers) and bool(self.templates)

    def __repr__(self):
        return f"FieldBinding(source_id={self.source_id!r}, fields={sorted(self.templates)})"


class Component:
    """One node of the flow graph."""

    __slots__ = ("id", "type", "upstream", "bindings", "properties")

    def __init__(self, component_id, component_type, upstream, bindings, properties):
        self.id = component_id
        self.type = component_type
        self.upstream = upstream
        self.bindings = bindings
        self.properties = properties

    def populated_fields(self):
        """Names of all fields any binding of this component fills in."""
        fields = set()
        for binding in self.bindings.values():
            fields.update(binding.templates.keys())
        return fields

    def __repr__(self):
        return f"Component(id={self.id!r}, type={self.type!r})"


class FlowDocument:
    """Navigable view over a flow document.

    components is None when the "flow" mapping is missing, not a mapping,
    or empty; structural analysis stops there.
    """

    def __init__(self, name, components, raw):
        self.name = name
        self.components = components
        self.raw = raw

    @property
    def is_well_formed(self):
        return self.components is not None

    def all_component_ids(self):
        return list(self.components or {})

    def components_of_type(self, component_type):
        return [c for c in (self.components or {}).values() if c.type == component_type]

    def first_of_type(self, component_type):
        matches = self.components_of_type(component_type)
        return matches[0] if matches else None

    def lookup(self, component_id):
        return (self.components or {}).get(component_id)

    def component_types(self):
        return {c.type for c in (self.components or {}).values()}


def _parse_component(component_id, raw):
    if not isinstance(raw, dict):
        raw = {}

    source = raw.get("source") if isinstance(raw.get("source"), dict) else {}
    source_in = source.get("in") if isinstance(source.get("in"), dict) else {}

    config = raw.get("config") if isinstance(raw.get("config"), dict) else {}
    properties = config.get("properties") if isinstance(config.get("properties"), dict) else {}
    transform = config.get("transform") if isinstance(config.get("transform"), dict) else {}
    transform_in = transform.get("in") if isinstance(transform.get("in"), dict) else {}

    bindings = {}
    for source_id, source_config in transform_in.items():
        out = source_config.get("out") if isinstance(source_config, dict) else None
        if not isinstance(out, dict):
            out = {}
        bindings[source_id] = FieldBinding(
            source_id,
            modifiers=out.get("modifiers"),
            templates=out.get("lambda"),
        )

    component_type = raw.get("type")
    return Component(
        component_id,
        component_type if isinstance(component_type, str) else "",
        frozenset(source_in.keys()),
        bindings,
        properties,
    )


def parse_flow_document(raw):
    """Build a FlowDocument from raw flow JSON.

    Args:
        raw: Flow document dict (anything else is treated as empty).

    Returns:
        FlowDocument. name is passed through as found (None when absent).
    """
    if not isinstance(raw, dict):
        raw = {}

    name = raw.get("name")

    flow = raw.get("flow")
    components = None
    if isinstance(flow, dict) and flow:
        components = {
            component_id: _parse_component(component_id, component_raw)
            for component_id, component_raw in flow.items()
        }

    return FlowDocument(name, components, raw)


def is_replacement_document(candidate):
    """True if candidate can replace the current flow wholesale."""
    return isinstance(candidate, dict) and isinstance(candidate.get("flow"), dict)
