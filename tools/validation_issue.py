"""
Validation Issue Model

Severity-tagged findings shared by the structural validator, the input
coverage validator and the LLM reviewer.

Issue shape:
    {"severity": "critical" | "warning",
     "component": <component id> | None,
     "rule": <rule id>,
     "message": <human-readable text>}

Two issues are duplicates when (rule, component) match.

Deterministic. No network calls.
"""

CRITICAL = "critical"
WARNING = "warning"
SEVERITIES = (CRITICAL, WARNING)


def make_issue(severity, component, rule, message):
    return {"severity": severity, "component": component, "rule": rule, "message": message}


def issue_key(issue):
    return (issue.get("rule"), issue.get("component"))


def merge_issues(primary, secondary):
    """Concatenate primary with the members of secondary not already present.

    First occurrence wins: a deterministic finding is never replaced by a
    reviewer finding of the same (rule, component).

    Args:
        primary: Issues that are kept as-is (usually deterministic).
        secondary: Issues appended only if their key is new.

    Returns:
        New list; inputs are not modified.
    """
    merged = list(primary)
    seen = {issue_key(i) for i in merged}
    for issue in secondary:
        key = issue_key(issue)
        if key in seen:
            continue
        seen.add(key)
        merged.append(issue)
    return merged


def critical_issues(issues):
    return [i for i in issues if i.get("severity") == CRITICAL]


def has_critical(issues):
    return any(i.get("severity") == CRITICAL for i in issues)


def normalize_issues(raw_issues):
    """Coerce reviewer-provided issue dicts into the issue shape.

    Entries that are not dicts or carry no rule are dropped. Unknown
    severities become warnings so a reviewer cannot block convergence with
    a made-up level.
    """
    if not isinstance(raw_issues, list):
        return []

    issues = []
    for raw in raw_issues:
        if not isinstance(raw, dict):
            continue
        rule = raw.get("rule")
        if not isinstance(rule, str) or not rule.strip():
            continue
        severity = raw.get("severity")
        if severity not in SEVERITIES:
            severity = WARNING
        component = raw.get("component")
        if component is not None and not isinstance(component, str):
            component = str(component)
        message = raw.get("message")
        issues.append(make_issue(
            severity,
            component,
            rule.strip(),
            message if isinstance(message, str) else "",
        ))
    return issues


def summarize_issue_frequency(issues):
    """Group issues by (rule, severity) and count occurrences.

    Returns:
        List of {"rule", "severity", "count", "message"} dicts, most frequent
        first. message is the first one seen for the group. Ties keep first
        appearance order.
    """
    groups = {}
    for issue in issues:
        key = (issue.get("rule"), issue.get("severity"))
        if key not in groups:
            groups[key] = {
                "rule": key[0],
                "severity": key[1],
                "count": 0,
                "message": issue.get("message", ""),
            }
        groups[key]["count"] += 1
    return sorted(groups.values(), key=lambda g: g["count"], reverse=True)


def format_issue(issue):
    """One-line rendering used in logs and CLI output."""
    component = issue.get("component")
    where = f" [{component}]" if component else ""
    return f"[{issue.get('severity')}] {issue.get('rule')}{where}: {issue.get('message')}"
