"""
Tests for the issue model: merge/dedup, normalization, frequency summary.

Covers: tools/validation_issue.py
"""

from tools.validation_issue import (
    format_issue,
    has_critical,
    make_issue,
    merge_issues,
    normalize_issues,
    summarize_issue_frequency,
    critical_issues,
)


class TestMergeIssues:
    def test_same_rule_and_component_keeps_first(self):
        det = make_issue("critical", "assert-1", "variable-mapping", "deterministic")
        llm = make_issue("warning", "assert-1", "variable-mapping", "reviewer")
        assert merge_issues([det], [llm]) == [det]

    def test_different_component_is_appended(self):
        a = make_issue("critical", "assert-1", "variable-mapping", "a")
        b = make_issue("critical", "assert-2", "variable-mapping", "b")
        assert merge_issues([a], [b]) == [a, b]

    def test_null_component_dedups_on_rule(self):
        a = make_issue("critical", None, "flow-name", "a")
        b = make_issue("critical", None, "flow-name", "b")
        assert merge_issues([a], [b]) == [a]

    def test_primary_duplicates_are_kept(self):
        a1 = make_issue("critical", "x", "variable-path", "first path")
        a2 = make_issue("critical", "x", "variable-path", "second path")
        assert merge_issues([a1, a2], []) == [a1, a2]

    def test_secondary_duplicates_collapse(self):
        b1 = make_issue("warning", "x", "semantic", "one")
        b2 = make_issue("warning", "x", "semantic", "two")
        assert merge_issues([], [b1, b2]) == [b1]

    def test_inputs_not_modified(self):
        primary = [make_issue("critical", None, "flow-name", "a")]
        secondary = [make_issue("warning", "c", "semantic", "b")]
        merge_issues(primary, secondary)
        assert len(primary) == 1 and len(secondary) == 1


class TestCriticalHelpers:
    def test_has_critical(self):
        assert has_critical([make_issue("critical", None, "r", "m")])
        assert not has_critical([make_issue("warning", None, "r", "m")])
        assert not has_critical([])

    def test_critical_issues(self):
        issues = [make_issue("warning", None, "a", ""), make_issue("critical", None, "b", "")]
        assert [i["rule"] for i in critical_issues(issues)] == ["b"]


class TestNormalizeIssues:
    def test_well_formed_passthrough(self):
        raw = [{"severity": "critical", "component": "a1", "rule": "wrong-port", "message": "m"}]
        assert normalize_issues(raw) == raw

    def test_drops_entries_without_rule(self):
        raw = [{"severity": "critical", "message": "no rule"}, "text", None, {"rule": "  "}]
        assert normalize_issues(raw) == []

    def test_unknown_severity_becomes_warning(self):
        issues = normalize_issues([{"severity": "blocker", "rule": "x", "message": "m"}])
        assert issues[0]["severity"] == "warning"
        assert issues[0]["component"] is None

    def test_component_coerced_to_string(self):
        issues = normalize_issues([{"severity": "warning", "component": 7, "rule": "x"}])
        assert issues[0]["component"] == "7"
        assert issues[0]["message"] == ""

    def test_non_list(self):
        assert normalize_issues({"errors": []}) == []
        assert normalize_issues(None) == []


class TestSummarizeIssueFrequency:
    def test_groups_by_rule_and_severity_sorted_descending(self):
        issues = [
            make_issue("critical", "a", "variable-mapping", "first vm"),
            make_issue("warning", "a", "meaningless-data", "md"),
            make_issue("critical", "b", "variable-mapping", "second vm"),
            make_issue("critical", "c", "variable-mapping", "third vm"),
            make_issue("warning", None, "variable-mapping", "warning vm"),
            make_issue("warning", "d", "meaningless-data", "md 2"),
        ]
        summary = summarize_issue_frequency(issues)
        assert [(g["rule"], g["severity"], g["count"]) for g in summary] == [
            ("variable-mapping", "critical", 3),
            ("meaningless-data", "warning", 2),
            ("variable-mapping", "warning", 1),
        ]
        assert summary[0]["message"] == "first vm"

    def test_empty(self):
        assert summarize_issue_frequency([]) == []


def test_format_issue():
    line = format_issue(make_issue("critical", "assert-1", "afterall-connection", "not connected"))
    assert line == "[critical] afterall-connection [assert-1]: not connected"
