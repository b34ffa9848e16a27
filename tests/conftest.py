"""
Test configuration — point the database at SQLite before any app code loads,
plus shared flow fixtures and a scripted oracle.
"""

import copy
import os

import pytest

# Set dummy DATABASE_URL before any imports
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("FLOW_VARIABLE_SCOPE", None)

from tools.flow_graph import AFTER_ALL_TYPE, ASSERT_TYPE, ON_START_TYPE, PROCESS_RESULTS_TYPE
from tools.prompt_store import InMemoryPromptStore

SLACK_SEND_TYPE = "appmixer.slack.list.SendChannelMessage"

VALID_FLOW = {
    "name": "E2E Slack SendChannelMessage",
    "flow": {
        "on-start": {
            "type": ON_START_TYPE,
            "source": {},
            "config": {},
        },
        "send-message": {
            "type": SLACK_SEND_TYPE,
            "source": {"in": {"on-start": ["out"]}},
            "config": {
                "transform": {
                    "in": {
                        "on-start": {
                            "out": {
                                "type": "json2new",
                                "modifiers": {},
                                "lambda": {
                                    "channelId": "C04QJ3V8K2L",
                                    "text": "Quarterly report is ready for review",
                                },
                            }
                        }
                    }
                }
            },
        },
        "assert-message": {
            "type": ASSERT_TYPE,
            "source": {"in": {"send-message": ["out"]}},
            "config": {
                "transform": {
                    "in": {
                        "send-message": {
                            "out": {
                                "type": "json2new",
                                "modifiers": {
                                    "expression": {
                                        "v1": {"variable": "$.send-message.out.ts", "functions": []}
                                    }
                                },
                                "lambda": {
                                    "expression": {
                                        "AND": [{"field": "{{{v1}}}", "assertion": "notEmpty"}]
                                    }
                                },
                            }
                        }
                    }
                }
            },
        },
        "after-all": {
            "type": AFTER_ALL_TYPE,
            "source": {"in": {"assert-message": ["out"]}},
            "config": {},
        },
        "process-results": {
            "type": PROCESS_RESULTS_TYPE,
            "source": {"in": {"after-all": ["out"]}},
            "config": {
                "properties": {
                    "successStoreId": "65f1c0a9e4b0a1d2c3b4a5f6",
                    "failedStoreId": "65f1c0a9e4b0a1d2c3b4a5f7",
                },
                "transform": {
                    "in": {
                        "after-all": {
                            "out": {
                                "type": "json2new",
                                "modifiers": {
                                    "result": {"r1": {"variable": "$.after-all.out.result"}}
                                },
                                "lambda": {"result": "{{{r1}}}"},
                            }
                        }
                    }
                }
            },
        },
    },
}

SLACK_SEND_SCHEMA = {
    "required": ["channelId", "text"],
    "properties": {
        "channelId": {"type": "string"},
        "text": {"type": "string"},
        "asBot": {"type": "boolean"},
        "iconUrl": {"type": "string"},
        "parse": {"type": "string", "enum": ["none", "full"]},
        "threadTs": {"type": "string"},
        "retries": {"type": "integer"},
    },
}


@pytest.fixture
def valid_flow():
    """A fully wired flow with zero structural issues (fresh copy per test)."""
    return copy.deepcopy(VALID_FLOW)


@pytest.fixture
def slack_schema():
    return copy.deepcopy(SLACK_SEND_SCHEMA)


@pytest.fixture
def prompt_store():
    return InMemoryPromptStore({
        "generator": "generator v1",
        "reviewer": "reviewer v1",
        "meta-improver": "meta v1",
    })


class ScriptedOracle:
    """Stand-in for FlowOracle returning canned answers and recording calls.

    review / fix / meta answers are lists consumed in order; the last entry
    repeats once the list is exhausted.
    """

    def __init__(self, reviews=None, fixes=None, metas=None):
        self.reviews = list(reviews or [[]])
        self.fixes = list(fixes or [None])
        self.metas = list(metas or [None])
        self.calls = []

    @staticmethod
    def _next(answers):
        return answers.pop(0) if len(answers) > 1 else answers[0]

    def review(self, flow_json, deterministic_issues, connector_context=""):
        self.calls.append(("review", copy.deepcopy(flow_json)))
        return copy.deepcopy(self._next(self.reviews))

    def fix(self, flow_json, issues, connector_context=""):
        self.calls.append(("fix", copy.deepcopy(flow_json)))
        return copy.deepcopy(self._next(self.fixes))

    def meta_improve(self, prompts, summary, total_issues, iterations):
        self.calls.append(("meta", {"prompts": dict(prompts), "summary": summary,
                                    "total_issues": total_issues, "iterations": iterations}))
        return copy.deepcopy(self._next(self.metas))

    def count(self, kind):
        return sum(1 for name, _ in self.calls if name == kind)


@pytest.fixture
def scripted_oracle():
    """Factory: scripted_oracle(reviews=..., fixes=..., metas=...)."""
    return ScriptedOracle
