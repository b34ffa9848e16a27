"""
Structured Logger

Thin wrapper around Python logging for structured event output.
Used by the self-improving flow agent, the oracle client and the run log.
"""

import json
import logging
import sys
from datetime import datetime, timezone

_logger = logging.getLogger("agentic_e2e_flows")
if not _logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)

_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def log(event: str, level: str = "info", **kwargs):
    """
    Emit a structured log line as JSON.

    Args:
        event:  Dot-separated event name (e.g. "agent.iteration")
        level:  Log level string (debug, info, warning, error, critical)
        **kwargs: Additional key-value data to include
    """
    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "level": level,
    }
    entry.update(kwargs)
    py_level = _LEVEL_MAP.get(level, logging.INFO)
    _logger.log(py_level, json.dumps(entry, default=str))


def set_level(level: str):
    """Change the threshold of the package logger (CLI --verbose)."""
    _logger.setLevel(_LEVEL_MAP.get(level, logging.INFO))


def set_stream(stream):
    """Point the package handler at another stream (CLI --json sends logs to stderr)."""
    for handler in _logger.handlers:
        if isinstance(handler, logging.StreamHandler):
            handler.setStream(stream)


if __name__ == "__main__":
    print("=== Logger Self-Check ===\n")

    print("Test 1: Iteration event")
    log("agent.iteration", iteration=1, deterministic=2, review=0, critical=1)
    print("  [OK]")

    print("Test 2: Debug hidden until --verbose")
    log("agent.issue", level="debug", detail="hidden")
    set_level("debug")
    log("agent.issue", level="debug", detail="[critical] flow-name: visible")
    set_level("info")
    print("  [OK]")

    print("Test 3: Errors routed to stderr")
    set_stream(sys.stderr)
    log("oracle.error", level="error", role="reviewer", error="timeout", status_code=0)
    set_stream(sys.stdout)
    print("  [OK]")

    print("\n=== All logger checks passed ===")
