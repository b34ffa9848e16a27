"""
Prompt Store

Read/replace access to the three system prompts that drive the flow agent:
  generator      — fixes a flow given a list of issues
  reviewer       — reviews a flow and reports issues as JSON
  meta-improver  — rewrites generator/reviewer prompts from failure statistics

Prompts are configuration, not code: they are read at the start of every
LLM call and replaced only by the meta-improvement step, between rounds.

FilePromptStore keeps one markdown file per role (<role>-system.md) and
falls back to the packaged defaults in tools/prompts/ for roles that have
no file yet. InMemoryPromptStore is used by tests and one-off runs.
"""

import os

ROLE_GENERATOR = "generator"
ROLE_REVIEWER = "reviewer"
ROLE_META_IMPROVER = "meta-improver"
ROLES = (ROLE_GENERATOR, ROLE_REVIEWER, ROLE_META_IMPROVER)

DEFAULT_PROMPTS_DIR = os.path.join(os.path.dirname(__file__), "prompts")


def _check_role(role):
    if role not in ROLES:
        raise KeyError(f"Unknown prompt role: {role!r}. Expected one of {ROLES}")


def prompt_filename(role):
    return f"{role}-system.md"


def load_default_prompt(role):
    """Read the packaged default prompt for a role."""
    _check_role(role)
    with open(os.path.join(DEFAULT_PROMPTS_DIR, prompt_filename(role)), "r", encoding="utf-8") as f:
        return f.read()


class PromptStore:
    """Interface: read(role) -> str, replace(role, text)."""

    def read(self, role):
        raise NotImplementedError

    def replace(self, role, text):
        raise NotImplementedError

    def snapshot(self):
        """Current text of every role, keyed by role."""
        return {role: self.read(role) for role in ROLES}


class InMemoryPromptStore(PromptStore):

    def __init__(self, prompts=None):
        self._prompts = {}
        for role, text in (prompts or {}).items():
            _check_role(role)
            self._prompts[role] = text

    def read(self, role):
        _check_role(role)
        if role not in self._prompts:
            self._prompts[role] = load_default_prompt(role)
        return self._prompts[role]

    def replace(self, role, text):
        _check_role(role)
        self._prompts[role] = text


class FilePromptStore(PromptStore):
    """Prompts persisted as <prompts_dir>/<role>-system.md."""

    def __init__(self, prompts_dir=None):
        self.prompts_dir = prompts_dir or os.environ.get("FLOW_AGENT_PROMPTS_DIR") or DEFAULT_PROMPTS_DIR

    def path_for(self, role):
        _check_role(role)
        return os.path.join(self.prompts_dir, prompt_filename(role))

    def read(self, role):
        path = self.path_for(role)
        if not os.path.exists(path):
            return load_default_prompt(role)
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def replace(self, role, text):
        path = self.path_for(role)
        os.makedirs(self.prompts_dir, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
