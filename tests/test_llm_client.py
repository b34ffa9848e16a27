"""
Tests for the LLM client and the role-specific flow oracle.

All tests mock httpx to avoid real LLM API calls.
"""

import json
import os
from unittest.mock import MagicMock, patch

import httpx
import pytest

from tools.flow_oracle import FlowOracle, build_meta_input, resolve_models
from tools.llm_client import LLMClient, LLMError


def _response(status_code=200, payload=None, text=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text if text is not None else json.dumps(payload or {})
    resp.json.return_value = payload or {}
    return resp


def _message(text):
    return {
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }


class TestLLMClient:
    def test_get_client_raises_without_api_key(self):
        import tools.llm_client as mod
        mod._client = None
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(LLMError, match="not configured"):
                mod.get_llm_client()

    def test_get_client_created_with_env(self):
        import tools.llm_client as mod
        mod._client = None
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "sk-test", "ANTHROPIC_BASE_URL": "http://llm.local/v1/"}):
            client = mod.get_llm_client()
            assert client.api_key == "sk-test"
            assert client.base_url == "http://llm.local/v1"
            assert mod.get_llm_client() is client
        mod._client = None

    def test_call_sends_system_and_user_prompt(self):
        client = LLMClient("sk-test")
        with patch("httpx.post", return_value=_response(payload=_message("hello"))) as mock_post:
            text = client.call("be strict", "review this", "claude-haiku-4-5")
        assert text == "hello"
        url = mock_post.call_args[0][0]
        body = mock_post.call_args[1]["json"]
        headers = mock_post.call_args[1]["headers"]
        assert url.endswith("/messages")
        assert body["system"] == "be strict"
        assert body["model"] == "claude-haiku-4-5"
        assert body["messages"] == [{"role": "user", "content": "review this"}]
        assert headers["x-api-key"] == "sk-test"

    def test_call_joins_text_blocks(self):
        client = LLMClient("sk-test")
        payload = {"content": [
            {"type": "text", "text": "part one "},
            {"type": "tool_use", "id": "x"},
            {"type": "text", "text": "part two"},
        ]}
        with patch("httpx.post", return_value=_response(payload=payload)):
            assert client.call("s", "u", "m") == "part one part two"

    def test_http_error_raises(self):
        client = LLMClient("sk-test")
        with patch("httpx.post", return_value=_response(status_code=529, text="overloaded")):
            with pytest.raises(LLMError) as exc:
                client.call("s", "u", "m")
        assert exc.value.status_code == 529
        assert exc.value.body == "overloaded"

    @pytest.mark.parametrize("payload", [
        ["not", "an", "object"],
        {"content": "plain string"},
        {"content": None},
        "just text",
    ])
    def test_unexpected_body_raises(self, payload):
        client = LLMClient("sk-test")
        with patch("httpx.post", return_value=httpx.Response(200, json=payload)):
            with pytest.raises(LLMError, match="unexpected body"):
                client.call("s", "u", "m")

    def test_non_string_text_block_skipped(self):
        client = LLMClient("sk-test")
        payload = {"content": [{"type": "text", "text": 42}, {"type": "text", "text": "ok"}], "usage": None}
        with patch("httpx.post", return_value=_response(payload=payload)):
            assert client.call("s", "u", "m") == "ok"

    def test_transport_error_raises(self):
        client = LLMClient("sk-test")
        with patch("httpx.post", side_effect=httpx.ConnectError("refused")):
            with pytest.raises(LLMError, match="failed"):
                client.call("s", "u", "m")


class TestResolveModels:
    def test_explicit_then_env_then_default(self, monkeypatch):
        monkeypatch.setenv("FLOW_AGENT_REVIEWER_MODEL", "env-reviewer")
        monkeypatch.delenv("FLOW_AGENT_META_MODEL", raising=False)
        models = resolve_models(generator_model="explicit-gen")
        assert models["generator"] == "explicit-gen"
        assert models["reviewer"] == "env-reviewer"
        assert models["meta-improver"] == "claude-sonnet-4-5"


class TestFlowOracle:
    def _oracle(self, prompt_store, answer=None, error=None):
        client = MagicMock()
        if error is not None:
            client.call.side_effect = error
        else:
            client.call.return_value = answer
        models = {"generator": "gen", "reviewer": "rev", "meta-improver": "meta"}
        return FlowOracle(client, prompt_store, models), client

    def test_review_parses_errors(self, prompt_store, valid_flow):
        answer = '```json\n{"errors": [{"severity": "critical", "component": "assert-message", ' \
                 '"rule": "wrong-port", "message": "reads the wrong port"}]}\n```'
        oracle, client = self._oracle(prompt_store, answer)
        issues = oracle.review(valid_flow, [])
        assert issues == [{"severity": "critical", "component": "assert-message",
                           "rule": "wrong-port", "message": "reads the wrong port"}]
        system_prompt, user_prompt, model = client.call.call_args[0]
        assert system_prompt == "reviewer v1"
        assert model == "rev"
        assert "E2E Slack SendChannelMessage" in user_prompt

    def test_review_includes_deterministic_issues(self, prompt_store, valid_flow):
        oracle, client = self._oracle(prompt_store, '{"errors": []}')
        det = [{"severity": "critical", "component": None, "rule": "flow-name", "message": "m"}]
        assert oracle.review(valid_flow, det, connector_context="schema text") == []
        user_prompt = client.call.call_args[0][1]
        assert "Deterministic validation found" in user_prompt
        assert "schema text" in user_prompt

    def test_review_unusable_answer(self, prompt_store, valid_flow):
        oracle, _ = self._oracle(prompt_store, "Looks fine to me!")
        assert oracle.review(valid_flow, []) == []

    def test_review_transport_failure_is_no_output(self, prompt_store, valid_flow):
        oracle, _ = self._oracle(prompt_store, error=LLMError("boom", status_code=500))
        assert oracle.review(valid_flow, []) == []

    def test_fix_returns_extracted_json(self, prompt_store, valid_flow):
        oracle, client = self._oracle(prompt_store, "Fixed:\n```json\n" + json.dumps(valid_flow) + "\n```")
        assert oracle.fix({"name": "x"}, []) == valid_flow
        assert client.call.call_args[0][0] == "generator v1"
        assert client.call.call_args[0][2] == "gen"

    def test_fix_transport_failure(self, prompt_store, valid_flow):
        oracle, _ = self._oracle(prompt_store, error=LLMError("timeout"))
        assert oracle.fix(valid_flow, []) is None

    def test_prompt_read_at_call_time(self, prompt_store, valid_flow):
        oracle, client = self._oracle(prompt_store, '{"errors": []}')
        prompt_store.replace("reviewer", "reviewer v2")
        oracle.review(valid_flow, [])
        assert client.call.call_args[0][0] == "reviewer v2"

    def test_meta_improve(self, prompt_store):
        answer = '{"generator_prompt": "g2", "reviewer_prompt": "r2", "changes": ["added rule"]}'
        oracle, client = self._oracle(prompt_store, answer)
        summary = [{"rule": "variable-mapping", "severity": "critical", "count": 4, "message": "m"}]
        result = oracle.meta_improve(prompt_store.snapshot(), summary, 6, 5)
        assert result["generator_prompt"] == "g2"
        user_prompt = client.call.call_args[0][1]
        assert "**variable-mapping** (critical, 4x)" in user_prompt
        assert "6 total across 5 iterations" in user_prompt

    def test_meta_improve_non_object_answer(self, prompt_store):
        oracle, _ = self._oracle(prompt_store, "[1, 2]")
        assert oracle.meta_improve(prompt_store.snapshot(), [], 0, 1) is None


def test_build_meta_input_contains_both_prompts():
    text = build_meta_input({"generator": "GEN", "reviewer": "REV", "meta-improver": "META"}, [], 0, 3)
    assert "## Current Generator Prompt\nGEN" in text
    assert "## Current Reviewer Prompt\nREV" in text


def test_malformed_response_does_not_end_loop(prompt_store, valid_flow):
    from tools.self_improving_flow_agent import run_self_improving_loop

    run_log = MagicMock()
    oracle = FlowOracle(LLMClient("sk-test"), prompt_store,
                        {"generator": "gen", "reviewer": "rev", "meta-improver": "meta"})
    with patch("httpx.post", return_value=httpx.Response(200, json=["not", "an", "object"])):
        result = run_self_improving_loop(valid_flow, oracle, prompt_store,
                                         max_iterations=1, max_meta_rounds=1, run_log=run_log)
    assert result["success"] is True
    assert result["history"][0].review_issues == ()
    run_log.write.assert_called_once()
