"""
LLM Client — Pure httpx, Anthropic Messages API.

Single-shot, non-conversational calls: one system prompt, one user prompt,
one text answer. No multi-turn state, no tools.

Reads ANTHROPIC_API_KEY and ANTHROPIC_BASE_URL from environment.
Raises LLMError if credentials are not configured or a call fails.
"""
from __future__ import annotations

import os
import time
from typing import Optional

import httpx

from tools.logger import log

DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 16000


class LLMError(Exception):
    """Raised when an LLM API call fails or credentials are missing."""

    def __init__(self, message: str, status_code: int = 0, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class LLMClient:
    """Lightweight Anthropic Messages client using httpx."""

    def __init__(self, api_key: str, base_url: str = "", max_tokens: int = DEFAULT_MAX_TOKENS,
                 timeout: int = 300):
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def call(self, system_prompt: str, user_prompt: str, model: str) -> str:
        """Send one system + user prompt pair and return the answer text.

        Args:
            system_prompt: Role instructions.
            user_prompt: Payload for this call.
            model: Model id.

        Returns:
            Concatenated text blocks of the response ("" if none).

        Raises:
            LLMError: On transport failure, HTTP status >= 400 or a body that is
                not a Messages response.
        """
        body = {
            "model": model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        start = time.perf_counter()
        try:
            resp = httpx.post(
                f"{self.base_url}/messages",
                headers=self.headers,
                json=body,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request to {model} failed: {e}") from e

        if resp.status_code >= 400:
            raise LLMError(
                f"LLM API call to {model} failed: {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError(f"LLM API returned non-JSON body for {model}", body=resp.text) from e

        content = data.get("content", []) if isinstance(data, dict) else None
        if not isinstance(content, list):
            raise LLMError(f"LLM API returned unexpected body for {model}", body=resp.text)

        text = "".join(
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        )
        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        log(
            "oracle.call",
            model=model,
            duration_ms=round((time.perf_counter() - start) * 1000),
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
            chars=len(text),
        )
        return text


# ── Singleton ─────────────────────────────────────────────────

_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create the LLM client singleton.

    Raises:
        LLMError: If ANTHROPIC_API_KEY is not set.
    """
    global _client
    if _client is not None:
        return _client

    api_key = os.environ.get("ANTHROPIC_API_KEY", "")
    if not api_key:
        raise LLMError("LLM not configured: ANTHROPIC_API_KEY missing")

    _client = LLMClient(api_key, os.environ.get("ANTHROPIC_BASE_URL", ""))
    return _client
