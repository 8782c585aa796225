"""
Remote context shaping via an OpenAI-compatible chat API (DeepSeek).

Two operations, both optional enhancements on top of deterministic
compression:

    deepseek_compress()  — shrink a context block, keeping what matters
                           for the query
    deepseek_shape()     — rewrite a context block into task-focused
                           guidance for a coding assistant

Configuration (environment):
    DEEPSEEK_API_KEY    required to enable remote calls
    DEEPSEEK_BASE_URL   default: https://api.deepseek.com
    DEEPSEEK_MODEL      default: deepseek-chat

Every failure (transport, HTTP status, malformed body) surfaces as
RemoteCollaboratorFailure so callers can fall back in one place.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict

import requests

from copilot_memory.errors import RemoteCollaboratorFailure

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_MODEL = "deepseek-chat"
DEFAULT_TIMEOUT = 60.0

ENV_API_KEY = "DEEPSEEK_API_KEY"
ENV_BASE_URL = "DEEPSEEK_BASE_URL"
ENV_MODEL = "DEEPSEEK_MODEL"


@dataclass
class DeepSeekConfig:
    """Endpoint configuration for the remote shaping service."""

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout: float = DEFAULT_TIMEOUT

    @property
    def enabled(self) -> bool:
        """True when an API key is configured."""
        return bool(self.api_key.strip())

    @property
    def completions_url(self) -> str:
        return self.base_url.rstrip("/") + "/chat/completions"

    @classmethod
    def from_env(
        cls,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> DeepSeekConfig:
        """Read the key, URL and model from the environment.

        Arguments are the fallbacks used when the env var is unset or blank.
        """
        return cls(
            api_key=os.environ.get(ENV_API_KEY, "").strip(),
            base_url=os.environ.get(ENV_BASE_URL, "").strip() or base_url,
            model=os.environ.get(ENV_MODEL, "").strip() or model,
            timeout=timeout,
        )


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def _compress_system_prompt(budget_chars: int) -> str:
    return " ".join([
        "You compress user memory context for an LLM coding assistant.",
        "Output must be Markdown.",
        "Be concise.",
        "Keep only information relevant to the user's query.",
        f"Hard limit: {budget_chars} characters.",
        "Do not include any secrets.",
    ])


def _shape_system_prompt(budget_chars: int) -> str:
    return (
        "You transform raw memory context into actionable guidance for a "
        "coding assistant about to work on a specific task.\n"
        "\n"
        "Your output MUST:\n"
        "1. Be valid Markdown with clear section headers\n"
        "2. Extract and highlight decisions, preferences, and constraints relevant to the task\n"
        "3. Omit anything unrelated to the task\n"
        "4. Use bullet points for quick scanning\n"
        '5. Start with "## Context for: {task summary}" header\n'
        '6. Include a "### Key Constraints" section if any apply\n'
        f"7. Stay under {budget_chars} characters (hard limit)\n"
        "8. Never include secrets, API keys, or sensitive data\n"
        "\n"
        "Format preference:\n"
        "- Brief, actionable statements\n"
        "- Code conventions as inline code (`like this`)\n"
        "- Group related items together"
    )


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def _chat_completion(
    cfg: DeepSeekConfig,
    system: str,
    user: str,
    temperature: float,
) -> str:
    """POST one chat completion and return the assistant message text."""
    if not cfg.enabled:
        raise RemoteCollaboratorFailure(f"{ENV_API_KEY} is not set")

    body: Dict[str, Any] = {
        "model": cfg.model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "temperature": temperature,
    }
    try:
        response = requests.post(
            cfg.completions_url,
            json=body,
            headers={"Authorization": f"Bearer {cfg.api_key}"},
            timeout=(10, cfg.timeout),  # (connect, read)
        )
    except (requests.RequestException, ValueError) as e:
        # ValueError covers headers that cannot be encoded (non latin-1 key)
        raise RemoteCollaboratorFailure(f"DeepSeek request failed: {e}") from e

    if not response.ok:
        detail = response.text[:200] if response.text else ""
        raise RemoteCollaboratorFailure(
            f"DeepSeek API error ({response.status_code}): {detail}",
            status_code=response.status_code,
        )

    try:
        content = response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise RemoteCollaboratorFailure("DeepSeek response missing content.") from e
    if not isinstance(content, str):
        raise RemoteCollaboratorFailure("DeepSeek response missing content.")

    logger.debug("DeepSeek returned %d chars (model=%s)", len(content), cfg.model)
    return content


def _fit(text: str, budget_chars: int) -> str:
    return text[:budget_chars] if len(text) > budget_chars else text


def deepseek_compress(
    cfg: DeepSeekConfig,
    query: str,
    context: str,
    budget_chars: int,
) -> str:
    """Compress a context block for a query. Output is cut to *budget_chars*.

    Raises:
        RemoteCollaboratorFailure: On any transport or API failure.
    """
    user = f"Query:\n{query}\n\nContext:\n{context}"
    content = _chat_completion(cfg, _compress_system_prompt(budget_chars), user, 0.2)
    return _fit(content, budget_chars)


def deepseek_shape(
    cfg: DeepSeekConfig,
    task: str,
    context: str,
    budget_chars: int,
) -> str:
    """Reshape a context block into guidance for *task*. Cut to *budget_chars*.

    Raises:
        RemoteCollaboratorFailure: On any transport or API failure.
    """
    user = (
        f"Task: {task}\n"
        "\n"
        "Raw memories:\n"
        f"{context}\n"
        "\n"
        "Transform these memories into focused guidance for the task above. "
        "Only include what's directly relevant."
    )
    content = _chat_completion(cfg, _shape_system_prompt(budget_chars), user, 0.3)
    return _fit(content, budget_chars)
