"""Base class for Gemini-backed agents.

Agents never raise on provider failures. Every call returns an
``AgentResult``; callers branch on ``result.ok`` and decide which domain
error to raise. Each successful generation is recorded as an ``AgentLog``
row in the background.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Prevents GC of in-flight activity-log tasks
_log_tasks: set[asyncio.Task] = set()

_SUMMARY_CHARS = 500


@dataclass
class AgentResult:
    """Outcome of one agent operation.

    ``error_status`` carries the provider's HTTP-like status code when the
    exception exposed one; scoring uses it to recognise credit exhaustion.
    """

    ok: bool
    data: Any = None
    error: Optional[str] = None
    error_status: Optional[int] = None
    tokens_used: int = 0
    latency_ms: int = 0

    @classmethod
    def success(cls, data: Any, tokens_used: int = 0, latency_ms: int = 0) -> "AgentResult":
        return cls(ok=True, data=data, tokens_used=tokens_used, latency_ms=latency_ms)

    @classmethod
    def failure(
        cls,
        error: str,
        latency_ms: int = 0,
        error_status: Optional[int] = None,
    ) -> "AgentResult":
        return cls(ok=False, error=error, latency_ms=latency_ms, error_status=error_status)


def _status_of(exc: BaseException) -> Optional[int]:
    """HTTP-like status code from a provider exception, if it has one."""
    for attr in ("code", "status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def _token_count(response) -> int:
    usage = getattr(response, "usage_metadata", None)
    if not usage:
        return 0
    prompt = getattr(usage, "prompt_token_count", 0) or 0
    completion = getattr(usage, "candidates_token_count", 0) or 0
    return prompt + completion


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class BaseAgent:
    """Gemini access with timeouts, latency/token accounting and activity logs."""

    def __init__(
        self,
        agent_name: str,
        model_name: Optional[str] = None,
        temperature: float = 0.2,
        timeout_seconds: int = 120,
    ):
        self.agent_name = agent_name
        self.model_name = model_name
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        json_mode: bool = False,
        response_schema: dict | None = None,
        call_id: Optional[str] = None,
    ) -> AgentResult:
        """Single-turn generation; ``data`` is the response text."""
        started = time.monotonic()
        try:
            from callcoach.infra.gemini_client import get_model

            model = get_model(
                model_name=self.model_name,
                temperature=self.temperature,
                json_mode=json_mode,
                response_schema=response_schema,
                system_instruction=system_instruction,
            )
            response = await asyncio.wait_for(
                model.generate_content_async(prompt),
                timeout=self.timeout_seconds,
            )
            text = response.text
        except Exception as exc:
            latency_ms = _elapsed_ms(started)
            logger.error("[%s] Generation failed after %dms: %s", self.agent_name, latency_ms, exc)
            return AgentResult.failure(
                str(exc) or exc.__class__.__name__,
                latency_ms=latency_ms,
                error_status=_status_of(exc),
            )

        latency_ms = _elapsed_ms(started)
        tokens_used = _token_count(response)
        logger.info(
            "[%s] Generation succeeded: tokens=%d, latency=%dms",
            self.agent_name,
            tokens_used,
            latency_ms,
        )
        self._safe_log_activity(
            action="generate",
            input_summary=prompt[:_SUMMARY_CHARS],
            output_summary=(text or "")[:_SUMMARY_CHARS],
            tokens_used=tokens_used,
            latency_ms=latency_ms,
            call_id=call_id,
        )
        return AgentResult.success(text, tokens_used=tokens_used, latency_ms=latency_ms)

    async def generate_json(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        response_schema: dict | None = None,
        call_id: Optional[str] = None,
    ) -> AgentResult:
        """Like ``generate`` in JSON mode; ``data`` is the decoded object.

        Unparseable output is a failure, not an exception.
        """
        result = await self.generate(
            prompt=prompt,
            system_instruction=system_instruction,
            json_mode=True,
            response_schema=response_schema,
            call_id=call_id,
        )
        if not result.ok:
            return result

        try:
            parsed = json.loads(result.data)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("[%s] JSON parse failed: %s, raw text: %.200s", self.agent_name, exc, result.data)
            return AgentResult.failure(f"JSON parse error: {exc}", latency_ms=result.latency_ms)
        return AgentResult.success(parsed, tokens_used=result.tokens_used, latency_ms=result.latency_ms)

    async def log_activity(
        self,
        action: str,
        input_summary: str,
        output_summary: str,
        tokens_used: int,
        latency_ms: int,
        call_id: Optional[str] = None,
    ) -> None:
        """Persist an ``AgentLog`` row. Never raises."""
        try:
            from callcoach.domain.models import AgentLog
            from callcoach.infra.database import async_session

            async with async_session() as session:
                session.add(
                    AgentLog(
                        id=str(uuid.uuid4()),
                        agent_name=self.agent_name,
                        action=action,
                        input_summary=input_summary,
                        output_summary=output_summary,
                        tokens_used=tokens_used,
                        latency_ms=latency_ms,
                        related_call_id=call_id,
                    )
                )
                await session.commit()
        except Exception as exc:
            logger.warning("[%s] Could not record agent activity: %s", self.agent_name, exc)

    def _safe_log_activity(self, **kwargs) -> None:
        """Schedule ``log_activity`` without awaiting it."""
        task = asyncio.ensure_future(self.log_activity(**kwargs))
        _log_tasks.add(task)
        task.add_done_callback(_log_tasks.discard)
