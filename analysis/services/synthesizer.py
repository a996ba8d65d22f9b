"""Synthesis requester.

Turns a feed's normalized items into exactly one :class:`SynthesisResult`:

- no items → placeholder, the endpoint is never called
- candidates are tried in order (forced model first); per candidate:
  not-found/unsupported → skip immediately, transient → backoff + bounded retry,
  malformed output → one repair request, anything else → abort and propagate
- every candidate exhausted → deterministic fallback built from the items

The loop is an explicit state machine; :func:`classify` and
:func:`backoff_delay` are pure so the policy can be tested without transport.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from analysis.models.domain import SynthesisContext, SynthesisResult
from analysis.prompts.templates import build_repair_prompt, build_synthesis_prompt
from analysis.services.fallback import build_fallback_synthesis, build_placeholder_synthesis
from analysis.services.json_extract import MalformedOutputError, parse_synthesis_payload
from ingestion.models.domain import NormalizedItem
from ingestion.utils.logging import get_logger
from llm.client.base import (
    GenerationClient,
    GenerationResponse,
    LLMError,
    ModelUnavailableError,
    TransientLLMError,
)
from llm.settings import GenerationSettings

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class Decision(str, Enum):
    SKIP = "skip"
    RETRY = "retry"
    ABORT = "abort"


class SynthesisState(str, Enum):
    TRYING = "trying"
    REPAIRING = "repairing"
    FALLBACK = "fallback"
    DONE = "done"


class CandidatesExhaustedError(Exception):
    """No candidate model produced a usable synthesis."""

    def __init__(self, failures: Sequence[str]) -> None:
        self.failures = list(failures)
        super().__init__("all candidate models failed: " + "; ".join(self.failures))


def classify(error: BaseException) -> Decision:
    if isinstance(error, ModelUnavailableError):
        return Decision.SKIP
    if isinstance(error, TransientLLMError):
        return Decision.RETRY
    return Decision.ABORT


def backoff_delay(
    attempt: int,
    schedule: Sequence[float],
    *,
    retry_after: Optional[float] = None,
    previous: float = 0.0,
    cap: float = 30.0,
) -> float:
    """Delay before retry number ``attempt`` (1-based); never below ``previous``.

    A server-supplied ``retry_after`` wins over the fixed schedule; the schedule's
    last step repeats once exhausted.
    """
    if retry_after is not None:
        base = retry_after
    elif schedule:
        base = schedule[min(attempt, len(schedule)) - 1]
    else:
        base = 0.0
    return min(cap, max(previous, base))


class Synthesizer:
    """Drives candidate models for one feed at a time."""

    def __init__(
        self,
        client: GenerationClient,
        settings: GenerationSettings,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._client = client
        self._settings = settings
        self._sleep = sleep

    async def synthesize(self, context: SynthesisContext, items: Sequence[NormalizedItem]) -> SynthesisResult:
        extra = {"category": context.category, "source": context.source}
        if not items:
            logger.info("synthesis.no_items", extra=extra)
            return build_placeholder_synthesis(context)

        selected = list(items)[: int(self._settings.synthesis_max_items)]
        prompt = build_synthesis_prompt(context, selected)
        try:
            result = await self._run(prompt, context)
        except CandidatesExhaustedError as exc:
            logger.warning("synthesis.fallback", extra={**extra, "error": str(exc)})
            return build_fallback_synthesis(context, selected, error=str(exc))
        logger.info(
            "synthesis.accepted",
            extra={**extra, "model": result.model, "repaired": result.repaired},
        )
        return result

    async def _call(self, model: str, prompt: str) -> GenerationResponse:
        timeout = float(self._settings.request_timeout_seconds)
        try:
            return await asyncio.wait_for(
                self._client.generate(
                    model=model,
                    prompt=prompt,
                    temperature=float(self._settings.temperature),
                    max_output_tokens=int(self._settings.max_output_tokens),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransientLLMError(f"요청 타임아웃 초과 ({model}, {timeout:g}s)", model=model) from exc

    async def _run(self, prompt: str, context: SynthesisContext) -> SynthesisResult:
        candidates = self._settings.candidate_models()
        max_attempts = int(self._settings.retry_max_attempts)
        schedule = self._settings.backoff_schedule
        cap = float(self._settings.backoff_max_seconds)
        extra = {"category": context.category, "source": context.source}

        state = SynthesisState.TRYING
        index, attempt, delay = 0, 1, 0.0
        raw_output = ""
        failures: List[str] = []
        result: Optional[SynthesisResult] = None

        while state is not SynthesisState.DONE:
            if state is SynthesisState.FALLBACK:
                raise CandidatesExhaustedError(failures)

            if index >= len(candidates):
                state = SynthesisState.FALLBACK
                continue
            model = candidates[index]

            if state is SynthesisState.TRYING:
                try:
                    response = await self._call(model, prompt)
                except LLMError as exc:
                    decision = classify(exc)
                    if decision is Decision.ABORT:
                        logger.error("synthesis.abort", extra={**extra, "model": model, "error": str(exc)})
                        raise
                    if decision is Decision.RETRY and attempt < max_attempts:
                        delay = backoff_delay(
                            attempt,
                            schedule,
                            retry_after=getattr(exc, "retry_after", None),
                            previous=delay,
                            cap=cap,
                        )
                        logger.info(
                            "synthesis.retry",
                            extra={**extra, "model": model, "attempt": attempt, "delay": delay, "error": str(exc)},
                        )
                        await self._sleep(delay)
                        attempt += 1
                        continue
                    failures.append(f"{model}: {exc}")
                    logger.info(
                        "synthesis.skip",
                        extra={**extra, "model": model, "decision": decision.value, "error": str(exc)},
                    )
                    index, attempt, delay = index + 1, 1, 0.0
                    continue

                try:
                    payload = parse_synthesis_payload(response.text)
                except MalformedOutputError:
                    raw_output = response.text
                    state = SynthesisState.REPAIRING
                    continue
                result = SynthesisResult.from_payload(payload, model=model)
                state = SynthesisState.DONE

            elif state is SynthesisState.REPAIRING:
                logger.info("synthesis.repair", extra={**extra, "model": model})
                try:
                    response = await self._call(model, build_repair_prompt(raw_output, context))
                    payload = parse_synthesis_payload(response.text)
                except LLMError as exc:
                    if classify(exc) is Decision.ABORT:
                        logger.error("synthesis.abort", extra={**extra, "model": model, "error": str(exc)})
                        raise
                    failures.append(f"{model}: repair request failed: {exc}")
                except MalformedOutputError:
                    failures.append(f"{model}: malformed output after repair")
                else:
                    result = SynthesisResult.from_payload(payload, model=model, repaired=True)
                    state = SynthesisState.DONE
                    continue
                index, attempt, delay = index + 1, 1, 0.0
                raw_output = ""
                state = SynthesisState.TRYING

        assert result is not None
        return result
