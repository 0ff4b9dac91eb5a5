"""Staged prompting protocol for invoice extraction.

One ``ExtractionOrchestrator.run`` call walks the stages

    idle -> checking_availability -> session_ready -> structured
         -> (timed out) fallback -> [agent_followup] -> done

and owns every timeout decision.  The structured prompt gets one fallback
attempt, and only when it times out; any other failure ends the run.  The
agent follow-up is best effort and never fails the extraction.  The backend
session is opened once per run and always closed before ``run`` returns.
"""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from ledgee import metrics
from ledgee.config import ExtractionConfig
from ledgee.extraction.gateway import (
    AFTER_DOWNLOAD,
    AVAILABLE,
    NOT_SUPPORTED,
    BackendError,
    BackendUnavailableError,
    ExtractionError,
    GatewaySession,
    GatewayTimeoutError,
    ModelGateway,
    PromptOutcome,
    build_gateway,
)
from ledgee.extraction.prompts import (
    AGENT_FOLLOWUP_PROMPT,
    CONNECTION_TEST_PROMPT,
    DESCRIPTION_PROMPT,
    DESCRIPTION_SYSTEM_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    FALLBACK_PROMPT,
    INVOICE_RESPONSE_SCHEMA,
    STRUCTURED_PROMPT,
)
from ledgee.extraction.sanitize import log_preview
from ledgee.models.invoice import ExtractionRequest

logger = logging.getLogger(__name__)

_AGENT_IN_RESPONSE = re.compile(r'"agentName"\s*:\s*"([^"\\]+)"', re.IGNORECASE)
_AGENT_FOLLOWUP_REPLY = re.compile(r"agentName\s*:\s*([^\n]+)", re.IGNORECASE)

_REMEDIATION = {
    AFTER_DOWNLOAD: "Pull the model into the local runtime (for example `ollama pull <model>`) and try again.",
    NOT_SUPPORTED: "Start the local model runtime, or switch to the remote backend.",
    "missing-api-key": "Provide a Gemini API key or switch to the local backend.",
    "unauthorized": "Check that the Gemini API key is valid and enabled for the selected model.",
}


class Stage(str, enum.Enum):
    IDLE = "idle"
    CHECKING_AVAILABILITY = "checking_availability"
    SESSION_READY = "session_ready"
    STRUCTURED = "structured"
    FALLBACK = "fallback"
    AGENT_FOLLOWUP = "agent_followup"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class OrchestrationOutcome:
    response_text: str
    agent_hint: Optional[str]
    used_fallback: bool
    raw_context: str
    model_label: str


@dataclass(frozen=True)
class AvailabilityReport:
    available: bool
    status: str
    message: str
    instructions: Optional[str] = None


def unavailable_message(status: str, label: str) -> str:
    if status == AFTER_DOWNLOAD:
        return f"The {label} model has not been downloaded yet. Finish the download and try again shortly."
    if status == NOT_SUPPORTED:
        return f"The {label} model is not reachable or not supported on this device."
    if status == "missing-api-key":
        return "The remote backend requires an API key."
    return f"Model backend not ready (status: {status})."


def agent_from_response(response_text: str) -> Optional[str]:
    """Return a non-null ``"agentName"`` value already present in a response."""

    match = _AGENT_IN_RESPONSE.search(response_text or "")
    if not match:
        return None
    value = match.group(1).strip()
    if not value or value.lower() == "null":
        return None
    return value


def parse_agent_reply(reply: str) -> Optional[str]:
    """Parse ``agentName: <name>`` from the follow-up answer."""

    match = _AGENT_FOLLOWUP_REPLY.search(reply or "")
    if not match:
        return None
    value = match.group(1).strip().strip("`").strip().strip("\"'").strip()
    if not value or value.lower() == "null":
        return None
    return value


def _record(stage: Stage, outcome: PromptOutcome) -> None:
    metrics.PROMPT_STAGES.labels(stage=stage.value, outcome=outcome.kind).inc()


def _raise_for(outcome: PromptOutcome, *, label: str) -> None:
    if outcome.kind == "unavailable":
        status = outcome.reason or "unknown"
        raise BackendUnavailableError(status, unavailable_message(status, label))
    if outcome.kind == "error":
        raise BackendError(outcome.reason or "Model backend error")


class ExtractionOrchestrator:
    """Drive one model gateway through the extraction protocol."""

    def __init__(
        self,
        gateway: ModelGateway,
        *,
        structured_timeout: float = 15.0,
        agent_timeout: float = 5.0,
    ) -> None:
        self._gateway = gateway
        self._structured_timeout = structured_timeout
        self._agent_timeout = agent_timeout
        self.stage = Stage.IDLE

    @classmethod
    def from_config(
        cls,
        config: ExtractionConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ExtractionOrchestrator":
        return cls(
            build_gateway(config, transport=transport),
            structured_timeout=config.structured_timeout,
            agent_timeout=config.agent_timeout,
        )

    @property
    def model_label(self) -> str:
        return self._gateway.label

    async def _ensure_available(self) -> None:
        self.stage = Stage.CHECKING_AVAILABILITY
        started = time.perf_counter()
        status = await self._gateway.availability()
        logger.debug(
            "Availability for %s: %s (%.0fms)",
            self._gateway.label,
            status,
            (time.perf_counter() - started) * 1000,
        )
        if status != AVAILABLE:
            self.stage = Stage.FAILED
            raise BackendUnavailableError(status, unavailable_message(status, self._gateway.label))

    async def run(self, request: ExtractionRequest) -> OrchestrationOutcome:
        """Run the protocol for one image; raises ExtractionError on failure."""

        await self._ensure_available()
        try:
            async with self._gateway.session(EXTRACTION_SYSTEM_PROMPT, request) as session:
                self.stage = Stage.SESSION_READY
                response_text, used_fallback = await self._prompt_for_invoice(session)

                agent_hint = agent_from_response(response_text)
                if agent_hint is None and not used_fallback:
                    agent_hint = await self._ask_for_agent(session)
        except ExtractionError:
            self.stage = Stage.FAILED
            raise

        self.stage = Stage.DONE
        return OrchestrationOutcome(
            response_text=response_text,
            agent_hint=agent_hint,
            used_fallback=used_fallback,
            raw_context=f"[Image provided to {self._gateway.label} session]",
            model_label=self._gateway.label,
        )

    async def _prompt_for_invoice(self, session: GatewaySession) -> tuple[str, bool]:
        self.stage = Stage.STRUCTURED
        started = time.perf_counter()
        outcome = await session.send(
            STRUCTURED_PROMPT,
            timeout=self._structured_timeout,
            response_schema=INVOICE_RESPONSE_SCHEMA,
        )
        _record(Stage.STRUCTURED, outcome)
        if outcome.is_ok:
            logger.debug(
                "Structured prompt completed in %.0fms", (time.perf_counter() - started) * 1000
            )
            return outcome.text, False
        if outcome.kind != "timed_out":
            _raise_for(outcome, label=self._gateway.label)

        logger.warning(
            "Structured prompt timed out after %.1fs; retrying without response schema",
            self._structured_timeout,
        )
        self.stage = Stage.FALLBACK
        outcome = await session.send(FALLBACK_PROMPT, timeout=self._structured_timeout)
        _record(Stage.FALLBACK, outcome)
        if outcome.kind == "timed_out":
            raise GatewayTimeoutError(
                "Invoice extraction timed out while waiting for the model (fallback)."
            )
        _raise_for(outcome, label=self._gateway.label)
        logger.warning(
            "Using fallback response without response schema; preview=%s",
            log_preview(outcome.text),
        )
        return outcome.text, True

    async def _ask_for_agent(self, session: GatewaySession) -> Optional[str]:
        self.stage = Stage.AGENT_FOLLOWUP
        outcome = await session.send(AGENT_FOLLOWUP_PROMPT, timeout=self._agent_timeout)
        _record(Stage.AGENT_FOLLOWUP, outcome)
        if outcome.kind == "timed_out":
            logger.warning("Agent follow-up prompt timed out")
            return None
        if not outcome.is_ok:
            logger.warning("Agent follow-up prompt failed: %s", outcome.reason)
            return None
        return parse_agent_reply(outcome.text)

    async def describe_image(self, request: ExtractionRequest) -> str:
        """Ask for a free-text description of everything visible on the invoice."""

        await self._ensure_available()
        async with self._gateway.session(DESCRIPTION_SYSTEM_PROMPT, request) as session:
            outcome = await session.send(DESCRIPTION_PROMPT, timeout=self._structured_timeout)
        _record(Stage.STRUCTURED, outcome)
        if outcome.kind == "timed_out":
            raise GatewayTimeoutError("Image description timed out while waiting for the model.")
        _raise_for(outcome, label=self._gateway.label)
        return outcome.text.strip() or "No description returned."

    async def check_availability(self) -> AvailabilityReport:
        """Report backend readiness with remediation text; never raises."""

        try:
            status = await self._gateway.availability()
        except (ExtractionError, httpx.HTTPError) as exc:
            logger.warning("Availability check failed: %s", exc)
            return AvailabilityReport(
                available=False,
                status="error",
                message="Error checking model availability.",
                instructions="Verify the backend configuration and retry.",
            )
        if status == AVAILABLE:
            return AvailabilityReport(
                available=True,
                status=status,
                message=f"{self._gateway.label} is ready",
            )
        return AvailabilityReport(
            available=False,
            status=status,
            message=unavailable_message(status, self._gateway.label),
            instructions=_REMEDIATION.get(status, "Verify the backend configuration and retry."),
        )

    async def test_connection(self) -> bool:
        """Send a short text-only prompt and report whether it succeeded."""

        try:
            await self._ensure_available()
        except (ExtractionError, httpx.HTTPError) as exc:
            logger.warning("Connection test skipped: %s", exc)
            return False
        outcome = await self._gateway.send(
            EXTRACTION_SYSTEM_PROMPT,
            None,
            CONNECTION_TEST_PROMPT,
            timeout=self._structured_timeout,
        )
        if not outcome.is_ok:
            logger.warning("Connection test failed: %s", outcome.reason)
        return outcome.is_ok


__all__ = [
    "AvailabilityReport",
    "ExtractionOrchestrator",
    "OrchestrationOutcome",
    "Stage",
    "agent_from_response",
    "parse_agent_reply",
    "unavailable_message",
]
