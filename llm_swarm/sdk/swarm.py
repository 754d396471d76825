"""
Calling surface for single queries and batches.

Glues quota gate, dispatcher, gateway and ledger together. Nothing
raises past this boundary: every failure comes back as a ToolResponse
with is_error set and an ErrorKind to branch on.
"""

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..config.loader import MAX_CONCURRENCY, SwarmConfig
from ..core.batch import MAX_TASK_TOKENS, BatchDispatcher, Task, is_integer
from ..core.quota import QuotaExceeded, QuotaGate
from ..storage.file_store import LedgerError
from ..storage.ledger import PipelineContext, RequestOutcome, UsageLedger
from .minimax_client import GatewayError, MinimaxClient

logger = logging.getLogger(__name__)

MAX_BATCH_TASKS = 50
MAX_CALLER_LENGTH = 128

NOT_INITIALIZED_MESSAGE = "Error: MiniMax client not initialized. Check MINIMAX_API_KEY."


class ErrorKind(Enum):
    """Failure categories a caller can branch on."""
    NOT_INITIALIZED = "not_initialized"
    INVALID_REQUEST = "invalid_request"
    RATE_LIMITED = "rate_limited"
    GATEWAY = "gateway"
    LEDGER = "ledger"


class InvalidRequest(ValueError):
    """Raised when call arguments are out of range."""


@dataclass(frozen=True)
class ToolResponse:
    """Result of one query or batch call."""
    is_error: bool
    message: str
    payload: Optional[Dict[str, Any]] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, payload: Dict[str, Any]) -> "ToolResponse":
        return cls(is_error=False, message="ok", payload=payload)

    @classmethod
    def error(cls, kind: ErrorKind, message: str) -> "ToolResponse":
        return cls(is_error=True, message=message, error_kind=kind)

    @property
    def text(self) -> str:
        if self.payload is not None:
            return json.dumps(self.payload, indent=2)
        return self.message


class SwarmService:
    """Quota-gated, ledger-accounted access to the remote model."""

    def __init__(
        self,
        ledger: UsageLedger,
        client: Optional[MinimaxClient] = None,
        default_concurrency: int = 5,
        init_error: Optional[str] = None
    ):
        self.ledger = ledger
        self.client = client
        self.init_error = init_error
        self.gate = QuotaGate(ledger)
        self.dispatcher = (
            BatchDispatcher(
                client,
                default_concurrency=default_concurrency,
                pricing=ledger.pricing
            )
            if client is not None else None
        )

    @classmethod
    def from_config(cls, config: SwarmConfig) -> "SwarmService":
        """Build the service; a missing API key leaves the client unset."""
        pricing = config.pricing.to_model_pricing()
        ledger = UsageLedger(
            path=config.ledger_path,
            quota_limit=config.quota.prompts_per_window,
            window_duration=config.quota.window_duration,
            pricing=pricing,
        )
        try:
            client = MinimaxClient(config.gateway, pricing)
        except ValueError as e:
            logger.warning("Gateway disabled: %s", e)
            return cls(ledger, None, config.default_concurrency, init_error=str(e))
        return cls(ledger, client, default_concurrency=config.default_concurrency)

    def _not_initialized(self) -> ToolResponse:
        message = NOT_INITIALIZED_MESSAGE
        if self.init_error:
            message = f"{message} ({self.init_error})"
        return ToolResponse.error(ErrorKind.NOT_INITIALIZED, message)

    async def query(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        caller: Optional[str] = None
    ) -> ToolResponse:
        """Send one prompt.

        Returns:
            ToolResponse whose payload holds response, model, usage,
            cost_estimate_usd and prompts_remaining
        """
        start = time.monotonic()
        try:
            _validate_query(prompt, max_tokens, temperature, caller)
        except InvalidRequest as e:
            return ToolResponse.error(ErrorKind.INVALID_REQUEST, str(e))

        if self.client is None:
            return self._not_initialized()

        try:
            remaining = self.gate.check_query()
        except QuotaExceeded as e:
            return ToolResponse.error(ErrorKind.RATE_LIMITED, str(e))
        except LedgerError as e:
            return ToolResponse.error(ErrorKind.LEDGER, f"Usage ledger error: {e}")

        try:
            result = await self.client.query(
                prompt, system=system, max_tokens=max_tokens, temperature=temperature
            )
        except Exception as e:
            if isinstance(e, GatewayError):
                logger.warning("Query failed: %s", e)
            else:
                logger.exception("Query failed")
            failure = self._record(RequestOutcome(
                type="query",
                task_count=0,
                input_tokens=0,
                output_tokens=0,
                cost_usd=0.0,
                response_time_ms=_elapsed_ms(start),
                caller=caller,
                error=str(e),
            ))
            message = str(e) if isinstance(e, GatewayError) else f"MiniMax API error: {e}"
            return failure or ToolResponse.error(ErrorKind.GATEWAY, message)

        failure = self._record(RequestOutcome(
            type="query",
            task_count=1,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            cost_usd=result.cost_estimate_usd,
            response_time_ms=_elapsed_ms(start),
            caller=caller,
        ))
        if failure is not None:
            return failure

        payload = result.to_dict()
        payload["prompts_remaining"] = remaining - 1
        return ToolResponse.ok(payload)

    async def batch(
        self,
        tasks: List[Union[Task, Dict[str, Any]]],
        concurrency: Optional[int] = None,
        caller: Optional[str] = None,
        pipeline: Optional[Union[PipelineContext, Dict[str, Any]]] = None
    ) -> ToolResponse:
        """Run a batch of prompts in parallel.

        The whole batch is refused when the window cannot hold it.

        Returns:
            ToolResponse whose payload holds results and a summary with
            prompts_remaining
        """
        start = time.monotonic()
        try:
            task_list = _validate_batch(tasks, concurrency, caller)
            if isinstance(pipeline, dict):
                pipeline = PipelineContext.from_dict(pipeline)
        except ValueError as e:
            return ToolResponse.error(ErrorKind.INVALID_REQUEST, str(e))

        if self.dispatcher is None:
            return self._not_initialized()

        try:
            remaining = self.gate.check_batch(len(task_list))
        except QuotaExceeded as e:
            return ToolResponse.error(ErrorKind.RATE_LIMITED, str(e))
        except LedgerError as e:
            return ToolResponse.error(ErrorKind.LEDGER, f"Usage ledger error: {e}")

        try:
            results, summary = await self.dispatcher.process_batch(task_list, concurrency)
        except Exception as e:
            logger.exception("Batch dispatch failed")
            failure = self._record(RequestOutcome(
                type="batch",
                task_count=0,
                input_tokens=0,
                output_tokens=0,
                cost_usd=0.0,
                response_time_ms=_elapsed_ms(start),
                caller=caller,
                error=str(e),
            ))
            return failure or ToolResponse.error(
                ErrorKind.GATEWAY, f"Batch processing error: {e}"
            )

        # Only succeeded tasks consume quota; failures are visible via failed_count
        failure = self._record(RequestOutcome(
            type="batch",
            task_count=summary.succeeded,
            input_tokens=summary.total_input_tokens,
            output_tokens=summary.total_output_tokens,
            cost_usd=summary.total_cost_usd,
            response_time_ms=_elapsed_ms(start),
            caller=caller,
            failed_count=summary.failed if summary.failed > 0 else None,
            pipeline=pipeline,
        ))
        if failure is not None:
            return failure

        summary_dict = summary.to_dict()
        summary_dict["prompts_remaining"] = remaining - summary.succeeded
        return ToolResponse.ok({
            "results": [r.to_dict() for r in results],
            "summary": summary_dict,
        })

    def usage_summary(self) -> ToolResponse:
        try:
            return ToolResponse(is_error=False, message=self.ledger.get_usage_summary())
        except LedgerError as e:
            return ToolResponse.error(ErrorKind.LEDGER, f"Usage ledger error: {e}")

    def _record(self, outcome: RequestOutcome) -> Optional[ToolResponse]:
        """Record an outcome; returns an error response if the ledger failed."""
        try:
            self.ledger.record(outcome)
        except LedgerError as e:
            logger.error("Failed to record usage: %s", e)
            return ToolResponse.error(ErrorKind.LEDGER, f"Usage ledger error: {e}")
        return None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _validate_caller(caller: Optional[str]) -> None:
    if caller is None:
        return
    if not isinstance(caller, str):
        raise InvalidRequest("caller must be a string")
    if len(caller) > MAX_CALLER_LENGTH:
        raise InvalidRequest(f"caller must be at most {MAX_CALLER_LENGTH} characters")


def _validate_query(
    prompt: str,
    max_tokens: Optional[int],
    temperature: Optional[float],
    caller: Optional[str]
) -> None:
    if not isinstance(prompt, str) or not prompt:
        raise InvalidRequest("prompt is required and cannot be empty")
    if max_tokens is not None and (
        not is_integer(max_tokens) or not 1 <= max_tokens <= MAX_TASK_TOKENS
    ):
        raise InvalidRequest(f"max_tokens must be an integer between 1 and {MAX_TASK_TOKENS}")
    if temperature is not None and (
        not isinstance(temperature, (int, float))
        or isinstance(temperature, bool)
        or not 0 <= temperature <= 2
    ):
        raise InvalidRequest("temperature must be a number between 0 and 2")
    _validate_caller(caller)


def _validate_batch(
    tasks: List[Union[Task, Dict[str, Any]]],
    concurrency: Optional[int],
    caller: Optional[str]
) -> List[Task]:
    if not isinstance(tasks, list) or not tasks or len(tasks) > MAX_BATCH_TASKS:
        raise InvalidRequest(f"tasks must contain between 1 and {MAX_BATCH_TASKS} items")
    if concurrency is not None and (
        not is_integer(concurrency) or not 1 <= concurrency <= MAX_CONCURRENCY
    ):
        raise InvalidRequest(f"concurrency must be an integer between 1 and {MAX_CONCURRENCY}")
    _validate_caller(caller)

    task_list = []
    for task in tasks:
        if isinstance(task, dict):
            task = Task.from_dict(task)
        elif not isinstance(task, Task):
            raise InvalidRequest(f"task must be an object, got {type(task).__name__}")
        task_list.append(task)

    seen = set()
    for task in task_list:
        if task.id in seen:
            raise InvalidRequest(f"duplicate task id: {task.id}")
        seen.add(task.id)
    return task_list
