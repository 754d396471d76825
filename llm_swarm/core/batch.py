"""
Parallel batch dispatch with concurrency control.

Tasks are cut into consecutive chunks of at most `concurrency` items.
Each chunk is fanned out to the gateway at once and must fully settle
before the next chunk starts, so the number of outstanding gateway
calls never exceeds the limit. A slow task holds back the following
chunk.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .pricing import DEFAULT_PRICING, ModelPricing, estimate_cost
from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

MAX_TASK_TOKENS = 65536


def is_integer(value: Any) -> bool:
    """True for ints, excluding bools."""
    return isinstance(value, int) and not isinstance(value, bool)


class Completion(Protocol):
    response: str
    usage: TokenUsage


class Gateway(Protocol):
    """Anything able to run one prompt against the remote model."""

    async def query(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None
    ) -> Completion:
        ...


@dataclass(frozen=True)
class Task:
    """One prompt in a batch. Immutable, consumed once."""
    id: str
    prompt: str
    system: Optional[str] = None
    max_tokens: Optional[int] = None

    def __post_init__(self):
        """Validate task fields."""
        if not isinstance(self.id, str) or not self.id:
            raise ValueError("task id is required and cannot be empty")
        if not isinstance(self.prompt, str) or not self.prompt:
            raise ValueError(f"task {self.id}: prompt is required and cannot be empty")
        if self.system is not None and not isinstance(self.system, str):
            raise ValueError(f"task {self.id}: system must be a string")
        if self.max_tokens is not None and (
            not is_integer(self.max_tokens) or not 1 <= self.max_tokens <= MAX_TASK_TOKENS
        ):
            raise ValueError(
                f"task {self.id}: max_tokens must be between 1 and {MAX_TASK_TOKENS}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Build a task from a plain mapping.

        Raises:
            ValueError: If required keys are missing or unknown keys are present
        """
        allowed_keys = {"id", "prompt", "system", "max_tokens"}
        unknown_keys = set(data.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown task keys: {unknown_keys}")
        if "id" not in data or "prompt" not in data:
            raise ValueError("task requires 'id' and 'prompt'")
        return cls(
            id=data["id"],
            prompt=data["prompt"],
            system=data.get("system"),
            max_tokens=data.get("max_tokens")
        )


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one task; exactly one per submitted task."""
    id: str
    response: str
    usage: TokenUsage
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "response": self.response,
            "usage": self.usage.to_dict(),
            "success": self.success,
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class BatchSummary:
    """Aggregate over all results of one batch."""
    total_tasks: int
    succeeded: int
    failed: int
    total_input_tokens: int
    total_output_tokens: int
    total_cost_usd: float
    duration_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_cost_usd": self.total_cost_usd,
            "duration_ms": self.duration_ms,
        }


@dataclass
class BatchDispatcher:
    """Runs task lists against a gateway with bounded parallelism."""
    gateway: Gateway
    default_concurrency: int = 5
    pricing: ModelPricing = field(default=DEFAULT_PRICING)

    def __post_init__(self):
        if self.default_concurrency < 1:
            raise ValueError("default_concurrency must be >= 1")

    async def process_batch(
        self,
        tasks: List[Task],
        concurrency: Optional[int] = None
    ) -> Tuple[List[TaskResult], BatchSummary]:
        """Execute every task, isolating failures per task.

        Args:
            tasks: Ordered tasks to run
            concurrency: Max outstanding gateway calls (defaults to configured value)

        Returns:
            Results in input order and the aggregate summary

        Raises:
            ValueError: If concurrency is below 1
        """
        limit = self.default_concurrency if concurrency is None else concurrency
        if not is_integer(limit) or limit < 1:
            raise ValueError("concurrency must be an integer >= 1")

        start = time.monotonic()
        results: List[TaskResult] = []

        for offset in range(0, len(tasks), limit):
            chunk = tasks[offset:offset + limit]
            logger.debug(
                "Dispatching chunk %d-%d of %d tasks",
                offset + 1, offset + len(chunk), len(tasks)
            )
            outcomes = await asyncio.gather(
                *(self._process_task(task) for task in chunk),
                return_exceptions=True
            )
            for task, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning("Task %s failed: %s", task.id, outcome)
                    results.append(TaskResult(
                        id=task.id,
                        response="",
                        usage=TokenUsage.zero(),
                        success=False,
                        error=str(outcome) or type(outcome).__name__
                    ))
                elif isinstance(outcome, BaseException):
                    # Cancellation is not a task failure
                    raise outcome
                else:
                    results.append(outcome)

        summary = self._summarize(results, start)
        return results, summary

    async def _process_task(self, task: Task) -> TaskResult:
        completion = await self.gateway.query(
            task.prompt,
            system=task.system,
            max_tokens=task.max_tokens
        )
        return TaskResult(
            id=task.id,
            response=completion.response,
            usage=completion.usage,
            success=True
        )

    def _summarize(self, results: List[TaskResult], start: float) -> BatchSummary:
        succeeded = sum(1 for r in results if r.success)
        total_usage = TokenUsage.zero()
        for r in results:
            total_usage = total_usage + r.usage

        return BatchSummary(
            total_tasks=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            total_input_tokens=total_usage.input_tokens,
            total_output_tokens=total_usage.output_tokens,
            total_cost_usd=estimate_cost(total_usage, self.pricing),
            duration_ms=int((time.monotonic() - start) * 1000)
        )
