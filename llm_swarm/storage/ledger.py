"""
Usage ledger.

Tracks a rolling quota window, daily rollups, a capped request log and
a capped pipeline-run log in a single JSON document. One ledger
instance holds at most one in-memory copy of the state, loaded on first
use and rewritten in full after every record.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.batch import is_integer
from ..core.pricing import DEFAULT_PRICING, PROVIDER_NAME, ModelPricing
from .file_store import (
    CorruptLedgerError,
    LedgerWriteError,
    default_ledger_path,
    read_document,
    write_document,
)
from .migrations import upgrade_document
from .models import (
    DailyTotal,
    LedgerState,
    PipelineRun,
    ProviderInfo,
    RequestLogEntry,
    UsageWindow,
    format_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_LIMIT = 1000
DEFAULT_WINDOW_DURATION = timedelta(hours=5)

MAX_RECENT_REQUESTS = 200
MAX_DAILY_TOTALS = 30
MAX_PIPELINE_RUNS = 10
MAX_ERROR_LENGTH = 500
TRUNCATION_MARKER = "..."

REQUEST_TYPES = ("query", "batch")


def truncate_error(error: Optional[str]) -> Optional[str]:
    """Bound error text before it is persisted."""
    if error is None or len(error) <= MAX_ERROR_LENGTH:
        return error
    return error[:MAX_ERROR_LENGTH] + TRUNCATION_MARKER


@dataclass(frozen=True)
class PipelineContext:
    """Pipeline information attached to a batch by its caller."""
    skill_chain: List[str]
    findings_total: Optional[int] = None
    minimax_eligible: Optional[int] = None
    opus_required: Optional[int] = None

    def __post_init__(self):
        """Validate field types before anything reaches the ledger file."""
        if not isinstance(self.skill_chain, list) or not all(
            isinstance(s, str) for s in self.skill_chain
        ):
            raise ValueError("pipeline skill_chain must be a list of strings")
        for name in ("findings_total", "minimax_eligible", "opus_required"):
            value = getattr(self, name)
            if value is not None and (not is_integer(value) or value < 0):
                raise ValueError(f"pipeline {name} must be a non-negative integer")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineContext":
        if "skill_chain" not in data or not isinstance(data["skill_chain"], list):
            raise ValueError("pipeline requires a 'skill_chain' list")
        return cls(
            skill_chain=list(data["skill_chain"]),
            findings_total=data.get("findings_total"),
            minimax_eligible=data.get("minimax_eligible"),
            opus_required=data.get("opus_required"),
        )


@dataclass(frozen=True)
class RequestOutcome:
    """Everything the ledger needs to account for one call."""
    type: str
    task_count: int
    input_tokens: int
    output_tokens: int
    cost_usd: float
    response_time_ms: int
    caller: Optional[str] = None
    error: Optional[str] = None
    failed_count: Optional[int] = None
    pipeline: Optional[PipelineContext] = None

    def __post_init__(self):
        if self.type not in REQUEST_TYPES:
            raise ValueError(f"type must be one of {REQUEST_TYPES}")
        if self.task_count < 0:
            raise ValueError("task_count cannot be negative")


@dataclass
class UsageLedger:
    """Durable, single-writer accounting store.

    The quota check is a point-in-time read, not a reservation. Nothing
    coordinates separate processes sharing the same file.
    """
    path: Optional[Union[str, Path]] = None
    quota_limit: int = DEFAULT_QUOTA_LIMIT
    window_duration: timedelta = DEFAULT_WINDOW_DURATION
    pricing: ModelPricing = DEFAULT_PRICING
    clock: Callable[[], datetime] = utc_now
    _state: Optional[LedgerState] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self.path = Path(self.path) if self.path is not None else default_ledger_path()
        if self.quota_limit < 0:
            raise ValueError("quota_limit cannot be negative")
        if self.window_duration <= timedelta(0):
            raise ValueError("window_duration must be positive")

    @property
    def provider(self) -> ProviderInfo:
        return ProviderInfo(
            name=PROVIDER_NAME,
            input_per_million=float(self.pricing.input_per_million),
            output_per_million=float(self.pricing.output_per_million),
        )

    @property
    def state(self) -> LedgerState:
        """Loaded state with an expired window already rotated."""
        return self._ensure_loaded()

    def get_remaining(self) -> int:
        """Prompts left in the current window (never negative)."""
        state = self._ensure_loaded()
        return max(0, self.quota_limit - state.current_window.prompt_count)

    def record(self, outcome: RequestOutcome) -> None:
        """Account for one call and persist the whole ledger.

        Failed calls are recorded too, with zero usage and the error text.

        Args:
            outcome: Accounting data for the call

        Raises:
            LedgerWriteError: If the ledger cannot be persisted
        """
        state = self._ensure_loaded()
        now = self.clock()

        state.recent_requests.append(RequestLogEntry(
            timestamp=now,
            type=outcome.type,
            task_count=outcome.task_count,
            input_tokens=outcome.input_tokens,
            output_tokens=outcome.output_tokens,
            cost_usd=outcome.cost_usd,
            response_time_ms=outcome.response_time_ms,
            caller=outcome.caller,
            error=truncate_error(outcome.error),
            failed_count=outcome.failed_count,
        ))
        if len(state.recent_requests) > MAX_RECENT_REQUESTS:
            state.recent_requests = state.recent_requests[-MAX_RECENT_REQUESTS:]

        quantities = (
            outcome.task_count,
            outcome.input_tokens,
            outcome.output_tokens,
            outcome.cost_usd,
        )
        state.current_window.add(*quantities)
        self._daily_entry(state, now).add(*quantities)

        if outcome.pipeline is not None and outcome.caller:
            state.pipeline_runs.append(self._pipeline_run(outcome, now))
            if len(state.pipeline_runs) > MAX_PIPELINE_RUNS:
                state.pipeline_runs = state.pipeline_runs[-MAX_PIPELINE_RUNS:]

        self._save(state)
        logger.debug(
            "Recorded %s: %d tasks, %d/%d tokens, $%.6f",
            outcome.type, outcome.task_count,
            outcome.input_tokens, outcome.output_tokens, outcome.cost_usd
        )

    def get_usage_summary(self) -> str:
        """Human-readable window and today's totals."""
        state = self._ensure_loaded()
        window = state.current_window
        remaining = self.quota_limit - window.prompt_count
        today = self._today(self.clock())
        daily = next((d for d in state.daily_totals if d.date == today), None)

        return "\n".join([
            f"Window: {window.prompt_count}/{self.quota_limit} prompts used",
            f"Remaining: {remaining} prompts",
            f"Window expires: {format_timestamp(window.window_end)}",
            f"Today: {daily.prompt_count} prompts, ${daily.estimated_cost_usd:.4f} estimated"
            if daily else "Today: 0 prompts",
        ])

    def _ensure_loaded(self) -> LedgerState:
        if self._state is None:
            self._state = self._load()

        now = self.clock()
        if self._state.current_window.is_expired(now):
            logger.info(
                "Usage window expired at %s, opening a new one",
                format_timestamp(self._state.current_window.window_end)
            )
            self._state.current_window = UsageWindow.open(now, self.window_duration)
        return self._state

    def _load(self) -> LedgerState:
        try:
            document = read_document(self.path)
        except CorruptLedgerError as e:
            logger.warning("%s; starting with an empty ledger", e)
            return self._empty_state()

        if document is None:
            return self._empty_state()

        try:
            document, migrated = upgrade_document(document, self.provider)
            state = LedgerState.from_dict(document)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(
                "Malformed ledger document %s (%s); starting with an empty ledger",
                self.path, e
            )
            return self._empty_state()

        if migrated:
            # Upgrade in place so older readers and dashboards see the new shape
            try:
                self._save(state)
            except LedgerWriteError as e:
                logger.warning("Could not persist upgraded ledger %s: %s", self.path, e)
        return state

    def _save(self, state: LedgerState) -> None:
        write_document(self.path, state.to_dict())

    def _empty_state(self) -> LedgerState:
        return LedgerState.empty(self.clock(), self.window_duration, self.provider)

    @staticmethod
    def _today(now: datetime) -> str:
        return now.date().isoformat()

    def _daily_entry(self, state: LedgerState, now: datetime) -> DailyTotal:
        today = self._today(now)
        for entry in state.daily_totals:
            if entry.date == today:
                return entry

        entry = DailyTotal(date=today)
        state.daily_totals.append(entry)
        if len(state.daily_totals) > MAX_DAILY_TOTALS:
            state.daily_totals = state.daily_totals[-MAX_DAILY_TOTALS:]
        return entry

    @staticmethod
    def _pipeline_run(outcome: RequestOutcome, now: datetime) -> PipelineRun:
        pipeline = outcome.pipeline
        return PipelineRun(
            id=f"run-{int(now.timestamp() * 1000)}",
            started=now,
            completed=now,
            skill_chain=list(pipeline.skill_chain),
            findings_total=pipeline.findings_total or 0,
            findings_by_difficulty={},
            minimax_tasks=pipeline.minimax_eligible or 0,
            opus_tasks=pipeline.opus_required or 0,
            minimax_cost_usd=outcome.cost_usd,
            status="failed" if outcome.error else "completed",
        )
