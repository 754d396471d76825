"""
Data models for the usage ledger.

Defines the entities persisted in the ledger document and their
JSON mapping. Optional fields are omitted from the document when unset.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..core.pricing import DEFAULT_PRICING, PROVIDER_NAME


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialize as ISO-8601 UTC with millisecond precision and a Z suffix."""
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class UsageWindow:
    """Rolling quota window; replaced, never merged, once expired."""
    window_start: datetime
    window_end: datetime
    prompt_count: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    estimated_cost_usd: float = 0.0

    @classmethod
    def open(cls, now: datetime, duration: timedelta) -> "UsageWindow":
        """Create a fresh zeroed window starting at `now`."""
        return cls(window_start=now, window_end=now + duration)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.window_end

    def add(self, prompts: int, input_tokens: int, output_tokens: int, cost_usd: float) -> None:
        self.prompt_count += prompts
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        self.estimated_cost_usd += cost_usd

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_start": format_timestamp(self.window_start),
            "window_end": format_timestamp(self.window_end),
            "prompt_count": self.prompt_count,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "estimated_cost_usd": self.estimated_cost_usd,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageWindow":
        return cls(
            window_start=parse_timestamp(data["window_start"]),
            window_end=parse_timestamp(data["window_end"]),
            prompt_count=int(data.get("prompt_count", 0)),
            total_input_tokens=int(data.get("total_input_tokens", 0)),
            total_output_tokens=int(data.get("total_output_tokens", 0)),
            estimated_cost_usd=float(data.get("estimated_cost_usd", 0.0)),
        )


@dataclass
class DailyTotal:
    """Per-calendar-day rollup (UTC date, YYYY-MM-DD)."""
    date: str
    prompt_count: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    estimated_cost_usd: float = 0.0

    def add(self, prompts: int, input_tokens: int, output_tokens: int, cost_usd: float) -> None:
        self.prompt_count += prompts
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens
        self.estimated_cost_usd += cost_usd

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "prompt_count": self.prompt_count,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "estimated_cost_usd": self.estimated_cost_usd,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyTotal":
        return cls(
            date=str(data["date"]),
            prompt_count=int(data.get("prompt_count", 0)),
            total_input_tokens=int(data.get("total_input_tokens", 0)),
            total_output_tokens=int(data.get("total_output_tokens", 0)),
            estimated_cost_usd=float(data.get("estimated_cost_usd", 0.0)),
        )


@dataclass(frozen=True)
class RequestLogEntry:
    """Immutable record of one query or batch call.

    Append-only; the ledger keeps a capped FIFO of these.
    """
    timestamp: datetime
    type: str  # "query" or "batch"
    task_count: int
    input_tokens: int
    output_tokens: int
    cost_usd: float
    response_time_ms: int
    caller: Optional[str] = None
    error: Optional[str] = None
    failed_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "timestamp": format_timestamp(self.timestamp),
            "type": self.type,
            "task_count": self.task_count,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": self.cost_usd,
            "response_time_ms": self.response_time_ms,
        }
        if self.caller is not None:
            entry["caller"] = self.caller
        if self.error is not None:
            entry["error"] = self.error
        if self.failed_count is not None:
            entry["failed_count"] = self.failed_count
        return entry

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestLogEntry":
        return cls(
            timestamp=parse_timestamp(data["timestamp"]),
            type=str(data.get("type", "query")),
            task_count=int(data.get("task_count", 0)),
            input_tokens=int(data.get("input_tokens", 0)),
            output_tokens=int(data.get("output_tokens", 0)),
            cost_usd=float(data.get("cost_usd", 0.0)),
            response_time_ms=int(data.get("response_time_ms", 0)),
            caller=data.get("caller"),
            error=data.get("error"),
            failed_count=data.get("failed_count"),
        )


@dataclass
class PipelineRun:
    """Caller-reported pipeline activity, kept for dashboarding only."""
    id: str
    started: datetime
    skill_chain: List[str]
    completed: Optional[datetime] = None
    findings_total: int = 0
    findings_by_difficulty: Dict[str, int] = field(default_factory=dict)
    minimax_tasks: int = 0
    opus_tasks: int = 0
    minimax_cost_usd: float = 0.0
    status: str = "running"  # running | completed | failed

    def to_dict(self) -> Dict[str, Any]:
        run: Dict[str, Any] = {
            "id": self.id,
            "started": format_timestamp(self.started),
        }
        if self.completed is not None:
            run["completed"] = format_timestamp(self.completed)
        run.update({
            "skill_chain": list(self.skill_chain),
            "findings_total": self.findings_total,
            "findings_by_difficulty": dict(self.findings_by_difficulty),
            "minimax_tasks": self.minimax_tasks,
            "opus_tasks": self.opus_tasks,
            "minimax_cost_usd": self.minimax_cost_usd,
            "status": self.status,
        })
        return run

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineRun":
        completed = data.get("completed")
        return cls(
            id=str(data["id"]),
            started=parse_timestamp(data["started"]),
            completed=parse_timestamp(completed) if completed else None,
            skill_chain=[str(s) for s in data.get("skill_chain", [])],
            findings_total=int(data.get("findings_total", 0)),
            findings_by_difficulty={
                str(k): int(v) for k, v in data.get("findings_by_difficulty", {}).items()
            },
            minimax_tasks=int(data.get("minimax_tasks", 0)),
            opus_tasks=int(data.get("opus_tasks", 0)),
            minimax_cost_usd=float(data.get("minimax_cost_usd", 0.0)),
            status=str(data.get("status", "completed")),
        )


@dataclass(frozen=True)
class ProviderInfo:
    """Static provider metadata stored alongside the usage data."""
    name: str
    input_per_million: float
    output_per_million: float

    @classmethod
    def default(cls) -> "ProviderInfo":
        return cls(
            name=PROVIDER_NAME,
            input_per_million=float(DEFAULT_PRICING.input_per_million),
            output_per_million=float(DEFAULT_PRICING.output_per_million),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "pricing": {
                "input_per_million": self.input_per_million,
                "output_per_million": self.output_per_million,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderInfo":
        pricing = data.get("pricing", {})
        return cls(
            name=str(data["name"]),
            input_per_million=float(pricing["input_per_million"]),
            output_per_million=float(pricing["output_per_million"]),
        )


@dataclass
class LedgerState:
    """Root aggregate persisted as one JSON document."""
    current_window: UsageWindow
    daily_totals: List[DailyTotal] = field(default_factory=list)
    recent_requests: List[RequestLogEntry] = field(default_factory=list)
    pipeline_runs: List[PipelineRun] = field(default_factory=list)
    provider: ProviderInfo = field(default_factory=ProviderInfo.default)
    schema_version: int = 3

    @classmethod
    def empty(
        cls,
        now: datetime,
        window_duration: timedelta,
        provider: Optional[ProviderInfo] = None
    ) -> "LedgerState":
        return cls(
            current_window=UsageWindow.open(now, window_duration),
            provider=provider or ProviderInfo.default(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "current_window": self.current_window.to_dict(),
            "daily_totals": [d.to_dict() for d in self.daily_totals],
            "recent_requests": [r.to_dict() for r in self.recent_requests],
            "pipeline_runs": [p.to_dict() for p in self.pipeline_runs],
            "provider": self.provider.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerState":
        """Build state from an already upgraded document.

        Raises:
            KeyError, TypeError, ValueError: If the document is malformed
        """
        return cls(
            current_window=UsageWindow.from_dict(data["current_window"]),
            daily_totals=[DailyTotal.from_dict(d) for d in data["daily_totals"]],
            recent_requests=[RequestLogEntry.from_dict(r) for r in data["recent_requests"]],
            pipeline_runs=[PipelineRun.from_dict(p) for p in data["pipeline_runs"]],
            provider=ProviderInfo.from_dict(data["provider"]),
            schema_version=int(data["schema_version"]),
        )
