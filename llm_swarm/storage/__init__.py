"""
Storage layer for llm-swarm.

A single JSON document holds the usage window, daily totals, the
request log and the pipeline-run log.
"""

from .file_store import CorruptLedgerError, LedgerError, LedgerWriteError
from .ledger import PipelineContext, RequestOutcome, UsageLedger

__all__ = [
    "CorruptLedgerError",
    "LedgerError",
    "LedgerWriteError",
    "PipelineContext",
    "RequestOutcome",
    "UsageLedger",
]
