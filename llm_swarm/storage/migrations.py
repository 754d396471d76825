"""
Schema versions of the ledger document and their upgrade steps.

Shipped shapes:
    v1: {current_window, daily_totals}
    v2: v1 + recent_requests, provider
    v3: v2 + pipeline_runs, schema_version

Unversioned documents are treated as v1. Every step only fills in
missing fields, so a v2-shaped file without a version key upgrades
cleanly. Documents from a newer release are read as-is.
"""

import logging
from typing import Any, Callable, Dict, List, Tuple

from .models import ProviderInfo

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3

Document = Dict[str, Any]


def _to_v2(document: Document, provider: ProviderInfo) -> None:
    document.setdefault("recent_requests", [])
    document.setdefault("provider", provider.to_dict())


def _to_v3(document: Document, provider: ProviderInfo) -> None:
    document.setdefault("pipeline_runs", [])


# (target version, step) in application order
_STEPS: List[Tuple[int, Callable[[Document, ProviderInfo], None]]] = [
    (2, _to_v2),
    (3, _to_v3),
]


def document_version(document: Document) -> int:
    version = document.get("schema_version", 1)
    if not isinstance(version, int) or version < 1:
        raise ValueError(f"Invalid schema_version: {version!r}")
    return version


def upgrade_document(document: Document, provider: ProviderInfo) -> Tuple[Document, bool]:
    """Bring a raw ledger document up to SCHEMA_VERSION.

    Args:
        document: Parsed JSON object (modified in place)
        provider: Provider metadata used when the document has none

    Returns:
        The upgraded document and whether any step was applied

    Raises:
        ValueError: If the document is missing the v1 core fields
    """
    if "current_window" not in document or "daily_totals" not in document:
        raise ValueError("Ledger document missing current_window or daily_totals")

    version = document_version(document)
    migrated = False
    for target, step in _STEPS:
        if version < target:
            step(document, provider)
            logger.info("Upgraded ledger document from v%d to v%d", version, target)
            version = target
            migrated = True

    if migrated:
        document["schema_version"] = version
    return document, migrated
