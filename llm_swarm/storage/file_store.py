"""
Durable document storage.

The whole ledger lives in one JSON file that is rewritten on every
change. Writes go through a temp file and os.replace so a reader never
sees a half-written document. There is no cross-process lock: two
processes rewriting the same file race, last writer wins.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_LEDGER_FILENAME = "llm-swarm-usage.json"


class LedgerError(Exception):
    """Base class for ledger persistence failures."""


class CorruptLedgerError(LedgerError):
    """Raised when the stored document cannot be read or parsed."""


class LedgerWriteError(LedgerError):
    """Raised when the ledger document cannot be written."""


def default_ledger_path() -> Path:
    """Well-known per-user ledger location."""
    return Path.home() / ".claude" / DEFAULT_LEDGER_FILENAME


def read_document(path: Path) -> Optional[Dict[str, Any]]:
    """Read the ledger document.

    Args:
        path: Ledger file path

    Returns:
        Parsed JSON object, or None if the file does not exist

    Raises:
        CorruptLedgerError: If the file is unreadable or not a JSON object
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise CorruptLedgerError(f"Cannot read ledger file {path}: {e}") from e

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptLedgerError(f"Invalid JSON in ledger file {path}: {e}") from e

    if not isinstance(document, dict):
        raise CorruptLedgerError(f"Ledger file {path} does not contain a JSON object")
    return document


def write_document(path: Path, document: Dict[str, Any]) -> None:
    """Atomically replace the ledger document.

    Args:
        path: Ledger file path
        document: JSON-serializable object

    Raises:
        LedgerWriteError: If serialization or any filesystem step fails
    """
    tmp_name = None
    try:
        payload = json.dumps(document, indent=2)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        # Atomic within the same filesystem
        os.replace(tmp_name, str(path))
        tmp_name = None
    except (OSError, TypeError, ValueError) as e:
        raise LedgerWriteError(f"Cannot write ledger file {path}: {e}") from e
    finally:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)
