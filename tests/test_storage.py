"""
Unit tests for the storage layer.

Tests document I/O, schema migrations and model serialization.
"""

import json
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from llm_swarm.storage.file_store import (
    CorruptLedgerError,
    LedgerWriteError,
    default_ledger_path,
    read_document,
    write_document,
)
from llm_swarm.storage.ledger import UsageLedger
from llm_swarm.storage.migrations import SCHEMA_VERSION, upgrade_document
from llm_swarm.storage.models import (
    PipelineRun,
    ProviderInfo,
    RequestLogEntry,
    UsageWindow,
    format_timestamp,
    parse_timestamp,
)

NOW = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

V1_DOCUMENT = {
    "current_window": {
        "window_start": "2025-03-01T08:00:00.000Z",
        "window_end": "2025-03-01T13:00:00.000Z",
        "prompt_count": 40,
        "total_input_tokens": 4000,
        "total_output_tokens": 800,
        "estimated_cost_usd": 0.00156,
    },
    "daily_totals": [
        {
            "date": "2025-03-01",
            "prompt_count": 40,
            "total_input_tokens": 4000,
            "total_output_tokens": 800,
            "estimated_cost_usd": 0.00156,
        }
    ],
}


def _v2_document():
    document = json.loads(json.dumps(V1_DOCUMENT))
    document["recent_requests"] = [{
        "timestamp": "2025-03-01T08:30:00.000Z",
        "type": "batch",
        "task_count": 40,
        "input_tokens": 4000,
        "output_tokens": 800,
        "cost_usd": 0.00156,
        "response_time_ms": 5120,
        "caller": "copus:review",
    }]
    document["provider"] = {
        "name": "minimax-m2.5",
        "pricing": {"input_per_million": 0.15, "output_per_million": 1.2},
    }
    return document


class TestFileStore:
    """Test document read/write."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "nested" / "usage.json"

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_default_path(self):
        assert default_ledger_path() == Path.home() / ".claude" / "llm-swarm-usage.json"

    def test_missing_file_returns_none(self):
        assert read_document(self.path) is None

    def test_write_creates_directories_and_round_trips(self):
        write_document(self.path, {"a": 1})
        assert read_document(self.path) == {"a": 1}
        # No temp files left behind
        assert os.listdir(self.path.parent) == ["usage.json"]

    def test_write_overwrites(self):
        write_document(self.path, {"a": 1})
        write_document(self.path, {"b": 2})
        assert read_document(self.path) == {"b": 2}

    def test_invalid_json_raises(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{oops", encoding="utf-8")
        with pytest.raises(CorruptLedgerError, match="Invalid JSON"):
            read_document(self.path)

    def test_non_object_raises(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("[]", encoding="utf-8")
        with pytest.raises(CorruptLedgerError, match="JSON object"):
            read_document(self.path)

    def test_unserializable_document_raises_write_error(self):
        with pytest.raises(LedgerWriteError):
            write_document(self.path, {"when": object()})
        assert not self.path.exists()


class TestMigrations:
    """Test schema upgrades."""

    def test_v1_document_upgraded(self):
        document, migrated = upgrade_document(
            json.loads(json.dumps(V1_DOCUMENT)), ProviderInfo.default()
        )
        assert migrated is True
        assert document["schema_version"] == SCHEMA_VERSION
        assert document["recent_requests"] == []
        assert document["pipeline_runs"] == []
        assert document["provider"]["name"] == "minimax-m2.5"

    def test_unversioned_v2_document_keeps_fields(self):
        document, migrated = upgrade_document(_v2_document(), ProviderInfo.default())
        assert migrated is True
        assert len(document["recent_requests"]) == 1
        assert document["pipeline_runs"] == []

    def test_current_document_untouched(self):
        document = _v2_document()
        document["pipeline_runs"] = []
        document["schema_version"] = SCHEMA_VERSION
        _, migrated = upgrade_document(document, ProviderInfo.default())
        assert migrated is False

    def test_missing_core_fields_rejected(self):
        with pytest.raises(ValueError, match="current_window"):
            upgrade_document({"daily_totals": []}, ProviderInfo.default())

    def test_invalid_version_rejected(self):
        document = _v2_document()
        document["schema_version"] = "three"
        with pytest.raises(ValueError, match="schema_version"):
            upgrade_document(document, ProviderInfo.default())


class TestLedgerLoadsShippedShapes:
    """Every previously shipped document shape loads and is upgraded in place."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, "usage.json")

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, document):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(document, f)

    def _ledger(self):
        return UsageLedger(path=self.path, clock=lambda: NOW)

    def test_v1_shape(self):
        self._write(V1_DOCUMENT)
        ledger = self._ledger()

        assert ledger.get_remaining() == 960
        state = ledger.state
        assert state.recent_requests == []
        assert state.pipeline_runs == []
        assert state.provider == ProviderInfo.default()

        with open(self.path, "r", encoding="utf-8") as f:
            upgraded = json.load(f)
        assert upgraded["schema_version"] == SCHEMA_VERSION
        assert upgraded["recent_requests"] == []
        assert upgraded["current_window"]["prompt_count"] == 40

    def test_v2_shape(self):
        self._write(_v2_document())
        state = self._ledger().state

        assert state.recent_requests[0].caller == "copus:review"
        assert state.recent_requests[0].error is None
        assert state.pipeline_runs == []

    def test_newer_version_read_tolerantly(self):
        document = _v2_document()
        document["pipeline_runs"] = []
        document["schema_version"] = SCHEMA_VERSION + 1
        document["future_field"] = {"x": 1}
        self._write(document)

        assert self._ledger().get_remaining() == 960


class TestModels:
    """Test model serialization details."""

    def test_timestamp_format(self):
        assert format_timestamp(NOW) == "2025-03-01T09:00:00.000Z"

    def test_timestamp_parse_variants(self):
        assert parse_timestamp("2025-03-01T09:00:00.000Z") == NOW
        assert parse_timestamp("2025-03-01T09:00:00+00:00") == NOW
        assert parse_timestamp("2025-03-01T09:00:00") == NOW

    def test_window_expiry_boundary(self):
        window = UsageWindow.open(NOW, timedelta(hours=5))
        assert not window.is_expired(NOW + timedelta(hours=4, minutes=59))
        assert window.is_expired(NOW + timedelta(hours=5))

    def test_request_entry_optional_fields(self):
        entry = RequestLogEntry(
            timestamp=NOW, type="batch", task_count=3, input_tokens=1,
            output_tokens=2, cost_usd=0.1, response_time_ms=5, failed_count=2
        )
        data = entry.to_dict()
        assert data["failed_count"] == 2
        assert "caller" not in data
        assert RequestLogEntry.from_dict(data) == entry

    def test_pipeline_run_running_has_no_completed(self):
        run = PipelineRun(id="run-1", started=NOW, skill_chain=["a"])
        data = run.to_dict()
        assert "completed" not in data
        assert data["status"] == "running"
        assert PipelineRun.from_dict(data).completed is None
