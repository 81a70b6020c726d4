"""
Tests for the Record model and the merge strategy table.
"""

from datetime import datetime, timezone

import pytest
from pydantic import BaseModel, ValidationError

from tbd.core.records.models import (
    FIELD_STRATEGIES,
    Dependency,
    MergeStrategy,
    Record,
    RecordKind,
    RecordStatus,
    check_strategy_table,
)


class TestRecordCreate:
    """Tests for Record.create()."""

    def test_create_sets_identity_and_version(self) -> None:
        """A new record gets a fresh internal id and version 1."""
        record = Record.create(title="Fix login redirect", kind=RecordKind.BUG)

        assert record.id.startswith("is-")
        assert len(record.id) == 29
        assert record.version == 1
        assert record.kind == RecordKind.BUG
        assert record.status == RecordStatus.OPEN
        assert record.created_at == record.updated_at

    def test_create_generates_unique_ids(self) -> None:
        """Every created record has its own id."""
        ids = {Record.create(title=f"Record {i}").id for i in range(50)}
        assert len(ids) == 50

    def test_create_timestamps_are_utc(self) -> None:
        record = Record.create(title="Timestamps")
        assert record.created_at.tzinfo is not None
        assert record.created_at.utcoffset().total_seconds() == 0


class TestRecordValidation:
    """Tests for field validation."""

    def test_invalid_id_rejected(self, make_record) -> None:
        with pytest.raises(ValidationError):
            make_record(id="bd-a7k2")

    def test_empty_title_rejected(self, make_record) -> None:
        with pytest.raises(ValidationError):
            make_record(title="")

    def test_priority_bounds(self, make_record) -> None:
        assert make_record(priority=0).priority == 0
        assert make_record(priority=4).priority == 4
        with pytest.raises(ValidationError):
            make_record(priority=5)

    def test_naive_datetime_treated_as_utc(self, make_record) -> None:
        """Naive datetimes are interpreted as UTC."""
        record = make_record(created_at=datetime(2025, 1, 1, 12, 0))
        assert record.created_at == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_iso_string_datetime(self, make_record) -> None:
        record = make_record(updated_at="2025-01-02T08:30:00Z")
        assert record.updated_at == datetime(2025, 1, 2, 8, 30, tzinfo=timezone.utc)

    def test_dependencies_parsed(self, make_record) -> None:
        record = make_record(
            dependencies=[{"type": "blocks", "target": "is-01hx5zzkbkbctav9wevgemmvrz"}]
        )
        assert record.dependencies == [Dependency(target="is-01hx5zzkbkbctav9wevgemmvrz")]

    def test_record_is_frozen(self, make_record) -> None:
        record = make_record()
        with pytest.raises(ValidationError):
            record.title = "Changed"


class TestWithChanges:
    """Tests for Record.with_changes()."""

    def test_bumps_version_and_updated_at(self, make_record) -> None:
        record = make_record()
        edited = record.with_changes(status=RecordStatus.CLOSED, close_reason="done")

        assert edited.version == record.version + 1
        assert edited.updated_at > record.updated_at
        assert edited.status == RecordStatus.CLOSED
        assert edited.is_closed
        # Original is untouched
        assert record.status == RecordStatus.OPEN
        assert record.version == 1

    def test_immutable_fields_rejected(self, make_record) -> None:
        record = make_record()
        with pytest.raises(ValueError, match="immutable"):
            record.with_changes(kind=RecordKind.EPIC)
        with pytest.raises(ValueError, match="immutable"):
            record.with_changes(created_by="someone")


class TestStrategyTable:
    """Tests for the declarative merge strategy table."""

    def test_every_field_has_a_strategy(self) -> None:
        assert set(FIELD_STRATEGIES) == set(Record.model_fields)

    def test_declared_strategies(self) -> None:
        for field in ("id", "kind", "created_at", "created_by"):
            assert FIELD_STRATEGIES[field] == MergeStrategy.IMMUTABLE
        assert FIELD_STRATEGIES["version"] == MergeStrategy.MAX
        assert FIELD_STRATEGIES["updated_at"] == MergeStrategy.MAX
        assert FIELD_STRATEGIES["labels"] == MergeStrategy.UNION
        assert FIELD_STRATEGIES["dependencies"] == MergeStrategy.UNION
        assert FIELD_STRATEGIES["title"] == MergeStrategy.LWW
        assert FIELD_STRATEGIES["extensions"] == MergeStrategy.LWW

    def test_missing_strategy_detected(self) -> None:
        """A model field without a strategy is an error."""

        class Extended(BaseModel):
            title: str
            color: str

        with pytest.raises(TypeError, match="missing=\\['color'\\]"):
            check_strategy_table(Extended, {"title": MergeStrategy.LWW})

    def test_unknown_strategy_detected(self) -> None:
        """A strategy for a field the model doesn't have is an error."""

        class Small(BaseModel):
            title: str

        with pytest.raises(TypeError, match="unknown=\\['gone'\\]"):
            check_strategy_table(
                Small, {"title": MergeStrategy.LWW, "gone": MergeStrategy.LWW}
            )
