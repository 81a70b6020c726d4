"""
Tests for id generation and the short-id mapping.
"""

import logging
from pathlib import Path

import pytest

from tbd.core.ids import generator
from tbd.core.ids.generator import (
    extract_short_id,
    format_display_id,
    generate_internal_id,
    generate_short_id,
    is_internal_id,
    is_short_id,
    new_ulid,
    normalize_internal_id,
)
from tbd.core.ids.mapping import (
    IdMappingError,
    IdMappingStore,
    IdNotFoundError,
    ShortIdExhaustedError,
    parse_mapping,
)

RECORD_ID = "is-01hx5zzkbkactav9wevgemmvrz"
OTHER_RECORD_ID = "is-01hx5zzkbkbctav9wevgemmvrz"
THIRD_RECORD_ID = "is-01hx5zzkbkcctav9wevgemmvrz"


@pytest.fixture
def mapping(tmp_path: Path) -> IdMappingStore:
    return IdMappingStore(tmp_path / "mappings" / "ids.yml")


class TestGenerator:
    """Tests for id generation helpers."""

    def test_ulid_shape(self) -> None:
        ulid = new_ulid()
        assert len(ulid) == 26
        assert ulid == ulid.lower()
        assert not set(ulid) & set("ilou")

    def test_ulids_sort_by_time(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(generator, "_last_ts_ms", -1)
        monkeypatch.setattr(generator.time, "time", lambda: 1_700_000_000.0)
        earlier = new_ulid()
        monkeypatch.setattr(generator.time, "time", lambda: 1_700_000_001.0)
        later = new_ulid()
        assert earlier < later
        assert earlier[:10] != later[:10]

    def test_same_millisecond_is_monotonic(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(generator, "_last_ts_ms", -1)
        monkeypatch.setattr(generator.time, "time", lambda: 1_700_000_000.0)

        ulids = [new_ulid() for _ in range(50)]

        assert ulids == sorted(ulids)
        assert len(set(ulids)) == 50
        assert {u[:10] for u in ulids} == {ulids[0][:10]}

    def test_clock_stepping_back_keeps_order(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(generator, "_last_ts_ms", -1)
        monkeypatch.setattr(generator.time, "time", lambda: 1_700_000_001.0)
        first = new_ulid()
        monkeypatch.setattr(generator.time, "time", lambda: 1_700_000_000.0)
        assert new_ulid() > first

    def test_internal_id(self) -> None:
        internal = generate_internal_id()
        assert internal.startswith("is-")
        assert is_internal_id(internal)

    def test_short_id(self) -> None:
        short = generate_short_id()
        assert len(short) == 4
        assert short.isalnum() and short == short.lower()
        assert len(generate_short_id(6)) == 6

    def test_is_short_id(self) -> None:
        assert is_short_id("a7k2")
        assert not is_short_id("bd-a7k2")
        assert not is_short_id(RECORD_ID[3:])

    def test_normalize_internal_id(self) -> None:
        assert normalize_internal_id(RECORD_ID.upper()) == RECORD_ID
        assert normalize_internal_id(RECORD_ID[3:]) == RECORD_ID
        assert normalize_internal_id("bd-a7k2") is None

    def test_extract_short_id(self) -> None:
        assert extract_short_id("bd-a7k2", "bd") == "a7k2"
        assert extract_short_id("A7K2", "bd") == "a7k2"
        assert extract_short_id("proj-a7k2", "bd") == "a7k2"

    def test_format_display_id(self) -> None:
        assert format_display_id("a7k2", "bd") == "bd-a7k2"


class TestParseMapping:
    """Tests for parse_mapping()."""

    def test_empty(self) -> None:
        assert parse_mapping("") == {}

    def test_values_are_strings(self) -> None:
        assert parse_mapping(f"a7k2: {RECORD_ID}\n") == {"a7k2": RECORD_ID}

    def test_duplicate_keys_tolerated(self, caplog: pytest.LogCaptureFixture) -> None:
        text = f"a7k2: {RECORD_ID}\na7k2: {OTHER_RECORD_ID}\n"
        with caplog.at_level(logging.WARNING):
            assert parse_mapping(text) == {"a7k2": OTHER_RECORD_ID}
        assert "repeats short ids a7k2" in caplog.text

    def test_not_a_mapping(self) -> None:
        with pytest.raises(IdMappingError):
            parse_mapping("- a\n- b\n")


class TestIdMappingStore:
    """Tests for IdMappingStore."""

    def test_assign_persists(self, mapping: IdMappingStore) -> None:
        short = mapping.assign(RECORD_ID)

        reloaded = IdMappingStore(mapping.path)
        assert reloaded.resolve(short) == RECORD_ID
        assert reloaded.short_id_for(RECORD_ID) == short

    def test_assign_is_stable(self, mapping: IdMappingStore) -> None:
        assert mapping.assign(RECORD_ID) == mapping.assign(RECORD_ID)

    def test_assign_rejects_non_internal(self, mapping: IdMappingStore) -> None:
        with pytest.raises(IdMappingError):
            mapping.assign("bd-a7k2")

    def test_resolve_forms(self, mapping: IdMappingStore) -> None:
        mapping.add(RECORD_ID, "a7k2")

        assert mapping.resolve("bd-a7k2") == RECORD_ID
        assert mapping.resolve("a7k2") == RECORD_ID
        assert mapping.resolve(RECORD_ID) == RECORD_ID
        assert mapping.resolve(RECORD_ID[3:]) == RECORD_ID

    def test_resolve_unknown(self, mapping: IdMappingStore) -> None:
        with pytest.raises(IdNotFoundError, match="bd-zzzz"):
            mapping.resolve("bd-zzzz")

    def test_add_conflicts(self, mapping: IdMappingStore) -> None:
        mapping.add(RECORD_ID, "a7k2")
        mapping.add(RECORD_ID, "a7k2")  # identical pair is a no-op

        with pytest.raises(IdMappingError, match="already assigned"):
            mapping.add(OTHER_RECORD_ID, "a7k2")
        with pytest.raises(IdMappingError, match="already has short id"):
            mapping.add(RECORD_ID, "b3m9")

    def test_format_display_id(self, mapping: IdMappingStore) -> None:
        mapping.add(RECORD_ID, "a7k2")
        assert mapping.format_display_id(RECORD_ID) == "bd-a7k2"
        assert mapping.format_display_id(OTHER_RECORD_ID) == OTHER_RECORD_ID

    def test_custom_prefix(self, tmp_path: Path) -> None:
        store = IdMappingStore(tmp_path / "ids.yml", prefix="proj")
        store.add(RECORD_ID, "a7k2")
        assert store.format_display_id(RECORD_ID) == "proj-a7k2"
        assert store.resolve("proj-a7k2") == RECORD_ID

    def test_grows_length_when_crowded(
        self, mapping: IdMappingStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Collisions at one length move on to longer short ids."""
        mapping.add(RECORD_ID, "aaaa")
        monkeypatch.setattr(
            "tbd.core.ids.mapping.generate_short_id", lambda length: "a" * length
        )
        assert mapping.assign(OTHER_RECORD_ID) == "aaaaa"

    def test_exhausted(
        self, mapping: IdMappingStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        mapping.add(RECORD_ID, "aaaa")
        monkeypatch.setattr(
            "tbd.core.ids.mapping.generate_short_id", lambda length: "aaaa"
        )
        with pytest.raises(ShortIdExhaustedError):
            mapping.assign(OTHER_RECORD_ID)


class TestMergeFrom:
    """Tests for IdMappingStore.merge_from()."""

    def test_union_of_disjoint_entries(self, mapping: IdMappingStore) -> None:
        mapping.add(RECORD_ID, "a7k2")

        reassigned = mapping.merge_from(f"b3m9: {OTHER_RECORD_ID}\n")

        assert reassigned == {}
        assert mapping.entries == {"a7k2": RECORD_ID, "b3m9": OTHER_RECORD_ID}

    def test_short_id_collision_reassigns_local(
        self, mapping: IdMappingStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        """The remote keeps a contested short id; the local record moves."""
        mapping.add(RECORD_ID, "a7k2")

        with caplog.at_level(logging.WARNING):
            reassigned = mapping.merge_from(f"a7k2: {OTHER_RECORD_ID}\n")

        assert mapping.resolve("a7k2") == OTHER_RECORD_ID
        assert set(reassigned) == {RECORD_ID}
        assert mapping.short_id_for(RECORD_ID) == reassigned[RECORD_ID]
        assert reassigned[RECORD_ID] != "a7k2"
        assert "Short id collision" in caplog.text

    def test_same_record_different_short_ids(self, mapping: IdMappingStore) -> None:
        mapping.add(RECORD_ID, "a7k2")

        reassigned = mapping.merge_from(f"b3m9: {RECORD_ID}\n")

        assert reassigned == {}
        assert mapping.entries == {"b3m9": RECORD_ID}

    def test_merge_does_not_save(self, mapping: IdMappingStore) -> None:
        mapping.add(RECORD_ID, "a7k2")
        mapping.merge_from(f"b3m9: {THIRD_RECORD_ID}\n")
        assert "b3m9" not in mapping.path.read_text()

        mapping.save()
        assert "b3m9" in mapping.path.read_text()


class TestReconcile:
    """Tests for IdMappingStore.reconcile()."""

    def test_records_without_entries_get_short_ids(self, mapping: IdMappingStore) -> None:
        mapping.add(RECORD_ID, "a7k2")

        created, recovered = mapping.reconcile([RECORD_ID, OTHER_RECORD_ID])

        assert created == [OTHER_RECORD_ID]
        assert recovered == []
        assert mapping.short_id_for(RECORD_ID) == "a7k2"
        assert mapping.short_id_for(OTHER_RECORD_ID) is not None

    def test_recovers_historical_short_id(self, mapping: IdMappingStore) -> None:
        created, recovered = mapping.reconcile(
            [OTHER_RECORD_ID], historical={"b3m9": OTHER_RECORD_ID}
        )

        assert (created, recovered) == ([], [OTHER_RECORD_ID])
        assert mapping.resolve("bd-b3m9") == OTHER_RECORD_ID

    def test_taken_historical_short_id_not_reused(self, mapping: IdMappingStore) -> None:
        mapping.add(RECORD_ID, "b3m9")

        created, _ = mapping.reconcile([OTHER_RECORD_ID], historical={"b3m9": OTHER_RECORD_ID})

        assert created == [OTHER_RECORD_ID]
        assert mapping.resolve("b3m9") == RECORD_ID
        assert mapping.short_id_for(OTHER_RECORD_ID) != "b3m9"

    def test_malformed_ids_skipped(self, mapping: IdMappingStore) -> None:
        assert mapping.reconcile(["not-an-id"]) == ([], [])
        assert mapping.entries == {}

    def test_reconcile_does_not_save(self, mapping: IdMappingStore) -> None:
        mapping.reconcile([RECORD_ID])
        assert not mapping.path.exists()
