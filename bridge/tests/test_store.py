"""Tests for the experience schema and the JSON record store."""

import json
from datetime import datetime, timezone

import pytest

from bridge.common.schemas import (
    EmbeddingRecord,
    ExperienceRecord,
    QualityEvidence,
    parse_created_filter,
)
from bridge.common.store import JsonRecordStore, RecordStore


def _record(record_id="exp_1", text="Morning walk by the river", **kwargs):
    return ExperienceRecord(id=record_id, text=text, **kwargs)


class TestExperienceRecord:
    def test_naive_datetimes_become_utc(self):
        record = _record(created=datetime(2025, 1, 2, 9, 30))
        assert record.created.tzinfo == timezone.utc

    def test_experiencers(self):
        assert _record(who="Alex").experiencers == ["Alex"]
        assert _record(who=["Alex", "Sam"]).experiencers == ["Alex", "Sam"]
        assert _record().experiencers == []

    def test_timestamp_prefers_occurred(self):
        created = datetime(2025, 3, 1, tzinfo=timezone.utc)
        occurred = datetime(2025, 2, 1, tzinfo=timezone.utc)
        assert _record(created=created, occurred=occurred).timestamp == occurred
        assert _record(created=created).timestamp == created

    def test_prominence_and_dominant(self):
        record = _record(qualities=[
            QualityEvidence(dimension="affective", prominence=0.4),
            QualityEvidence(dimension="affective", prominence=0.7),
            QualityEvidence(dimension="spatial", prominence=0.5),
        ])
        assert record.prominence("affective") == 0.7
        assert record.prominence("embodied") == 0.0
        assert record.dominant_dimension().value == "affective"

    def test_prominence_bounds(self):
        with pytest.raises(ValueError):
            QualityEvidence(dimension="affective", prominence=1.5)


class TestCreatedFilter:
    def test_single_day_is_inclusive(self):
        start, end = parse_created_filter("2025-01-15")
        assert start == datetime(2025, 1, 15, tzinfo=timezone.utc)
        assert end.date() == start.date()
        assert end > datetime(2025, 1, 15, 23, 59, 59, tzinfo=timezone.utc)

    def test_open_range(self):
        start, end = parse_created_filter({"start": "2025-01-01"})
        assert start == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert end.year == 9999

    def test_inverted_range(self):
        with pytest.raises(ValueError):
            parse_created_filter({"start": "2025-02-01", "end": "2025-01-01"})

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_created_filter("yesterday-ish")

    @pytest.mark.parametrize("bounds", [{"start": 5}, {"end": ["2025-01-01"]}])
    def test_non_string_bound(self, bounds):
        with pytest.raises(ValueError) as exc_info:
            parse_created_filter(bounds)
        assert "must be an ISO date string" in str(exc_info.value)


class TestJsonRecordStore:
    def test_implements_protocol(self, tmp_path):
        assert isinstance(JsonRecordStore(tmp_path / "data.json"), RecordStore)

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "data.json"
        store = JsonRecordStore(path)
        store.save_record(_record(qualities=[QualityEvidence(dimension="embodied", prominence=0.8)]))

        reloaded = JsonRecordStore(path)
        assert len(reloaded) == 1
        record = reloaded.get_record("exp_1")
        assert record.text == "Morning walk by the river"
        assert record.prominence("embodied") == 0.8

    def test_created_is_immutable(self, tmp_path):
        store = JsonRecordStore(tmp_path / "data.json")
        original = datetime(2024, 6, 1, tzinfo=timezone.utc)
        store.save_record(_record(created=original))
        store.save_record(_record(text="edited", created=datetime(2025, 1, 1, tzinfo=timezone.utc)))

        record = store.get_record("exp_1")
        assert record.text == "edited"
        assert record.created == original

    def test_getters_return_copies(self, tmp_path):
        store = JsonRecordStore(tmp_path / "data.json")
        store.save_record(_record())
        copy = store.get_record("exp_1")
        copy.qualities.append(QualityEvidence(dimension="spatial", prominence=0.9))
        assert store.get_record("exp_1").qualities == []

    def test_save_embedding(self, tmp_path):
        path = tmp_path / "data.json"
        store = JsonRecordStore(path)
        store.save_record(_record())
        store.save_embedding(EmbeddingRecord(source_id="exp_1", vector=[0.1, 0.2]))

        assert store.get_record("exp_1").embedding == [0.1, 0.2]
        data = json.loads(path.read_text())
        assert "exp_1" in data["embeddings"]

    def test_embedding_for_unknown_record_ignored(self, tmp_path, caplog):
        store = JsonRecordStore(tmp_path / "data.json")
        store.save_embedding(EmbeddingRecord(source_id="ghost", vector=[1.0]))
        assert len(store) == 0
        assert "unknown record ghost" in caplog.text

    def test_delete(self, tmp_path):
        store = JsonRecordStore(tmp_path / "data.json")
        store.save_record(_record())
        assert store.delete_record("exp_1") is True
        assert store.delete_record("exp_1") is False
        assert store.get_all_records() == []

    def test_corrupt_file_starts_empty(self, tmp_path, caplog):
        path = tmp_path / "data.json"
        path.write_text("{broken")
        store = JsonRecordStore(path)
        assert len(store) == 0
        assert "Failed to load record store" in caplog.text

    def test_no_temp_files_left(self, tmp_path):
        store = JsonRecordStore(tmp_path / "data.json")
        store.save_record(_record())
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]
