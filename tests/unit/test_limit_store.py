"""Unit tests for the JSON limit store."""
import json

import pytest

from holdwatch.core.models import LimitRule, LimitsStorage
from holdwatch.storage.limit_store import LimitStore
from holdwatch.tracking.limits import DurationParseError


class TestLoad:
    """Test reading the limits file."""

    def test_missing_file(self, limit_store):
        storage = limit_store.load()
        assert storage.limits == []
        assert storage.check_interval == "5m"

    def test_empty_file(self, limit_store, limits_path):
        limits_path.write_text("")
        assert limit_store.load().limits == []

    def test_corrupt_file(self, limit_store, limits_path):
        limits_path.write_text("{not json")
        storage = limit_store.load()
        assert storage.limits == []
        assert storage.check_interval == "5m"

    def test_empty_interval_defaults(self, limit_store, limits_path):
        limits_path.write_text(json.dumps({
            "limits": [{"coin": "LSK", "time": "12h"}],
            "check_interval": "",
        }))
        storage = limit_store.load()
        assert storage.check_interval == "5m"
        assert storage.limits[0].coin == "LSK"

    def test_missing_interval_key(self, limit_store, limits_path):
        limits_path.write_text(json.dumps({"limits": []}))
        assert limit_store.load().check_interval == "5m"


class TestSave:
    """Test writing the limits file."""

    def test_round_trip(self, limit_store, limits_path):
        limit_store.save(LimitsStorage(
            limits=[LimitRule(coin="BTC", time="30m")], check_interval="10m"
        ))
        raw = json.loads(limits_path.read_text())
        assert raw == {"limits": [{"coin": "BTC", "time": "30m"}], "check_interval": "10m"}
        assert limit_store.load().check_interval == "10m"

    def test_creates_parent_directory(self, tmp_path):
        store = LimitStore(tmp_path / "data" / "limits.json")
        store.save(LimitsStorage())
        assert (tmp_path / "data" / "limits.json").exists()


class TestUpsertLimit:
    """Test adding and replacing limits."""

    def test_add(self, limit_store):
        rule, created = limit_store.upsert_limit("lsk", "12h")
        assert created is True
        assert rule.coin == "LSK"
        assert limit_store.load().find("LSK").time == "12h"

    def test_update_replaces(self, limit_store):
        limit_store.upsert_limit("LSK", "12h")
        limit_store.upsert_limit("BTC", "1d")
        rule, created = limit_store.upsert_limit("Lsk", "6h")

        assert created is False
        storage = limit_store.load()
        assert [(r.coin, r.time) for r in storage.limits] == [("LSK", "6h"), ("BTC", "1d")]

    def test_invalid_duration_leaves_store_untouched(self, lsk_limit_store, limits_path):
        before = limits_path.read_text()
        with pytest.raises(DurationParseError):
            lsk_limit_store.upsert_limit("LSK", "soon")
        assert limits_path.read_text() == before

    def test_oversized_duration_rejected(self, lsk_limit_store):
        with pytest.raises(DurationParseError):
            lsk_limit_store.upsert_limit("LSK", "99999999999d")
        assert lsk_limit_store.load().find("LSK").time == "12h"

    def test_keeps_check_interval(self, limit_store):
        limit_store.set_check_interval("15m")
        limit_store.upsert_limit("ETH", "2h")
        assert limit_store.load().check_interval == "15m"


class TestSetCheckInterval:
    def test_set(self, limit_store):
        assert limit_store.set_check_interval(" 10m ") == "10m"
        assert limit_store.load().check_interval == "10m"

    def test_invalid(self, limit_store):
        with pytest.raises(DurationParseError):
            limit_store.set_check_interval("0m")
        assert limit_store.load().check_interval == "5m"
