"""Tests for mdview._types.

Tests cover:
- Instance URL derivation and uptime
- JSON round trip, including legacy naive timestamps
- Error taxonomy exit codes and messages
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mdview._types import (
    AlreadyRegistered,
    ChangeEvent,
    Instance,
    MdviewError,
    NoPortAvailable,
    NotRunning,
    StartupFailed,
    WatchLost,
)


@pytest.fixture
def instance():
    return Instance(
        file_path=Path("/tmp/notes.md"),
        port=6914,
        pid=4242,
        started_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        log_path=Path("/tmp/logs/notes-abcd1234.log"),
    )


class TestInstance:
    def test_url_uses_localhost_and_port(self, instance):
        assert instance.url == "http://localhost:6914"

    def test_started_at_defaults_to_now_utc(self):
        inst = Instance(file_path=Path("/tmp/a.md"), port=1, pid=1)
        assert inst.started_at.tzinfo is not None
        assert datetime.now(timezone.utc) - inst.started_at < timedelta(seconds=5)

    def test_uptime(self, instance):
        now = instance.started_at + timedelta(minutes=3)
        assert instance.uptime(now) == timedelta(minutes=3)

    def test_uptime_never_negative(self, instance):
        earlier = instance.started_at - timedelta(minutes=1)
        assert instance.uptime(earlier) == timedelta(0)

    def test_is_immutable(self, instance):
        with pytest.raises(AttributeError):
            instance.port = 7000

    def test_to_dict(self, instance):
        d = instance.to_dict()
        assert d["file_path"] == "/tmp/notes.md"
        assert d["port"] == 6914
        assert d["pid"] == 4242
        assert d["url"] == "http://localhost:6914"
        assert d["started_at"] == "2024-01-01T12:00:00+00:00"
        assert d["log_path"] == "/tmp/logs/notes-abcd1234.log"

    def test_from_dict_restores_fields(self, instance):
        assert Instance.from_dict(instance.to_dict()) == instance

    def test_from_dict_without_log_path(self):
        inst = Instance.from_dict(
            {
                "file_path": "/tmp/a.md",
                "port": 6915,
                "pid": 1,
                "started_at": "2024-01-01T00:00:00+00:00",
            }
        )
        assert inst.log_path is None

    def test_from_dict_naive_timestamp_is_utc(self):
        inst = Instance.from_dict(
            {
                "file_path": "/tmp/a.md",
                "port": 6915,
                "pid": 1,
                "started_at": "2024-01-01T00:00:00",
            }
        )
        assert inst.started_at.tzinfo == timezone.utc

    def test_from_dict_missing_key_raises(self):
        with pytest.raises(KeyError):
            Instance.from_dict({"file_path": "/tmp/a.md", "port": 1})


class TestChangeEvent:
    def test_events_are_ordered_by_occurrence(self):
        first = ChangeEvent()
        second = ChangeEvent()
        assert first.at <= second.at


class TestErrors:
    def test_all_errors_share_base(self):
        for cls in (NoPortAvailable, AlreadyRegistered, StartupFailed, NotRunning, WatchLost):
            assert issubclass(cls, MdviewError)

    def test_no_port_available(self):
        err = NoPortAvailable(6914, 7013)
        assert err.exit_code == 3
        assert "6914-7013" in str(err)

    def test_already_registered_is_not_an_error_exit(self, instance):
        err = AlreadyRegistered(instance)
        assert err.exit_code == 0
        assert err.existing is instance
        assert instance.url in str(err)

    def test_startup_failed_mentions_log(self):
        err = StartupFailed("did not start", Path("/tmp/x.log"))
        assert err.exit_code == 4
        assert "/tmp/x.log" in str(err)

    def test_not_running(self):
        err = NotRunning(Path("/tmp/a.md"))
        assert err.exit_code == 1
        assert "/tmp/a.md" in str(err)

    def test_watch_lost(self):
        err = WatchLost(Path("/tmp/a.md"))
        assert err.exit_code == 5
