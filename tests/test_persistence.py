"""Tests for rate limit persistence and recovery."""

import json

import pytest

from overlay.app.core.config import Settings
from overlay.app.exceptions import InvalidHeaderFormat, PersistenceError
from overlay.app.ratelimit import InMemoryStore, JsonFileStore, RateLimiter, StoredSnapshot

RULES = "5:60:60,10:600:120,15:10800:3600"


class TestLoadFromStorage:
    """Tests for rebuilding state from a snapshot."""

    def test_window_rolled_over_fully_restores(self, limiter, clock):
        saved_at = clock.now
        clock.advance(15)

        limiter.load_from_storage("5:60:60", "5:60:10", saved_at)

        state = limiter.states[0]
        assert state.remaining == 5
        assert state.reset_seconds == 0

    def test_partial_elapse_keeps_snapshot_budget(self, limiter, clock):
        saved_at = clock.now
        clock.advance(4)

        limiter.load_from_storage("5:60:60", "5:60:10", saved_at)

        state = limiter.states[0]
        assert state.remaining == 0
        assert state.reset_seconds == 6

    def test_elapsed_seconds_are_floored(self, limiter, clock):
        saved_at = clock.now
        clock.advance(9.999)

        limiter.load_from_storage("5:60:60", "2:60:10", saved_at)

        assert limiter.states[0].reset_seconds == 1
        assert limiter.states[0].remaining == 3

    def test_mixed_windows(self, limiter, clock):
        saved_at = clock.now
        clock.advance(100)

        limiter.load_from_storage(RULES, "5:60:30,8:600:200,15:10800:9000", saved_at)

        assert [s.remaining for s in limiter.states] == [5, 2, 0]
        assert [s.reset_seconds for s in limiter.states] == [0, 100, 8900]
        assert limiter.can_request().can_request is True

    def test_future_snapshot_treated_as_fresh(self, limiter, clock):
        limiter.load_from_storage("5:60:60", "5:60:10", clock.now + 60_000)

        assert limiter.states[0].reset_seconds == 10
        assert limiter.states[0].remaining == 0

    def test_malformed_snapshot_keeps_current_state(self, limiter, clock):
        with pytest.raises(InvalidHeaderFormat):
            limiter.load_from_storage(RULES, "5:60:10", clock.now)

        assert [s.remaining for s in limiter.states] == [5, 10, 15]

    def test_load_does_not_save(self, limiter, store, clock):
        limiter.load_from_storage(RULES, "1:60:10,1:600:10,1:10800:10", clock.now)
        assert store.save_count == 0


class TestRestore:
    """Tests for restoring from a store."""

    def test_save_then_restore_in_new_limiter(self, limiter, store, clock):
        limiter.update_state_from_header("5:60:30,8:600:200,15:10800:9000")
        clock.advance(45)

        restored = RateLimiter(store=store, clock=clock)
        assert restored.restore() is True

        assert [s.remaining for s in restored.states] == [5, 2, 0]
        assert [s.reset_seconds for s in restored.states] == [0, 155, 8955]

    def test_empty_store(self, clock):
        limiter = RateLimiter(store=InMemoryStore(clock=clock), clock=clock)
        assert limiter.restore() is False

    def test_without_store(self, clock):
        assert RateLimiter(clock=clock).restore() is False

    def test_unreadable_store_ignored(self, clock):
        class BrokenStore(InMemoryStore):
            def load(self):
                raise PersistenceError("corrupt")

        limiter = RateLimiter(store=BrokenStore(clock=clock), clock=clock)
        assert limiter.restore() is False
        assert [s.remaining for s in limiter.states] == [5, 10, 15]

    def test_malformed_snapshot_ignored(self, clock):
        class StaleStore(InMemoryStore):
            def load(self):
                return StoredSnapshot(rules=RULES, state="nonsense", saved_at=clock.now)

        limiter = RateLimiter(store=StaleStore(clock=clock), clock=clock)
        assert limiter.restore() is False


class TestJsonFileStore:
    """Tests for the JSON file store."""

    def test_save_and_load(self, tmp_path, clock):
        store = JsonFileStore(tmp_path / "state" / "ratelimit.json", clock=clock)

        store.save(RULES, "1:60:10,2:600:20,3:10800:30")
        snapshot = store.load()

        assert snapshot == StoredSnapshot(
            rules=RULES, state="1:60:10,2:600:20,3:10800:30", saved_at=clock.now
        )
        data = json.loads((tmp_path / "state" / "ratelimit.json").read_text())
        assert data["rules"] == RULES

    def test_no_temp_files_left(self, tmp_path, clock):
        store = JsonFileStore(tmp_path / "ratelimit.json", clock=clock)
        store.save(RULES, "1:60:10,2:600:20,3:10800:30")
        store.save(RULES, "2:60:10,2:600:20,3:10800:30")

        assert [p.name for p in tmp_path.iterdir()] == ["ratelimit.json"]

    def test_missing_file(self, tmp_path):
        assert JsonFileStore(tmp_path / "missing.json").load() is None

    @pytest.mark.parametrize("content", ["{not json", "[]", '{"rules": "5:60:60"}'])
    def test_corrupt_file_raises(self, tmp_path, content):
        path = tmp_path / "ratelimit.json"
        path.write_text(content)

        with pytest.raises(PersistenceError):
            JsonFileStore(path).load()

    def test_write_failure_raises_persistence_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(PersistenceError):
            JsonFileStore(blocker / "ratelimit.json").save(RULES, "0:60:0")


class TestFromSettings:
    """Tests for building a limiter from settings."""

    def test_restores_from_configured_file(self, tmp_path, clock):
        path = tmp_path / "ratelimit.json"
        JsonFileStore(path, clock=clock).save("5:60:60", "5:60:30")
        clock.advance(10)

        config = Settings(_env_file=None, rate_limit_state_file=path, rate_limit_default_rules="5:60:60")
        limiter = RateLimiter.from_settings(config, clock=clock)

        assert limiter.states[0].remaining == 0
        assert limiter.can_request().retry_after == 20

        limiter.update_state_from_header("1:60:25")
        assert json.loads(path.read_text())["state"] == "1:60:25"

    def test_without_state_file(self, clock):
        config = Settings(_env_file=None, rate_limit_default_rules="3:10:60")
        limiter = RateLimiter.from_settings(config, clock=clock)

        assert [s.remaining for s in limiter.states] == [3]
        assert limiter.restore() is False
