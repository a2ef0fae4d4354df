"""Tests for the coordination layer: checkpoints and conditions."""

import json

import pytest

from trialflow.control.retry import RetryConfig
from trialflow.coordination.checkpoint import (
    CheckpointStore,
    FileCheckpointStorage,
    InMemoryCheckpointStorage,
    checkpoint_key,
)
from trialflow.coordination.conditions import ConditionCache
from trialflow.exceptions import CheckpointError
from trialflow.types import Checkpoint

from conftest import FakeRemote, no_sleep


def make_store(remote=None, local=None) -> CheckpointStore:
    return CheckpointStore(remote=remote, local=local or InMemoryCheckpointStorage(), sleep_fn=no_sleep)


# =============================================================================
# Local storage
# =============================================================================


class TestInMemoryCheckpointStorage:
    """Tests for InMemoryCheckpointStorage."""

    def test_save_load_delete(self):
        storage = InMemoryCheckpointStorage()
        storage.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=3))
        assert storage.load("p", "e").completed_index == 3
        assert storage.exists("p", "e")
        assert storage.delete("p", "e")
        assert storage.load("p", "e") is None
        assert not storage.delete("p", "e")

    def test_overwrite(self):
        """Test that a newer checkpoint supersedes the old one."""
        storage = InMemoryCheckpointStorage()
        storage.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=1))
        storage.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=4))
        assert storage.load("p", "e").completed_index == 4

    def test_pairs_are_independent(self):
        storage = InMemoryCheckpointStorage()
        storage.save(Checkpoint(participant_id="p1", experiment_id="e", completed_index=1))
        assert storage.load("p2", "e") is None


class TestFileCheckpointStorage:
    """Tests for FileCheckpointStorage."""

    def test_persists_across_instances(self, tmp_path):
        FileCheckpointStorage(tmp_path).save(Checkpoint(participant_id="p/1", experiment_id="e:1", completed_index=2))
        loaded = FileCheckpointStorage(tmp_path).load("p/1", "e:1")
        assert loaded.completed_index == 2

    def test_sanitized_single_file(self, tmp_path):
        storage = FileCheckpointStorage(tmp_path)
        storage.save(Checkpoint(participant_id="../p", experiment_id="e", completed_index=0))
        files = list(tmp_path.iterdir())
        assert len(files) == 1
        assert files[0].parent == tmp_path
        assert files[0].suffix == ".json"

    def test_delete(self, tmp_path):
        storage = FileCheckpointStorage(tmp_path)
        storage.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=0))
        assert storage.delete("p", "e")
        assert not storage.exists("p", "e")

    def test_corrupt_file(self, tmp_path):
        storage = FileCheckpointStorage(tmp_path)
        storage.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=0))
        next(tmp_path.glob("*.json")).write_text("{broken")
        with pytest.raises(CheckpointError):
            storage.load("p", "e")

    def test_key_format(self):
        assert checkpoint_key("p", "e") == "trialflow_checkpoint_e_p"


# =============================================================================
# CheckpointStore
# =============================================================================


class TestCheckpointStoreSave:
    """Tests for CheckpointStore.save."""

    @pytest.mark.asyncio
    async def test_remote_success_clears_local(self, remote):
        local = InMemoryCheckpointStorage()
        store = make_store(remote, local)

        assert await store.save("p", "e", 2)
        assert remote.stored[("p", "e")] == 2
        assert local.load("p", "e") is None

    @pytest.mark.asyncio
    async def test_remote_retried(self, remote):
        """Test that transient failures are retried up to three attempts."""
        remote.fail_puts(2)
        store = make_store(remote)
        assert await store.save("p", "e", 1)
        assert remote.put_calls == 3
        assert remote.stored[("p", "e")] == 1

    @pytest.mark.asyncio
    async def test_remote_failure_keeps_local(self, remote, caplog):
        """Test that local data survives a failed remote sync."""
        remote.fail_puts(3)
        local = InMemoryCheckpointStorage()
        store = make_store(remote, local)

        assert await store.save("p", "e", 5)
        assert remote.put_calls == 3
        assert local.load("p", "e").completed_index == 5
        assert "keeping local checkpoint" in caplog.text

    @pytest.mark.asyncio
    async def test_local_only(self):
        local = InMemoryCheckpointStorage()
        store = make_store(local=local)
        assert await store.save("p", "e", 0)
        assert local.load("p", "e").completed_index == 0

    @pytest.mark.asyncio
    async def test_custom_retry_budget(self, remote):
        remote.fail_puts(5)
        store = CheckpointStore(remote=remote, save_retry=RetryConfig(max_attempts=5), sleep_fn=no_sleep)
        await store.save("p", "e", 1)
        assert remote.put_calls == 5


class TestCheckpointStoreLoad:
    """Tests for CheckpointStore.load."""

    @pytest.mark.asyncio
    async def test_round_trip(self, remote):
        store = make_store(remote)
        await store.save("p", "e", 2)
        assert await store.load("p", "e", sequence_length=5) == 2

    @pytest.mark.asyncio
    async def test_out_of_bounds(self, remote):
        """Test that an index beyond the sequence is ignored."""
        store = make_store(remote)
        await store.save("p", "e", 5)
        assert await store.load("p", "e", sequence_length=5) is None

    @pytest.mark.asyncio
    async def test_remote_not_found_falls_back_to_local(self, remote):
        local = InMemoryCheckpointStorage()
        local.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=1))
        store = make_store(remote, local)
        assert await store.load("p", "e", sequence_length=4) == 1

    @pytest.mark.asyncio
    async def test_remote_unavailable_falls_back_to_local(self, remote):
        """Test two load attempts, then the local store."""
        remote.fail_gets(5)
        local = InMemoryCheckpointStorage()
        local.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=3))
        store = make_store(remote, local)

        assert await store.load("p", "e", sequence_length=4) == 3
        assert remote.get_calls == 2

    @pytest.mark.asyncio
    async def test_unauthorized_not_retried(self, remote):
        remote.fail_gets(1, status=401)
        store = make_store(remote)
        assert await store.load("p", "e", sequence_length=4) is None
        assert remote.get_calls == 1

    @pytest.mark.asyncio
    async def test_remote_wins_over_local(self, remote):
        remote.stored[("p", "e")] = 2
        local = InMemoryCheckpointStorage()
        local.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=0))
        store = make_store(remote, local)
        assert await store.load("p", "e", sequence_length=4) == 2

    @pytest.mark.asyncio
    async def test_nothing_stored(self, remote):
        assert await make_store(remote).load("p", "e", sequence_length=4) is None

    @pytest.mark.asyncio
    async def test_corrupt_local_file(self, tmp_path):
        local = FileCheckpointStorage(tmp_path)
        local.save(Checkpoint(participant_id="p", experiment_id="e", completed_index=0))
        next(tmp_path.glob("*.json")).write_text(json.dumps({"completed_index": "x"}))
        assert await make_store(local=local).load("p", "e", sequence_length=3) is None


# =============================================================================
# Conditions
# =============================================================================


class TestConditionCache:
    """Tests for ConditionCache."""

    def test_set_and_get(self):
        cache = ConditionCache()
        cache.set_condition("lighting", "dim")
        assert cache.get("lighting") == "dim"
        assert cache.get("missing") is None
        assert "lighting" in cache

    def test_versioning_and_history(self):
        cache = ConditionCache()
        assert cache.set_condition("a", "1") == 1
        assert cache.set_condition("a", "2", trial_id="t2") == 2
        history = cache.history("a")
        assert [c.value for c in history] == ["1", "2"]
        assert history[1].previous == "1"
        assert history[1].trial_id == "t2"

    def test_snapshot_is_copy(self):
        cache = ConditionCache()
        cache.set_condition("a", "1")
        snapshot = cache.snapshot()
        snapshot["a"] = "changed"
        assert cache.get("a") == "1"

    def test_on_change(self):
        changes = []
        cache = ConditionCache(on_change=lambda name, old, new: changes.append((name, old, new)))
        cache.set_condition("a", "1")
        cache.set_condition("a", "2")
        assert changes == [("a", None, "1"), ("a", "1", "2")]

    def test_clear(self):
        cache = ConditionCache()
        cache.set_condition("a", "1")
        cache.clear()
        assert len(cache) == 0
        assert cache.version == 0
