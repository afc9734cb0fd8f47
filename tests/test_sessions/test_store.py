"""Tests for the in-memory session store.

Covers:
- put / get / delete
- Logical expiry on read and explicit sweeps
- Background sweeper lifecycle
- Concurrent writers
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest
from pydantic import ValidationError

from forge.errors import ArtifactNotFound, DuplicateGeneration
from forge.scaffolder.generator import GenerationResult
from forge.scaffolder.templates import RenderedFile
from forge.sessions.store import GenerationArtifact, SessionStore

pytestmark = pytest.mark.unit


def _result(blueprint_id: str = "svc") -> GenerationResult:
    return GenerationResult(
        blueprint_id=blueprint_id,
        project_name="demo",
        files=(RenderedFile(path="a.txt", content=b"a"),),
        config={"ProjectName": "demo"},
    )


@pytest.fixture
def store(clock) -> SessionStore:
    return SessionStore(ttl=timedelta(hours=24), sweep_interval=3600, clock=clock)


class TestArtifacts:
    def test_new_artifact_stamps_times(self, store: SessionStore, clock) -> None:
        artifact = store.new_artifact("g1", _result(), b"zip")

        assert artifact.created_at == clock.now
        assert artifact.expires_at == clock.now + timedelta(hours=24)
        assert artifact.project_name == "demo"
        assert artifact.total_size == 1

    def test_put_get_delete(self, store: SessionStore) -> None:
        artifact = store.new_artifact("g1", _result(), b"zip")

        assert store.put(artifact) == "g1"
        assert store.get("g1") is artifact
        assert "g1" in store
        assert store.delete("g1") is True
        assert store.delete("g1") is False
        with pytest.raises(ArtifactNotFound):
            store.get("g1")

    def test_unknown_id(self, store: SessionStore) -> None:
        with pytest.raises(ArtifactNotFound) as exc_info:
            store.get("nope")
        assert exc_info.value.code == "PROJECT_NOT_FOUND"

    def test_duplicate_id_rejected(self, store: SessionStore) -> None:
        store.put(store.new_artifact("g1", _result(), b""))
        with pytest.raises(DuplicateGeneration) as exc_info:
            store.put(store.new_artifact("g1", _result(), b""))
        assert exc_info.value.code == "PROJECT_EXISTS"

    def test_artifact_is_frozen(self, store: SessionStore) -> None:
        artifact = store.new_artifact("g1", _result(), b"")
        with pytest.raises(ValidationError):
            artifact.archive = b"changed"  # type: ignore[misc]


class TestExpiry:
    def test_expired_artifact_is_not_found(self, store: SessionStore, clock) -> None:
        store.put(store.new_artifact("g1", _result(), b"zip"))
        clock.advance(hours=24)

        with pytest.raises(ArtifactNotFound):
            store.get("g1")
        assert len(store) == 0

    def test_expired_id_can_be_reused(self, store: SessionStore, clock) -> None:
        store.put(store.new_artifact("g1", _result(), b""))
        clock.advance(hours=25)
        store.put(store.new_artifact("g1", _result(), b"new"))
        assert store.get("g1").archive == b"new"

    def test_sweep_removes_only_expired(self, store: SessionStore, clock) -> None:
        store.put(store.new_artifact("old", _result(), b""))
        clock.advance(hours=12)
        store.put(store.new_artifact("new", _result(), b""))
        clock.advance(hours=13)

        assert store.ids() == ["new"]
        assert len(store) == 2
        assert store.sweep() == 1
        assert len(store) == 1
        assert store.get("new").id == "new"

    def test_delete_of_expired_reports_false(self, store: SessionStore, clock) -> None:
        store.put(store.new_artifact("g1", _result(), b""))
        clock.advance(days=2)
        assert store.delete("g1") is False


class TestSweeper:
    def test_background_sweep(self, clock) -> None:
        store = SessionStore(ttl=1, sweep_interval=0.01, clock=clock)
        store.put(store.new_artifact("g1", _result(), b""))
        clock.advance(seconds=5)

        with store:
            assert store.running
            deadline = time.monotonic() + 2
            while len(store) and time.monotonic() < deadline:
                time.sleep(0.01)

        assert len(store) == 0
        assert not store.running

    def test_start_is_idempotent(self, store: SessionStore) -> None:
        store.start()
        first = store._sweeper
        store.start()
        assert store._sweeper is first
        store.stop()


class TestConcurrency:
    def test_parallel_puts(self, store: SessionStore) -> None:
        def worker(offset: int) -> None:
            for i in range(50):
                store.put(store.new_artifact(f"g{offset}-{i}", _result(), b""))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store) == 400
        assert isinstance(store.get("g3-49"), GenerationArtifact)
