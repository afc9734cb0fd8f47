"""In-memory store of generated projects awaiting download.

Every artifact carries an ``expires_at`` timestamp.  Expiry is logical: an
expired artifact is reported as missing the moment it is read, whether or
not the background sweeper has removed it yet.  The sweeper only bounds
memory.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from forge.blueprints.models import Hook
from forge.errors import ArtifactNotFound, DuplicateGeneration
from forge.scaffolder.generator import GenerationResult
from forge.scaffolder.templates import RenderedFile

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GenerationArtifact(BaseModel):
    """A finished generation held for later download."""
    model_config = ConfigDict(frozen=True)

    id: str
    blueprint_id: str
    project_name: str = Field(default="")
    files: tuple[RenderedFile, ...] = Field(default=())
    archive: bytes = Field(default=b"", description="ZIP of all files")
    created_at: datetime
    expires_at: datetime
    config: dict[str, Any] = Field(default_factory=dict)
    hooks: tuple[Hook, ...] = Field(default=())
    generation_time: float = Field(default=0.0)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)


class SessionStore:
    """Thread-safe map of generation id to artifact with TTL expiry.

    The lock guards only the dict; rendering and packaging happen before
    ``put`` and never under the lock.
    """

    def __init__(
        self,
        ttl: timedelta | float = timedelta(hours=24),
        sweep_interval: timedelta | float = timedelta(hours=1),
        clock: Clock = utc_now,
    ) -> None:
        self.ttl = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
        self.sweep_interval = (
            sweep_interval.total_seconds()
            if isinstance(sweep_interval, timedelta)
            else float(sweep_interval)
        )
        self.clock = clock
        self._artifacts: dict[str, GenerationArtifact] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    # -- Artifacts ---------------------------------------------------------

    def new_artifact(
        self, generation_id: str, result: GenerationResult, archive: bytes
    ) -> GenerationArtifact:
        """Build an artifact for *result* stamped with this store's clock and TTL."""
        created = self.clock()
        return GenerationArtifact(
            id=generation_id,
            blueprint_id=result.blueprint_id,
            project_name=result.project_name,
            files=result.files,
            archive=archive,
            created_at=created,
            expires_at=created + self.ttl,
            config=dict(result.config),
            hooks=result.hooks,
            generation_time=result.generation_time,
        )

    def put(self, artifact: GenerationArtifact) -> str:
        """Store *artifact* under its id.

        Raises:
            DuplicateGeneration: The id is already in use by a live artifact.
        """
        with self._lock:
            existing = self._artifacts.get(artifact.id)
            if existing is not None and not existing.is_expired(self.clock()):
                raise DuplicateGeneration(artifact.id)
            self._artifacts[artifact.id] = artifact
        logger.debug("Stored %s (expires %s)", artifact.id, artifact.expires_at.isoformat())
        return artifact.id

    def get(self, generation_id: str) -> GenerationArtifact:
        """Return the live artifact for *generation_id*.

        Raises:
            ArtifactNotFound: Unknown, deleted, or expired.
        """
        now = self.clock()
        with self._lock:
            artifact = self._artifacts.get(generation_id)
            if artifact is not None and artifact.is_expired(now):
                del self._artifacts[generation_id]
                artifact = None
        if artifact is None:
            raise ArtifactNotFound(generation_id)
        return artifact

    def delete(self, generation_id: str) -> bool:
        """Remove an artifact; return whether a live one was removed."""
        now = self.clock()
        with self._lock:
            artifact = self._artifacts.pop(generation_id, None)
        return artifact is not None and not artifact.is_expired(now)

    def sweep(self) -> int:
        """Drop every expired artifact; return how many were removed."""
        now = self.clock()
        with self._lock:
            expired = [k for k, a in self._artifacts.items() if a.is_expired(now)]
            for key in expired:
                del self._artifacts[key]
        if expired:
            logger.info("Swept %d expired generation(s)", len(expired))
        return len(expired)

    def ids(self) -> list[str]:
        """Ids of live artifacts."""
        now = self.clock()
        with self._lock:
            return sorted(k for k, a in self._artifacts.items() if not a.is_expired(now))

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)

    def __contains__(self, generation_id: object) -> bool:
        if not isinstance(generation_id, str):
            return False
        try:
            self.get(generation_id)
        except ArtifactNotFound:
            return False
        return True

    # -- Background sweeper ------------------------------------------------

    def start(self) -> None:
        """Start the sweeper thread (no-op if already running)."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper, name="forge-session-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.debug("Session sweeper started (every %.0fs)", self.sweep_interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the sweeper to exit and wait for it."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            self.sweep()

    def __enter__(self) -> "SessionStore":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
