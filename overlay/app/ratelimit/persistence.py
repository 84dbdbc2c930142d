"""Persistence stores for rate limit state.

Provides a pluggable store interface so the limiter can survive restarts,
with in-memory and JSON file implementations. Stores receive the encoded
wire-format headers; the limiter rebuilds its state from them with
``RateLimiter.load_from_storage``.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from overlay.app.core.logging import get_logger
from overlay.app.core.utils import now_ms
from overlay.app.exceptions import PersistenceError
from overlay.app.ratelimit.models import StoredSnapshot

logger = get_logger(__name__)


class PersistenceStore(ABC):
    """Abstract base class for rate limit persistence stores."""

    @abstractmethod
    def save(self, rules: str, state: str) -> None:
        """Store the latest rules and state.

        Args:
            rules: Encoded ``max:window:penalty,...`` header
            state: Encoded ``used:window:reset,...`` header

        Raises:
            PersistenceError: If the snapshot cannot be written.
        """
        pass

    @abstractmethod
    def load(self) -> Optional[StoredSnapshot]:
        """Return the last saved snapshot, or None if nothing was saved.

        Raises:
            PersistenceError: If a snapshot exists but cannot be read.
        """
        pass


class InMemoryStore(PersistenceStore):
    """Keeps the last snapshot in memory.

    Note: data is lost when the process exits.
    """

    def __init__(self, clock: Callable[[], float] = now_ms) -> None:
        self._clock = clock
        self._snapshot: Optional[StoredSnapshot] = None
        self.save_count = 0

    def save(self, rules: str, state: str) -> None:
        self._snapshot = StoredSnapshot(rules=rules, state=state, saved_at=self._clock())
        self.save_count += 1

    def load(self) -> Optional[StoredSnapshot]:
        return self._snapshot


class JsonFileStore(PersistenceStore):
    """Stores the snapshot as a small JSON document on disk.

    The file is replaced atomically so a crash mid-write never leaves a
    truncated snapshot behind.
    """

    def __init__(self, path: Path | str, clock: Callable[[], float] = now_ms) -> None:
        self.path = Path(path)
        self._clock = clock

    def save(self, rules: str, state: str) -> None:
        payload = {"rules": rules, "state": state, "saved_at": self._clock()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write rate limit state to {self.path}: {e}") from e

        logger.debug(f"Saved rate limit state to {self.path}")

    def load(self) -> Optional[StoredSnapshot]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read rate limit state from {self.path}: {e}") from e

        try:
            data = json.loads(raw)
            return StoredSnapshot(
                rules=str(data["rules"]),
                state=str(data["state"]),
                saved_at=float(data["saved_at"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt rate limit state in {self.path}: {e}") from e
