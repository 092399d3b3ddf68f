"""
Durable storage for the engine's state blob (winner history + escrow).

The engine treats storage as an opaque load/save of one serializable
dict. `JsonFileStore` keeps it in a single orjson-encoded file and replaces
the file atomically so a crash mid-write leaves the previous version intact.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import orjson

from app.core.exceptions import PersistenceError
from app.core.logger import get_logger

logger = get_logger("store")


class PersistentStore(ABC):
    @abstractmethod
    def load(self) -> Optional[dict]:
        """Return the saved state, or None when nothing has been saved yet."""

    @abstractmethod
    def save(self, state: dict) -> None:
        """Durably replace the saved state."""


class JsonFileStore(PersistentStore):
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        try:
            data = orjson.loads(self.path.read_bytes())
        except orjson.JSONDecodeError as e:
            # Moved aside for inspection; the next save starts a fresh file
            corrupt_path = self.path.with_name(self.path.name + ".corrupt")
            try:
                os.replace(self.path, corrupt_path)
            except OSError as move_error:
                raise PersistenceError(
                    f"State file {self.path} is corrupt and could not be moved aside: {move_error}"
                ) from move_error
            logger.error(
                f"State file {self.path} is not valid JSON ({e}); "
                f"moved to {corrupt_path} and starting empty"
            )
            return None
        except OSError as e:
            raise PersistenceError(f"Could not read {self.path}: {e}") from e

        if not isinstance(data, dict):
            logger.error(f"State file {self.path} does not hold an object; ignoring it")
            return None
        return data

    def save(self, state: dict) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = orjson.dumps(state, option=orjson.OPT_INDENT_2)
            with open(tmp_path, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, TypeError) as e:
            raise PersistenceError(f"Could not write {self.path}: {e}") from e
