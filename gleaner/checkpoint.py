"""Durable JSON checkpoints on the local filesystem.

Each checkpoint is a named JSON document below a root directory. Loading a
missing or unreadable checkpoint yields the caller's default; saving writes
to a temporary file in the same directory and renames it over the target,
so a crash mid-write leaves the previous version in place.

There is exactly one writer per checkpoint name per run and concurrent runs
against the same directory are unsupported, so no locking is done.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from gleaner.common.exceptions import CheckpointIOError

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Key -> JSON document store rooted at a directory.

    Example:
        store = CheckpointStore(Path("data"))
        slugs = store.load("scraped_app_slugs.json", [])
        store.save("scraped_app_slugs.json", [*slugs, "printful"])
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path(self, name: str) -> Path:
        """Resolve a checkpoint name to a file path below the root.

        Raises:
            CheckpointIOError: If the name escapes the root directory.
        """
        root = self.root.resolve()
        candidate = (root / name).resolve()
        if candidate != root and root not in candidate.parents:
            raise CheckpointIOError(candidate, "name resolves outside the data directory")
        if candidate == root:
            raise CheckpointIOError(candidate, "empty checkpoint name")
        return candidate

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    def load(self, name: str, default: Any = None) -> Any:
        """Load a checkpoint.

        Args:
            name: Checkpoint name, relative to the root.
            default: Value returned when the checkpoint is absent or cannot
                be parsed.

        Returns:
            The decoded JSON value, or ``default``.
        """
        file_path = self.path(name)
        if not file_path.is_file():
            return default

        try:
            with file_path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(
                f"Ignoring unreadable checkpoint {file_path}: {e}"
            )
            return default

    def save(self, name: str, value: Any) -> Path:
        """Serialize ``value`` and atomically replace the checkpoint.

        Returns:
            Path of the written checkpoint.

        Raises:
            CheckpointIOError: If serialization or any filesystem step fails.
        """
        file_path = self.path(name)
        try:
            payload = json.dumps(value, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise CheckpointIOError(file_path, f"value is not JSON serializable: {e}") from e

        tmp_name: str | None = None
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=file_path.parent,
                prefix=f".{file_path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, file_path)
            tmp_name = None
        except OSError as e:
            raise CheckpointIOError(file_path, f"write failed: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.debug(f"Saved checkpoint {file_path}")
        return file_path
