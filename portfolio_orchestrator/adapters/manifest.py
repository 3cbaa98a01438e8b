"""
YAML deployment manifest store.

Exposes the manifest consumed by the deployment executor as a key-value
store with dotted keys (e.g. `env.production.databases.DB`).
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Union

import aiofiles  # type: ignore
import yaml

logger = logging.getLogger(__name__)

_MISSING = object()


class YamlManifestStore:
    """Read/modify/write access to a YAML manifest."""

    def __init__(self, path: Union[str, Path]) -> None:
        """
        Load the manifest.

        A missing file starts as an empty manifest and is created on save().

        Args:
            path: Manifest file
        """
        self.path = Path(path)
        self.data: Dict[str, Any] = {}
        self.dirty = False

        # Serializes writes from domains deployed in the same batch
        self._lock = asyncio.Lock()

        if self.path.exists():
            with open(self.path, "r") as f:
                self.data = yaml.safe_load(f) or {}
            logger.debug(f"Loaded manifest {self.path}")

    def _walk(self, key: str, create: bool = False) -> Any:
        parts = key.split(".")
        node: Any = self.data
        for part in parts[:-1]:
            if not isinstance(node, dict):
                return _MISSING
            if part not in node:
                if not create:
                    return _MISSING
                node[part] = {}
            node = node[part]
        return node if isinstance(node, dict) else _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        parent = self._walk(key)
        if parent is _MISSING:
            return default
        return parent.get(key.split(".")[-1], default)

    def set(self, key: str, value: Any) -> None:
        parent = self._walk(key, create=True)
        if parent is _MISSING:
            raise KeyError(f"Cannot set {key}: a parent key is not a mapping")
        parent[key.split(".")[-1]] = value
        self.dirty = True

    def delete(self, key: str) -> None:
        parent = self._walk(key)
        if parent is not _MISSING and key.split(".")[-1] in parent:
            del parent[key.split(".")[-1]]
            self.dirty = True

    async def save(self) -> None:
        """
        Write the manifest atomically if it changed.

        Changes made while a write is in flight mark the store dirty again and
        are picked up by the next save.
        """
        async with self._lock:
            if not self.dirty:
                return
            content = yaml.safe_dump(self.data, default_flow_style=False, sort_keys=False)
            self.dirty = False

            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex[:8]}.tmp")
            try:
                async with aiofiles.open(temp_file, "w") as f:
                    await f.write(content)
                temp_file.replace(self.path)
            except Exception:
                self.dirty = True
                temp_file.unlink(missing_ok=True)
                raise

        logger.debug(f"Saved manifest {self.path}")
