"""Filesystem object store for rendered exports."""

from __future__ import annotations

from pathlib import Path

from app.adapters.base import BaseObjectStore


class FilesystemObjectStore(BaseObjectStore):
    """Writes objects under root_dir and serves them from base_url."""

    def __init__(self, root_dir: str, base_url: str) -> None:
        self._root = Path(root_dir)
        self._base_url = base_url.rstrip("/")

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise ValueError(f"Invalid object key: {key}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return f"{self._base_url}/{key}"
