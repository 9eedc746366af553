import logging
import os
from pathlib import Path
from typing import BinaryIO

log = logging.getLogger(__name__)


class BlobStorageError(Exception):
    pass


class LocalStorage:
    """Blob store laid out as ``<root>/<user_id>/<file_id>.bin``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @staticmethod
    def key_for(user_id: str, file_id: str) -> str:
        return f"{user_id}/{file_id}.bin"

    def path(self, key: str) -> Path:
        return self.root / key

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def ensure_user_dir(self, user_id: str) -> Path:
        user_dir = self.root / user_id
        try:
            user_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BlobStorageError(f"cannot create {user_dir}") from e
        return user_dir

    def open_for_write(self, key: str) -> BinaryIO:
        full_path = self.path(key)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            return open(full_path, "xb")
        except OSError as e:
            raise BlobStorageError(f"cannot create {full_path}") from e

    @staticmethod
    def commit(handle: BinaryIO) -> None:
        # data must be on stable storage before the row is recorded
        try:
            handle.flush()
            os.fsync(handle.fileno())
        except OSError as e:
            raise BlobStorageError("flush failed") from e
        finally:
            handle.close()

    def exists(self, key: str) -> bool:
        return self.path(key).is_file()

    def delete(self, key: str) -> None:
        full_path = self.path(key)
        try:
            full_path.unlink()
        except FileNotFoundError:
            log.warning("Blob %s already missing", key)
        except OSError as e:
            raise BlobStorageError(f"cannot remove {full_path}") from e

    def discard(self, key: str) -> None:
        """Best-effort removal of a partial or orphaned blob."""
        try:
            self.path(key).unlink(missing_ok=True)
        except OSError:
            log.exception("Failed to remove blob %s; it needs manual cleanup", key)
