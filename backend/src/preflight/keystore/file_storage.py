"""Local filesystem keystore backend."""

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from preflight.keystore.storage import KeystoreLocation, KeystoreStorage, KeystoreStorageError

logger = logging.getLogger(__name__)


class KeystoreFileStorage(KeystoreStorage):
    """Stores keystores as PKCS#12 files.

    Absolute location keys are used as file paths (operator-configured CA);
    relative keys map to <base_dir>/<key>.p12.
    """

    FILE_SUFFIX = ".p12"

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)

    def path_for(self, location: KeystoreLocation) -> Path:
        """Resolve a location to a file path.

        Raises:
            KeystoreStorageError: If a relative key would escape the base directory.
        """
        candidate = Path(location.key)
        if candidate.is_absolute():
            return candidate
        if len(candidate.parts) != 1 or location.key in (".", ".."):
            raise KeystoreStorageError(f"Unsafe keystore location: {location.key!r}")
        return self._base_dir / f"{location.key}{self.FILE_SUFFIX}"

    async def _load_bytes(self, location: KeystoreLocation) -> bytes | None:
        path = self.path_for(location)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise KeystoreStorageError(f"Could not read keystore file {path}: {e}") from e

    async def _store_bytes(self, location: KeystoreLocation, data: bytes) -> None:
        path = self.path_for(location)
        try:
            await asyncio.to_thread(self._atomic_write, path, data)
        except OSError as e:
            logger.error(
                "keystore_file_write_failed",
                extra={"path": str(path), "error": str(e)},
            )
            raise KeystoreStorageError(f"Could not write keystore file {path}: {e}") from e

    async def _remove(self, location: KeystoreLocation) -> bool:
        path = self.path_for(location)
        try:
            await asyncio.to_thread(path.unlink)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise KeystoreStorageError(f"Could not delete keystore file {path}: {e}") from e

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
