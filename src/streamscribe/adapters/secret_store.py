import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_VALID_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileSecretStore:
    """One file per secret in a private directory.

    The directory is created 0700 and every secret file is written 0600.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    def get(self, name: str) -> str | None:
        path = self._path_for(name)
        try:
            value = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return value or None

    def put(self, name: str, secret: str) -> None:
        path = self._path_for(name)
        self._directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self._directory, 0o700)
        tmp_path = path.with_suffix(".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(secret.strip())
        os.replace(tmp_path, path)
        logger.info("Stored secret '%s'", name)

    def delete(self, name: str) -> None:
        try:
            self._path_for(name).unlink()
        except FileNotFoundError:
            return
        logger.info("Deleted secret '%s'", name)

    def _path_for(self, name: str) -> Path:
        if not _VALID_NAME.match(name):
            raise ValueError(f"Invalid secret name: {name!r}")
        return self._directory / name
