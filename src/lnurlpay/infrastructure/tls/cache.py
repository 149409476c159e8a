from __future__ import annotations

import os
import tempfile
from typing import Optional


class DirCache:
    """Stores certificate material as files in a directory, keyed by name.

    Certificates are keyed by domain name; the ACME account key uses
    ACCOUNT_KEY_NAME. The directory is created with mode 0700 and every entry
    is written atomically with mode 0600.
    """

    ACCOUNT_KEY_NAME = "acme_account+key"

    def __init__(self, directory: str) -> None:
        self.directory = directory

    def path(self, name: str) -> str:
        if not name or "/" in name or os.sep in name or name in (".", ".."):
            raise ValueError(f"invalid cache key: {name!r}")
        return os.path.join(self.directory, name)

    def get(self, name: str) -> Optional[bytes]:
        try:
            with open(self.path(name), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def put(self, name: str, data: bytes) -> None:
        os.makedirs(self.directory, mode=0o700, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path(name))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def delete(self, name: str) -> None:
        try:
            os.remove(self.path(name))
        except FileNotFoundError:
            pass
