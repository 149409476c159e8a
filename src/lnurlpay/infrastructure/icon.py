from __future__ import annotations

from ..domain.errors import InvalidIconError


def load_icon_file(path: str) -> bytes:
    """Read the raw bytes of the configured icon file."""
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise InvalidIconError(f"unable to open icon_file at {path!r}: {e}") from e
