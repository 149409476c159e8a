"""LNURL-pay metadata construction.

The metadata array served at discovery time is hashed once per identity and
the digest is embedded in every invoice issued for that identity. Wallets
recompute the hash over the exact `metadata` string they received, so the
string is serialized once here and never rebuilt.
"""

from __future__ import annotations

import base64
import hashlib
import io
import json

from PIL import Image, UnidentifiedImageError

from ..domain.entities import LnurlMetadata
from ..domain.errors import InvalidIconError

IDENTIFIER_TYPE = "text/identifier"
PLAIN_TEXT_TYPE = "text/plain"
PNG_BASE64_TYPE = "image/png;base64"

# Modes Pillow can write as PNG without conversion
PNG_MODES = frozenset({"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"})


def encode_icon_png_base64(icon_bytes: bytes) -> str:
    """Decode an image in any format Pillow reads and return it as base64 PNG.

    Raises:
        InvalidIconError: If the bytes are not a decodable image.
    """
    out = io.BytesIO()
    try:
        with Image.open(io.BytesIO(icon_bytes)) as image:
            image.load()
            if image.mode not in PNG_MODES:
                image = image.convert("RGBA")
            image.save(out, format="PNG")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise InvalidIconError(f"invalid icon_file content: {e}") from e
    return base64.b64encode(out.getvalue()).decode("ascii")


def metadata_array_json(identifier: str, short_description: str, png_base64: str) -> str:
    """Serialize the metadata array in its canonical compact form."""
    array = [
        [IDENTIFIER_TYPE, identifier],
        [PLAIN_TEXT_TYPE, short_description],
        [PNG_BASE64_TYPE, png_base64],
    ]
    return json.dumps(array, separators=(",", ":"), ensure_ascii=False)


def build_metadata_from_png_base64(
    identifier: str, short_description: str, png_base64: str
) -> LnurlMetadata:
    metadata = metadata_array_json(identifier, short_description, png_base64)
    description_hash = hashlib.sha256(metadata.encode("utf-8")).digest()
    return LnurlMetadata(metadata=metadata, description_hash=description_hash)


def build_metadata(
    identifier: str, short_description: str, icon_bytes: bytes
) -> LnurlMetadata:
    """Build the metadata array for `identifier` and hash its bytes.

    Args:
        identifier: Lightning address, e.g. ``alice@example.com``
        short_description: Text shown to the payer
        icon_bytes: Raw image bytes; re-encoded to PNG

    Returns:
        The metadata string together with its SHA-256 digest

    Raises:
        InvalidIconError: If the icon does not decode as an image.
    """
    return build_metadata_from_png_base64(
        identifier, short_description, encode_icon_png_base64(icon_bytes)
    )
