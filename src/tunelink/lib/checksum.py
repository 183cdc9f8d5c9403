"""Idempotency keys for conversion requests."""

import hashlib
import secrets
import string
from collections.abc import Iterable

from tunelink.models.enums import Platform

_SHORT_ID_ALPHABET = string.ascii_letters + string.digits
_SHORT_ID_LENGTH = 10


def conversion_checksum(
    source_platform: Platform,
    entity_id: str,
    targets: Iterable[Platform],
    app_id: str | None,
) -> str:
    """Derive the idempotency key for a conversion request.

    The key only depends on the set of targets, not their order, so two
    requests naming the same platforms in a different order share a key.

    Args:
        source_platform: Platform of the source entity.
        entity_id: Source entity ID.
        targets: Target platforms of the conversion.
        app_id: Owning app ID, or None for anonymous conversions.

    Returns:
        Hex-encoded SHA-256 digest.
    """
    target_part = ",".join(sorted({str(p) for p in targets}))
    material = "|".join((str(source_platform), entity_id, target_part, app_id or ""))
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def short_id(length: int = _SHORT_ID_LENGTH) -> str:
    """Generate a random URL-safe identifier for short links."""
    return "".join(secrets.choice(_SHORT_ID_ALPHABET) for _ in range(length))
