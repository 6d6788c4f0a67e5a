# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Canonical key construction and fingerprint hashing."""

import hashlib

KEY_SEPARATOR: str = "::"
FINGERPRINT_LENGTH: int = 16


def build_canonical_key(category_id: str, discriminant: str, normalized_text: str) -> str:
    """Build the canonical grouping key.

    Args:
        category_id: Category identifier.
        discriminant: Test name, assertion snippet, or empty string.
        normalized_text: Normalized core text, or empty for assertion grouping.

    Returns:
        ``category_id::discriminant::normalized_text``.
    """
    return KEY_SEPARATOR.join((category_id, discriminant, normalized_text))


def fingerprint(canonical_key: str) -> str:
    """Hash a canonical key into a short stable identifier.

    Args:
        canonical_key: Canonical grouping key.

    Returns:
        First 16 hex characters of the SHA-256 digest of the UTF-8 key.
    """
    digest = hashlib.sha256(canonical_key.encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]
