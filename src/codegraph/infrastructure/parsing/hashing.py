"""Hashing utilities for content-addressed identifiers."""

from __future__ import annotations

import hashlib


def compute_content_hash(content: str) -> str:
    """Compute a SHA-256 hex digest of *content*."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def content_address(*parts: object, prefix: str = "", length: int = 16) -> str:
    """Stable id derived from *parts*.

    Re-running extraction on identical input yields identical ids.
    """
    digest = compute_content_hash("|".join("" if p is None else str(p) for p in parts))
    short = digest[:length]
    return f"{prefix}:{short}" if prefix else short
