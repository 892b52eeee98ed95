"""Classify Discogs release formats."""
from __future__ import annotations

from collections.abc import Iterable

VINYL_INDICATORS: tuple[str, ...] = (
    "vinyl",
    "lp",
    '12"',
    '10"',
    '7"',
    "12''",
    "10''",
    "7''",
    "12”",
    "10”",
    "7”",
    "12″",
    "10″",
    "7″",
)


def split_formats(text: str | None) -> list[str]:
    """Split the inventory API's format string (``'12", EP'``) into tokens."""

    if not text:
        return []
    return [token.strip() for token in text.split(",") if token.strip()]


def is_vinyl(formats: Iterable[str]) -> bool:
    """Return ``True`` when any format token indicates vinyl.

    One vinyl token is enough; other tokens such as ``"Box Set"`` or ``"CD"``
    never veto it.
    """

    for token in formats:
        lowered = str(token).strip().lower()
        if any(indicator in lowered for indicator in VINYL_INDICATORS):
            return True
    return False
