"""Consecutive-duplicate suppression for device-origin text."""

from __future__ import annotations

from typing import Optional


class DedupPolicy:
    """
    Suppresses a device line identical to the last accepted one.

    The glove repeats the current sign while the hand holds it, so only a
    change of sign is news. Only device-origin text goes through here.
    """

    def __init__(self, allow_duplicates: bool = False):
        self.allow_duplicates = allow_duplicates
        self._last: Optional[str] = None

    @property
    def last(self) -> Optional[str]:
        return self._last

    def is_duplicate(self, text: str) -> bool:
        return not self.allow_duplicates and text == self._last

    def observe(self, text: str) -> None:
        """Record an accepted line."""
        self._last = text

    def reset(self) -> None:
        self._last = None
