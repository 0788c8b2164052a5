"""Visibility targets and the masking configuration snapshot.

// [LAW:one-source-of-truth] Visibility string values live on the enum.

This module is STABLE. Safe for `from` imports everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class Visibility(Enum):
    """Status presented to the chat server on the user's behalf."""

    CHAT = "chat"
    OFFLINE = "offline"
    MOBILE = "mobile"

    @classmethod
    def parse(cls, value: object) -> "Visibility":
        """Parse a user-facing name. "online" is an alias for chat."""
        raw = str(value or "").strip().lower()
        if raw == "online":
            return cls.CHAT
        return cls(raw)


@dataclass(frozen=True)
class MaskingConfig:
    """Immutable masking snapshot. Pumps read one per chunk."""

    enabled: bool = True
    visibility: Visibility = Visibility.OFFLINE
    relay_lobby_chat: bool = True

    @property
    def target(self) -> Visibility:
        """Effective rewrite target. Disabled masking always means chat."""
        if not self.enabled:
            return Visibility.CHAT
        return self.visibility

    def with_changes(self, **changes) -> "MaskingConfig":
        return replace(self, **changes)
