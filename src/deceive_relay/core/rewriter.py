"""Presence masking rules.

// [LAW:dataflow-not-control-flow] rewrite_presence is a pure function of (bytes, target, flags).
// [LAW:one-source-of-truth] Game block paths are defined once, below.

The relay owns caching and writing; this module only turns one raw
client→server chunk into the bytes that should reach the server.
"""

from __future__ import annotations

import base64
import json
import logging
import threading

from deceive_relay.core.stanza import Element, parse_fragment, serialize_fragment
from deceive_relay.core.visibility import Visibility

logger = logging.getLogger(__name__)

PRESENCE_TAG = "presence"
ROUTING_ATTR = "to"
DO_NOT_DISTURB = "dnd"

SHOW = ("show",)
STATUS = ("status",)
GAMES = ("games",)
LEAGUE = ("games", "league_of_legends")
LEAGUE_STATUS = LEAGUE + ("st",)
# Rank and party fields; without them a League block still reads as "on mobile".
LEAGUE_MOBILE_STRIPPED = ("p", "m")
RUNETERRA = ("games", "bacon")
VALORANT = ("games", "valorant")
VALORANT_PAYLOAD = VALORANT + ("p",)
VALORANT_VERSION_KEY = "partyClientVersion"


class VersionCapture:
    """Write-once holder for the game version scraped from VALORANT presence."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: str | None = None

    @property
    def value(self) -> str | None:
        return self._value

    @property
    def captured(self) -> bool:
        return self._value is not None

    def offer(self, value: str) -> bool:
        """Store *value* if nothing is captured yet. Returns True if stored."""
        with self._lock:
            if self._value is not None:
                return False
            self._value = value
            return True


def decode_valorant_version(payload: str) -> str | None:
    """Extract partyClientVersion from a base64-encoded JSON presence payload.

    Raises:
        ValueError: on invalid base64, UTF-8 or JSON (binascii.Error and
            json.JSONDecodeError are both ValueError subclasses).
    """
    decoded = base64.b64decode(payload.strip(), validate=True).decode("utf-8")
    data = json.loads(decoded)
    if not isinstance(data, dict):
        return None
    version = data.get(VALORANT_VERSION_KEY)
    return version if isinstance(version, str) else None


def _capture_version(presence: Element, version: VersionCapture) -> None:
    if version.captured:
        return
    node = presence.find(*VALORANT_PAYLOAD)
    if node is None:
        return
    try:
        found = decode_valorant_version(node.text)
    except ValueError as exc:
        logger.warning("could not decode VALORANT presence payload: %s", exc)
        return
    if found is not None and version.offer(found):
        logger.info("Found VALORANT version: %s", found)


def mask_presence(presence: Element, target: Visibility, version: VersionCapture) -> None:
    """Apply masking rules for *target* to one un-routed presence element, in place."""
    league_status = presence.find(*LEAGUE_STATUS)
    # In-game "do not disturb" is never downgraded to online.
    keep_dnd = (
        target is Visibility.CHAT
        and league_status is not None
        and league_status.text == DO_NOT_DISTURB
    )
    if not keep_dnd:
        for path in (SHOW, LEAGUE_STATUS):
            node = presence.find(*path)
            if node is not None:
                node.set_text(target.value)

    games_touched = False
    if target is not Visibility.CHAT:
        presence.remove(*STATUS)
        if target is Visibility.MOBILE:
            for tag in LEAGUE_MOBILE_STRIPPED:
                presence.remove(*LEAGUE, tag)
        else:
            games_touched |= presence.remove(*LEAGUE)

    games_touched |= presence.remove(*RUNETERRA)
    _capture_version(presence, version)
    games_touched |= presence.remove(*VALORANT)

    games = presence.find(*GAMES)
    if games_touched and games is not None and not games.elements():
        presence.remove_child(games)


def rewrite_presence(
    raw: bytes,
    target: Visibility,
    *,
    relay_lobby_chat: bool,
    version: VersionCapture,
) -> bytes | None:
    """Rewrite every presence stanza in *raw*.

    Returns the serialized fragment, or None when the chunk holds no elements.
    An empty bytes result means every element was dropped.

    Raises:
        MalformedStanzaError: if *raw* is not a well-formed fragment.
    """
    elements = parse_fragment(raw)
    if not elements:
        return None

    kept: list[Element] = []
    for element in elements:
        if element.tag != PRESENCE_TAG:
            kept.append(element)
            continue
        if ROUTING_ATTR in element.attrs:
            # Lobby/MUC presence: untouched when relayed, otherwise dropped.
            if relay_lobby_chat:
                kept.append(element)
            continue
        mask_presence(element, target, version)
        kept.append(element)
    return serialize_fragment(kept)
