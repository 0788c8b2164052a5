"""Tests for presence masking rules."""

import logging

import pytest

from deceive_relay.core.rewriter import (
    VersionCapture,
    decode_valorant_version,
    rewrite_presence,
)
from deceive_relay.core.stanza import MalformedStanzaError, parse_fragment
from deceive_relay.core.visibility import Visibility

VERSION_A = "release-09.00-shipping-12-2581216"
PAYLOAD_A = (
    "eyJpc1ZhbGlkIjp0cnVlLCJwYXJ0eUNsaWVudFZlcnNpb24iOiJyZWxlYXNlLTA5LjAwLXNoaXBwaW5nLTEy"
    "LTI1ODEyMTYifQ=="
)
VERSION_B = "release-09.01-shipping-7-2602117"
PAYLOAD_B = "eyJwYXJ0eUNsaWVudFZlcnNpb24iOiJyZWxlYXNlLTA5LjAxLXNoaXBwaW5nLTctMjYwMjExNyJ9"
PAYLOAD_NOT_OBJECT = "WyJub3QiLCJhbiIsIm9iamVjdCJd"
PAYLOAD_TRUNCATED_JSON = "eyJwYXJ0eUNsaWVudFZlcnNpb24iOg=="

SIMPLE = (
    b"<presence><show>chat</show><games><league_of_legends><st>chat</st>"
    b"</league_of_legends></games></presence>"
)


def full_presence(st="chat", payload=PAYLOAD_A):
    return (
        "<presence id='p1'>"
        "<show>chat</show>"
        "<status>grinding ranked</status>"
        "<games>"
        f"<league_of_legends><st>{st}</st><s.p>league</s.p><p>rank-data</p><m>party-data</m></league_of_legends>"
        "<bacon><st>chat</st><p>lor-data</p></bacon>"
        f"<valorant><st>chat</st><p>{payload}</p></valorant>"
        "<keystone><st>chat</st></keystone>"
        "</games>"
        "</presence>"
    ).encode("utf-8")


def rewrite(raw, target, *, lobby=True, version=None):
    return rewrite_presence(
        raw,
        target,
        relay_lobby_chat=lobby,
        version=version if version is not None else VersionCapture(),
    )


def parse_one(raw):
    [element] = parse_fragment(raw)
    return element


# ─── Example scenarios ──────────────────────────────────────────────────────


class TestExamples:
    def test_offline_example(self):
        assert rewrite(SIMPLE, Visibility.OFFLINE) == b"<presence><show>offline</show></presence>"

    def test_mobile_example(self):
        assert rewrite(SIMPLE, Visibility.MOBILE) == (
            b"<presence><show>mobile</show><games><league_of_legends><st>mobile</st>"
            b"</league_of_legends></games></presence>"
        )

    def test_chat_example(self):
        assert rewrite(SIMPLE, Visibility.CHAT) == SIMPLE


# ─── Per-target rules ───────────────────────────────────────────────────────


class TestOffline:
    def test_strips_everything_but_show(self):
        out = parse_one(rewrite(full_presence(), Visibility.OFFLINE))
        assert out.find("show").text == "offline"
        assert out.find("status") is None
        assert out.find("games", "league_of_legends") is None
        assert out.find("games", "bacon") is None
        assert out.find("games", "valorant") is None

    def test_unrelated_game_blocks_survive(self):
        out = parse_one(rewrite(full_presence(), Visibility.OFFLINE))
        assert out.find("games", "keystone", "st").text == "chat"

    def test_dnd_is_overwritten_when_masking(self):
        out = parse_one(rewrite(full_presence(st="dnd"), Visibility.OFFLINE))
        assert out.find("show").text == "offline"

    def test_attributes_kept(self):
        out = parse_one(rewrite(full_presence(), Visibility.OFFLINE))
        assert out.attrs == {"id": "p1"}


class TestMobile:
    def test_league_block_kept_without_rank_and_party(self):
        out = parse_one(rewrite(full_presence(), Visibility.MOBILE))
        league = out.find("games", "league_of_legends")
        assert league is not None
        assert league.find("st").text == "mobile"
        assert league.find("s.p").text == "league"
        assert league.find("p") is None
        assert league.find("m") is None

    def test_status_and_other_games_removed(self):
        out = parse_one(rewrite(full_presence(), Visibility.MOBILE))
        assert out.find("show").text == "mobile"
        assert out.find("status") is None
        assert out.find("games", "bacon") is None
        assert out.find("games", "valorant") is None


class TestChat:
    def test_sets_chat_and_keeps_status_and_league(self):
        raw = full_presence().replace(b"<show>chat</show>", b"<show>away</show>")
        out = parse_one(rewrite(raw, Visibility.CHAT))
        assert out.find("show").text == "chat"
        assert out.find("status").text == "grinding ranked"
        league = out.find("games", "league_of_legends")
        assert league.find("p").text == "rank-data"
        assert league.find("m").text == "party-data"

    def test_dnd_is_never_downgraded(self):
        raw = full_presence(st="dnd").replace(b"<show>chat</show>", b"<show>dnd</show>")
        out = parse_one(rewrite(raw, Visibility.CHAT))
        assert out.find("show").text == "dnd"
        assert out.find("games", "league_of_legends", "st").text == "dnd"

    def test_other_card_game_and_valorant_still_removed(self):
        out = parse_one(rewrite(full_presence(), Visibility.CHAT))
        assert out.find("games", "bacon") is None
        assert out.find("games", "valorant") is None
        assert out.find("games", "keystone") is not None


# ─── Routed (lobby/MUC) presence ────────────────────────────────────────────


class TestRoutedPresence:
    ROUTED = b"<presence to='lobby@champ-select.eu1.pvp.net/abc'><show>chat</show><x xmlns='muc'/></presence>"

    @pytest.mark.parametrize("target", list(Visibility))
    def test_dropped_when_lobby_relay_disabled(self, target):
        assert rewrite(self.ROUTED, target, lobby=False) == b""

    @pytest.mark.parametrize("target", list(Visibility))
    def test_byte_identical_when_lobby_relay_enabled(self, target):
        assert rewrite(self.ROUTED, target, lobby=True) == self.ROUTED

    def test_only_routed_sibling_is_dropped(self):
        out = rewrite(self.ROUTED + SIMPLE, Visibility.OFFLINE, lobby=False)
        assert out == b"<presence><show>offline</show></presence>"


class TestFragments:
    def test_non_presence_siblings_pass_through(self):
        iq = b"<iq type='get' id='42'><query xmlns='jabber:iq:roster'/></iq>"
        assert rewrite(iq + SIMPLE, Visibility.OFFLINE) == iq + b"<presence><show>offline</show></presence>"

    def test_no_elements_returns_none(self):
        assert rewrite(b"   ", Visibility.OFFLINE) is None

    def test_malformed_raises(self):
        with pytest.raises(MalformedStanzaError):
            rewrite(b"<presence><show>chat</show>", Visibility.OFFLINE)

    def test_presence_without_games(self):
        assert rewrite(b"<presence><show>chat</show></presence>", Visibility.MOBILE) == (
            b"<presence><show>mobile</show></presence>"
        )

    def test_originally_empty_games_is_kept(self):
        raw = b"<presence><show>chat</show><games/></presence>"
        assert rewrite(raw, Visibility.OFFLINE) == b"<presence><show>offline</show><games/></presence>"


# ─── Version capture ────────────────────────────────────────────────────────


class TestVersionCapture:
    def test_decode(self):
        assert decode_valorant_version(PAYLOAD_A) == VERSION_A

    def test_decode_non_object(self):
        assert decode_valorant_version(PAYLOAD_NOT_OBJECT) is None

    @pytest.mark.parametrize("payload", ["!!!not-base64!!!", PAYLOAD_TRUNCATED_JSON])
    def test_decode_invalid_raises_value_error(self, payload):
        with pytest.raises(ValueError):
            decode_valorant_version(payload)

    def test_first_version_is_kept(self):
        version = VersionCapture()
        rewrite(full_presence(payload=PAYLOAD_A), Visibility.OFFLINE, version=version)
        rewrite(full_presence(payload=PAYLOAD_B), Visibility.OFFLINE, version=version)
        assert version.value == VERSION_A

    def test_captured_in_chat_mode_too(self):
        version = VersionCapture()
        rewrite(full_presence(payload=PAYLOAD_B), Visibility.CHAT, version=version)
        assert version.value == VERSION_B

    def test_bad_payload_is_logged_and_block_still_removed(self, caplog):
        version = VersionCapture()
        with caplog.at_level(logging.WARNING, logger="deceive_relay"):
            out = rewrite(full_presence(payload="@@@"), Visibility.MOBILE, version=version)
        assert version.value is None
        assert parse_one(out).find("games", "valorant") is None
        assert "VALORANT" in caplog.text

    def test_later_stanza_can_capture_after_failure(self):
        version = VersionCapture()
        rewrite(full_presence(payload="@@@"), Visibility.OFFLINE, version=version)
        rewrite(full_presence(payload=PAYLOAD_B), Visibility.OFFLINE, version=version)
        assert version.value == VERSION_B

    def test_offer_is_write_once(self):
        version = VersionCapture()
        assert version.offer("a") is True
        assert version.offer("b") is False
        assert version.value == "a"
