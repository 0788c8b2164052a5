"""Tests for visibility parsing and masking config snapshots."""

import dataclasses

import pytest

from deceive_relay.core.visibility import MaskingConfig, Visibility


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("chat", Visibility.CHAT),
        ("online", Visibility.CHAT),
        (" Offline ", Visibility.OFFLINE),
        ("MOBILE", Visibility.MOBILE),
    ],
)
def test_parse(raw, expected):
    assert Visibility.parse(raw) is expected


def test_parse_unknown_raises():
    with pytest.raises(ValueError):
        Visibility.parse("away")


def test_defaults():
    config = MaskingConfig()
    assert config.enabled is True
    assert config.visibility is Visibility.OFFLINE
    assert config.relay_lobby_chat is True
    assert config.target is Visibility.OFFLINE


def test_disabled_target_is_chat():
    config = MaskingConfig(enabled=False, visibility=Visibility.MOBILE)
    assert config.target is Visibility.CHAT
    assert config.visibility is Visibility.MOBILE


def test_with_changes_returns_new_snapshot():
    config = MaskingConfig()
    changed = config.with_changes(visibility=Visibility.MOBILE)
    assert changed.target is Visibility.MOBILE
    assert config.visibility is Visibility.OFFLINE
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.enabled = False
