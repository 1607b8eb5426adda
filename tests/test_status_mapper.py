"""
Tests for the provider status mapping.

Every known Twilio status token is listed so a change to the mapping table
shows up here.
"""

import pytest

from smschat.status_mapper import (
    INTERNAL_STATUSES,
    PROVIDER_STATUS_MAP,
    can_transition,
    is_terminal,
    map_provider_status,
)


KNOWN_TOKENS = {
    "queued": "sending",
    "sending": "sending",
    "sent": "sent",
    "delivered": "delivered",
    "failed": "failed",
    "undelivered": "failed",
}


class TestKnownStatuses:

    @pytest.mark.parametrize("provider_status,expected", sorted(KNOWN_TOKENS.items()))
    def test_known_token(self, provider_status, expected):
        assert map_provider_status(provider_status) == expected

    def test_table_has_no_extra_tokens(self):
        assert PROVIDER_STATUS_MAP == KNOWN_TOKENS

    def test_every_target_is_an_internal_status(self):
        assert set(PROVIDER_STATUS_MAP.values()) <= set(INTERNAL_STATUSES)


class TestFallback:

    @pytest.mark.parametrize("provider_status", ["accepted", "scheduled", "read", "receiving", "", "DELIVERED", " sent"])
    def test_unknown_token_maps_to_sent(self, provider_status):
        assert map_provider_status(provider_status) == "sent"

    def test_deterministic(self):
        assert map_provider_status("canceled") == map_provider_status("canceled")


def test_terminal_statuses():
    assert is_terminal("delivered")
    assert is_terminal("failed")
    assert not is_terminal("sending")
    assert not is_terminal("sent")


class TestTransitions:

    @pytest.mark.parametrize("current", ["sent", "delivered", "failed"])
    def test_never_back_to_sending(self, current):
        assert not can_transition(current, "sending")

    @pytest.mark.parametrize("current,new", [
        ("sending", "sent"),
        ("sending", "delivered"),
        ("sending", "failed"),
        ("sent", "delivered"),
        ("sent", "failed"),
    ])
    def test_forward_moves_allowed(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize("status", INTERNAL_STATUSES)
    def test_same_status_is_not_a_transition(self, status):
        assert not can_transition(status, status)
