"""Tests for the pending permission ledger."""

from unittest.mock import MagicMock

import pytest

from claude_island.hooks.ledger import PendingPermission, PermissionLedger


@pytest.fixture
def pending(make_event):
    def factory(tool_use_id: str, session_id: str = "session-1", received_at: float = 0.0):
        entry = PendingPermission(
            session_id=session_id,
            tool_use_id=tool_use_id,
            writer=MagicMock(),
            event=make_event(session_id=session_id, tool_use_id=tool_use_id),
        )
        if received_at:
            entry.received_at = received_at
        return entry

    return factory


class TestRegistration:
    def test_add_and_pop(self, pending) -> None:
        ledger = PermissionLedger()
        entry = pending("toolu_1")

        assert ledger.add(entry) == (True, None)
        assert "toolu_1" in ledger
        assert ledger.pop("toolu_1") is entry
        assert ledger.pop("toolu_1") is None
        assert ledger.was_responded("toolu_1")

    def test_responded_id_is_not_registered_again(self, pending) -> None:
        ledger = PermissionLedger()
        ledger.add(pending("toolu_1"))
        ledger.pop("toolu_1")

        accepted, displaced = ledger.add(pending("toolu_1"))

        assert not accepted
        assert displaced is None
        assert len(ledger) == 0

    def test_same_id_displaces_previous_entry(self, pending) -> None:
        ledger = PermissionLedger()
        first = pending("toolu_1")
        second = pending("toolu_1")
        ledger.add(first)

        accepted, displaced = ledger.add(second)

        assert accepted
        assert displaced is first
        assert len(ledger) == 1
        assert ledger.pop("toolu_1") is second


class TestSessionLookups:
    def test_latest_entry_wins(self, pending) -> None:
        ledger = PermissionLedger()
        older = pending("toolu_1", received_at=100.0)
        newer = pending("toolu_2", received_at=200.0)
        ledger.add(newer)
        ledger.add(older)

        assert ledger.get_for_session("session-1") is newer
        assert ledger.pop_latest_for_session("session-1") is newer
        assert ledger.was_responded("toolu_2")
        assert ledger.pop_latest_for_session("session-1") is older
        assert ledger.pop_latest_for_session("session-1") is None

    def test_discard_session_does_not_mark_responded(self, pending) -> None:
        ledger = PermissionLedger()
        ledger.add(pending("toolu_1"))
        ledger.add(pending("toolu_2"))
        ledger.add(pending("toolu_3", session_id="other"))

        removed = ledger.discard_session("session-1")

        assert {entry.tool_use_id for entry in removed} == {"toolu_1", "toolu_2"}
        assert not ledger.has_session("session-1")
        assert ledger.has_session("other")
        assert not ledger.was_responded("toolu_1")

    def test_discard_can_mark_responded(self, pending) -> None:
        ledger = PermissionLedger()
        ledger.add(pending("toolu_1"))

        assert ledger.discard("toolu_1", mark_responded=True) is not None
        assert ledger.was_responded("toolu_1")
        assert ledger.discard("toolu_1") is None

    def test_drain(self, pending) -> None:
        ledger = PermissionLedger()
        ledger.add(pending("toolu_1"))
        ledger.add(pending("toolu_2"))

        assert len(ledger.drain()) == 2
        assert len(ledger) == 0


class TestExpiry:
    def test_pop_expired_checks_age(self, pending) -> None:
        ledger = PermissionLedger()
        ledger.add(pending("toolu_1"))

        assert ledger.pop_expired("toolu_1", "session-1", timeout=60) is None
        assert ledger.pop_expired("toolu_1", "session-1", timeout=0) is not None
        assert len(ledger) == 0

    def test_pop_expired_checks_session(self, pending) -> None:
        ledger = PermissionLedger()
        ledger.add(pending("toolu_1"))

        assert ledger.pop_expired("toolu_1", "other", timeout=0) is None
        assert "toolu_1" in ledger

    def test_time_remaining(self, pending) -> None:
        ledger = PermissionLedger()
        ledger.add(pending("toolu_1"))

        remaining = ledger.time_remaining("toolu_1", "session-1", timeout=60)

        assert remaining is not None and 0 < remaining <= 60
        assert ledger.time_remaining("toolu_1", "session-1", timeout=0) is None
        assert ledger.time_remaining("missing", "session-1", timeout=60) is None


class TestRespondedBound:
    def test_oldest_half_is_dropped(self, pending) -> None:
        ledger = PermissionLedger(max_responded=4)
        for index in range(5):
            tool_use_id = f"toolu_{index}"
            ledger.add(pending(tool_use_id))
            ledger.pop(tool_use_id)

        assert not ledger.was_responded("toolu_0")
        assert not ledger.was_responded("toolu_2")
        assert ledger.was_responded("toolu_3")
        assert ledger.was_responded("toolu_4")

    def test_evicted_id_can_register_again(self, pending) -> None:
        ledger = PermissionLedger(max_responded=2)
        for index in range(3):
            tool_use_id = f"toolu_{index}"
            ledger.add(pending(tool_use_id))
            ledger.pop(tool_use_id)

        assert ledger.add(pending("toolu_0"))[0]
