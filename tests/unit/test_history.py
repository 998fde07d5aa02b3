"""Tests for the consumer-side balance history."""

from decimal import Decimal
from unittest.mock import Mock

import pytest

from solana_balance_stream.data.models import BalanceUpdate, ConnectionStatus, StatusEvent
from solana_balance_stream.streaming.history import BalanceHistory


class TestBalanceHistory:
    """Test BalanceHistory."""

    def test_empty_history(self):
        history = BalanceHistory()

        assert len(history) == 0
        assert history.latest is None
        assert history.current_lamports is None
        assert history.current_sol is None
        assert history.net_change_lamports() == 0
        assert history.status == ConnectionStatus.DISCONNECTED

    def test_append_keeps_arrival_order(self):
        history = BalanceHistory()
        seed = BalanceUpdate(balance_lamports=100)
        later = BalanceUpdate(balance_lamports=300, slot=12)
        earlier_slot = BalanceUpdate(balance_lamports=200, slot=11)

        for update in (seed, later, earlier_slot):
            history.append(update)

        assert history.updates == [seed, later, earlier_slot]
        assert history.newest_first() == [earlier_slot, later, seed]
        assert history.newest_first(limit=1) == [earlier_slot]
        assert history.current_lamports == 200
        assert history.total_received == 3
        assert history.notifications_received == 2

    def test_bounded(self):
        history = BalanceHistory(max_entries=3)

        for lamports in range(5):
            history.append(BalanceUpdate(balance_lamports=lamports, slot=lamports))

        assert len(history) == 3
        assert [u.balance_lamports for u in history.updates] == [2, 3, 4]
        assert history.total_received == 5

    def test_invalid_max_entries(self):
        with pytest.raises(ValueError):
            BalanceHistory(max_entries=0)

    def test_net_change_and_current_sol(self):
        history = BalanceHistory()
        history.append(BalanceUpdate(balance_lamports=2_000_000_000))
        history.append(BalanceUpdate(balance_lamports=1_250_000_000, slot=1))

        assert history.net_change_lamports() == -750_000_000
        assert history.current_sol == Decimal("1.25")

    def test_on_status(self):
        history = BalanceHistory()
        event = StatusEvent(ConnectionStatus.RECONNECTING, attempt=2, delay=2.0)

        history.on_status(event)

        assert history.status == ConnectionStatus.RECONNECTING
        assert history.attempt == 2
        assert history.last_status is event

    def test_clear(self):
        history = BalanceHistory()
        history.append(BalanceUpdate(balance_lamports=1, slot=1))

        history.clear()

        assert len(history) == 0
        assert history.notifications_received == 0

    def test_attach_and_detach(self):
        history = BalanceHistory()
        session = Mock()

        history.attach(session)
        session.add_update_handler.assert_called_once_with(history.append)
        session.add_status_handler.assert_called_once_with(history.on_status)

        history.detach(session)
        session.remove_update_handler.assert_called_once_with(history.append)
        session.remove_status_handler.assert_called_once_with(history.on_status)
