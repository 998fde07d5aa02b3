"""Consumer-side balance history fed by a streaming session."""

import logging
from collections import deque
from decimal import Decimal
from typing import Deque, List, Optional

from ..data.models import BalanceUpdate, ConnectionStatus, StatusEvent

logger = logging.getLogger(__name__)


class BalanceHistory:
    """Bounded, append-only record of balance updates and connection status.

    Oldest entries are evicted once ``max_entries`` is reached. Updates are
    kept in arrival order; slots are not assumed to increase.
    """

    def __init__(self, max_entries: int = 500):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._updates: Deque[BalanceUpdate] = deque(maxlen=max_entries)
        self.status = ConnectionStatus.DISCONNECTED
        self.attempt = 0
        self.last_status: Optional[StatusEvent] = None
        self.total_received = 0
        self.notifications_received = 0

    def attach(self, session) -> None:
        """Register this history as a sink on ``session``."""
        session.add_update_handler(self.append)
        session.add_status_handler(self.on_status)

    def detach(self, session) -> None:
        session.remove_update_handler(self.append)
        session.remove_status_handler(self.on_status)

    def append(self, update: BalanceUpdate) -> None:
        self._updates.append(update)
        self.total_received += 1
        if not update.is_seed:
            self.notifications_received += 1

    def on_status(self, event: StatusEvent) -> None:
        self.status = event.status
        self.attempt = event.attempt
        self.last_status = event
        logger.debug(f"Connection status: {event.status.value} (attempt {event.attempt})")

    def clear(self) -> None:
        self._updates.clear()
        self.total_received = 0
        self.notifications_received = 0

    @property
    def updates(self) -> List[BalanceUpdate]:
        """Updates oldest first."""
        return list(self._updates)

    def newest_first(self, limit: Optional[int] = None) -> List[BalanceUpdate]:
        updates = list(reversed(self._updates))
        return updates[:limit] if limit is not None else updates

    @property
    def latest(self) -> Optional[BalanceUpdate]:
        return self._updates[-1] if self._updates else None

    @property
    def current_lamports(self) -> Optional[int]:
        latest = self.latest
        return latest.balance_lamports if latest else None

    @property
    def current_sol(self) -> Optional[Decimal]:
        latest = self.latest
        return latest.balance_sol if latest else None

    def net_change_lamports(self) -> int:
        """Change between the oldest retained and the latest balance."""
        if len(self._updates) < 2:
            return 0
        return self._updates[-1].balance_lamports - self._updates[0].balance_lamports

    def __len__(self) -> int:
        return len(self._updates)
