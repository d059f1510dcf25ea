"""
Transaction notifications pushed to connected clients.

The transfer service publishes through the small `Notifier` interface and
does not care how events travel. The application wires in a
`WebSocketNotifier`, which keeps one set of open sockets per payment
address: a client connects to `/ws?token=<jwt>` and from then on receives
an event each time money leaves or reaches its own address.

Delivery is best effort. A socket that fails on send is dropped from the
registry; the caller never sees the error.
"""

from collections import defaultdict

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from app.models.ledger_entry import LedgerEntry

logger = structlog.get_logger(__name__)


def transfer_event(entry: LedgerEntry) -> dict:
    """Build the event payload for the owner of `entry`."""
    return {
        "type": "new",
        "transaction_type": entry.direction,
        "sender_upi_id": entry.sender_upi_id,
        "receiver_upi_id": entry.receiver_upi_id,
        "counterpart_upi_id": entry.counterpart_upi_id,
        "amount_paise": entry.amount_paise,
        "category": entry.category,
        "note": entry.note,
        "timestamp": entry.created_at.isoformat(),
        "correlation_id": entry.correlation_id,
    }


class Notifier:
    """Publish/subscribe channel the transfer service emits events through."""

    async def publish(self, upi_id: str, event: dict) -> None:
        raise NotImplementedError


class WebSocketNotifier(Notifier):
    """Fans events out to every socket subscribed to an address."""

    def __init__(self):
        self._subscribers: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, upi_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._subscribers[upi_id].add(websocket)
        logger.info("subscriber_connected", upi_id=upi_id)

    def disconnect(self, upi_id: str, websocket: WebSocket) -> None:
        sockets = self._subscribers.get(upi_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._subscribers[upi_id]
        logger.info("subscriber_disconnected", upi_id=upi_id)

    def subscriber_count(self, upi_id: str) -> int:
        return len(self._subscribers.get(upi_id, ()))

    async def publish(self, upi_id: str, event: dict) -> None:
        for websocket in list(self._subscribers.get(upi_id, ())):
            try:
                await websocket.send_json(event)
            except (WebSocketDisconnect, RuntimeError, OSError):
                logger.warning("subscriber_send_failed", upi_id=upi_id)
                self.disconnect(upi_id, websocket)
