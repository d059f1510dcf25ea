"""
Notifications router — live transaction feed over a websocket.

Endpoint:
  WS /ws?token=<jwt>  — Receive an event for every payment sent or received

Browsers cannot set an Authorization header on a websocket handshake, so
the JWT travels as a query parameter. An invalid token closes the socket
with 1008 (policy violation) before it is accepted.
"""

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from jose import JWTError

from app.security import decode_access_token

router = APIRouter()


@router.websocket("/ws")
async def transaction_feed(websocket: WebSocket, token: str = Query("")):
    try:
        _, upi_id = decode_access_token(token)
    except JWTError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    notifier = websocket.app.state.notifier
    await notifier.connect(upi_id, websocket)
    try:
        # Client messages are ignored; reading keeps the disconnect observable
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        notifier.disconnect(upi_id, websocket)
