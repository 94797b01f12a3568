"""
Chat endpoints: the realtime WebSocket relay and conversation history.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from marketplace.auth.dependencies import get_current_user, resolve_user
from marketplace.database import get_db
from marketplace.models.user import User
from marketplace.services import chat
from marketplace.utils.exceptions import MarketplaceException

logger = logging.getLogger(__name__)

router = APIRouter(tags=['chat'])

HEARTBEAT_SECONDS = 60.0


class MessageResponse(BaseModel):
    id: int
    sender: int
    receiver: int
    content: str
    listing_id: int | None = None
    created_at: str


def _as_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _authenticate_websocket(session_factory, settings, token: str | None, session_id: str | None) -> int | None:
    db = session_factory()
    try:
        user = resolve_user(db, settings, token, session_id)
        return user.id if user else None
    finally:
        db.close()


def _store_message(session_factory, sender_id: int, receiver_id: int, content: str, listing_id: int | None):
    db = session_factory()
    try:
        return chat.record_message(db, sender_id, receiver_id, content, listing_id)
    finally:
        db.close()


async def _handle_chat_message(websocket: WebSocket, current_user_id: int, event: dict) -> None:
    sender_id = _as_int(event.get('sender', current_user_id))
    receiver_id = _as_int(event.get('receiver'))
    if sender_id != current_user_id:
        await websocket.send_json({'type': 'error', 'message': 'Cannot send messages for another user'})
        return
    if receiver_id is None:
        await websocket.send_json({'type': 'error', 'message': 'Receiver is required'})
        return

    raw_listing_id = event.get('listing_id', event.get('productId'))
    listing_id = None
    if raw_listing_id not in (None, ''):
        listing_id = _as_int(raw_listing_id)
        if listing_id is None:
            await websocket.send_json({'type': 'error', 'message': f'Invalid listing id: {raw_listing_id}'})
            return

    # Storage is synchronous; keep it off the event loop.
    try:
        message = await asyncio.to_thread(
            _store_message,
            websocket.app.state.session_factory,
            current_user_id,
            receiver_id,
            event.get('content', ''),
            listing_id,
        )
    except MarketplaceException as exc:
        await websocket.send_json({'type': 'error', 'message': exc.message})
        return

    await websocket.app.state.chat_relay.deliver(message)


@router.websocket('/ws/chat')
async def chat_websocket(websocket: WebSocket):
    """
    Realtime chat for the signed-in user.

    Events: ``{"type": "join", "user_id": ...}`` subscribes this connection to the
    user's room; ``{"type": "chatMessage", "receiver": ..., "content": ...,
    "listing_id": ...}`` stores and relays a message.
    """
    settings = websocket.app.state.settings
    current_user_id = await asyncio.to_thread(
        _authenticate_websocket,
        websocket.app.state.session_factory,
        settings,
        websocket.cookies.get(settings.token_cookie_name),
        websocket.cookies.get(settings.session_cookie_name),
    )
    if current_user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    relay: chat.ChatRelay = websocket.app.state.chat_relay
    await websocket.accept()
    logger.info(f"Chat WebSocket connected for user {current_user_id}")

    try:
        while True:
            try:
                event = await asyncio.wait_for(websocket.receive_json(), timeout=HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                await websocket.send_json({'type': 'heartbeat'})
                continue

            if not isinstance(event, dict):
                await websocket.send_json({'type': 'error', 'message': 'Events must be JSON objects'})
                continue

            event_type = event.get('type')
            if event_type == 'join':
                user_id = _as_int(event.get('user_id'))
                if user_id != current_user_id:
                    await websocket.send_json({'type': 'error', 'message': 'Cannot join another user\'s room'})
                    continue
                relay.join(websocket, user_id)
                await websocket.send_json({'type': 'joined', 'user_id': user_id})
            elif event_type == 'chatMessage':
                await _handle_chat_message(websocket, current_user_id, event)
            else:
                await websocket.send_json({'type': 'error', 'message': f'Unknown event type: {event_type}'})

    except WebSocketDisconnect:
        logger.info(f"Chat WebSocket disconnected for user {current_user_id}")
    except Exception as e:
        logger.error(f"Error in chat WebSocket: {e}", exc_info=True)
    finally:
        relay.leave(websocket)


@router.get('/chat/{other_user_id}', response_model=list[MessageResponse])
def conversation_history(
    other_user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [
        MessageResponse(**chat.message_to_dict(message))
        for message in chat.conversation(db, current_user.id, other_user_id)
    ]
