"""
Chat relay - per-user rooms over WebSocket plus durable message storage.

The relay only remembers which sockets belong to which user. Messages are
written to the database before delivery; delivery itself is at-most-once
to whichever sockets are connected.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from marketplace.models.listing import Listing
from marketplace.models.message import Message
from marketplace.models.user import User
from marketplace.utils.exceptions import NotFoundException, ValidationException

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "sender": message.sender_id,
        "receiver": message.receiver_id,
        "content": message.content,
        "listing_id": message.listing_id,
        "created_at": message.created_at.isoformat(),
    }


def record_message(
    db: Session,
    sender_id: int,
    receiver_id: int,
    content: str,
    listing_id: Optional[int] = None,
) -> Message:
    """
    Persist a chat message.

    Raises:
        ValidationException: If the content is empty or too long
        NotFoundException: If the receiver or referenced listing does not exist
    """
    content = (content or "").strip()
    if not content:
        raise ValidationException("Message content is required")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationException(f"Messages must be {MAX_MESSAGE_LENGTH} characters or fewer")

    if db.query(User.id).filter(User.id == receiver_id).first() is None:
        raise NotFoundException("Receiver not found")
    if listing_id is not None and db.query(Listing.id).filter(Listing.id == listing_id).first() is None:
        raise NotFoundException("Product not found")

    message = Message(
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        listing_id=listing_id,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def conversation(db: Session, user_id: int, other_user_id: int) -> List[Message]:
    """Messages exchanged between two users, oldest first."""
    return db.query(Message).filter(
        or_(
            and_(Message.sender_id == user_id, Message.receiver_id == other_user_id),
            and_(Message.sender_id == other_user_id, Message.receiver_id == user_id),
        )
    ).order_by(Message.created_at.asc(), Message.id.asc()).all()


class ChatRelay:
    """
    Maps user ids to the sockets joined to their room.

    One relay lives on ``app.state`` for the life of the process.
    """

    def __init__(self):
        self.rooms: Dict[int, Set[WebSocket]] = {}
        self.logger = logging.getLogger(f"{__name__}.ChatRelay")

    def join(self, websocket: WebSocket, user_id: int) -> None:
        self.rooms.setdefault(user_id, set()).add(websocket)
        self.logger.info(f"User {user_id} joined their room ({len(self.rooms[user_id])} connection(s))")

    def leave(self, websocket: WebSocket) -> None:
        for user_id in list(self.rooms):
            sockets = self.rooms[user_id]
            sockets.discard(websocket)
            if not sockets:
                del self.rooms[user_id]

    def connection_count(self, user_id: int) -> int:
        return len(self.rooms.get(user_id, ()))

    async def deliver(self, message: Message) -> None:
        """Send to the receiver's room and, for a different sender, the sender's room."""
        payload = {"type": "message", "message": message_to_dict(message)}
        await self._broadcast_to_room(message.receiver_id, payload)
        if message.sender_id != message.receiver_id:
            await self._broadcast_to_room(message.sender_id, payload)

    async def _broadcast_to_room(self, user_id: int, payload: Dict[str, Any]) -> None:
        sockets = self.rooms.get(user_id)
        if not sockets:
            return

        dead_connections = []
        for ws in list(sockets):
            try:
                await ws.send_json(payload)
            except Exception as e:
                self.logger.warning(f"Failed to send to WebSocket in room {user_id}: {e}")
                dead_connections.append(ws)

        for ws in dead_connections:
            sockets.discard(ws)
        if not sockets:
            self.rooms.pop(user_id, None)
