"""Websocket endpoints pushing live conversation state to clients.

Store listeners may fire on any thread, so every payload is built at
notification time and handed to the event loop with
``call_soon_threadsafe``.  Subscriptions are released when the socket
disconnects.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from loguru import logger

from ..models.notification import Notification
from ..services.auth_context import AuthContext
from ..services.conversation_index import ConversationIndex
from ..services.conversation_service import ConversationService, get_conversation_service
from ..services.conversation_timeline import ConversationTimeline
from ..services.notification_service import Notifier
from ..services.unread_counter import UnreadCounter

router = APIRouter(prefix="/ws", tags=["Realtime"])

Payload = Dict[str, Any]
FrameHandler = Callable[[Payload], Awaitable[None]]


def _notification_payload(notification: Notification) -> Payload:
    return {"notification": notification.model_dump(mode="json")}


def _timeline_payload(timeline: ConversationTimeline) -> Payload:
    other = timeline.other_user
    return {
        "conversation_id": timeline.conversation_id,
        "loading": timeline.loading,
        "not_found": timeline.not_found,
        "sending": timeline.sending,
        "is_uploading": timeline.is_uploading,
        "upload_progress": timeline.upload_progress,
        "other_user": other.model_dump(mode="json", by_alias=True) if other else None,
        "messages": [message.model_dump(mode="json", by_alias=True) for message in timeline.messages],
    }


async def _receive_until_disconnect(websocket: WebSocket, on_frame: Optional[FrameHandler]) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        if on_frame is None or message.get("text") is None:
            continue
        await on_frame(_parse_frame(message["text"]))


def _parse_frame(text: str) -> Payload:
    try:
        frame = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON websocket frame")
        return {}
    return frame if isinstance(frame, dict) else {}


async def _stream(
    websocket: WebSocket,
    queue: "asyncio.Queue[Payload]",
    on_frame: Optional[FrameHandler] = None,
) -> None:
    """Forward queued payloads until the client goes away."""
    receiver = asyncio.create_task(_receive_until_disconnect(websocket, on_frame))
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                receiver.result()
                return
            await websocket.send_json(getter.result())
    except WebSocketDisconnect:
        return
    finally:
        receiver.cancel()


def _queue_pusher(queue: "asyncio.Queue[Payload]") -> Callable[[Payload], None]:
    loop = asyncio.get_running_loop()

    def push(payload: Payload) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, payload)

    return push


@router.websocket("/conversations")
async def conversations_stream(
    websocket: WebSocket,
    user_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> None:
    """Stream the caller's conversation list and badge count."""
    profile = service.get_user_profile(user_id)
    if profile is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()

    queue: "asyncio.Queue[Payload]" = asyncio.Queue()
    push = _queue_pusher(queue)
    notifier = Notifier()
    index = ConversationIndex(service, AuthContext.signed_in(profile), notifier)
    counter = UnreadCounter(index)

    def publish(_: object) -> None:
        push(
            {
                "conversations": [item.model_dump(mode="json") for item in index.conversations],
                "unread_count": counter.count,
            }
        )

    async def on_frame(frame: Payload) -> None:
        if frame.get("action") == "mark_all_seen":
            counter.enter_message_list()

    # The counter is notified after every index snapshot, so one feed covers both.
    counter.start()
    feeds = [
        counter.add_listener(publish),
        notifier.add_listener(lambda notification: push(_notification_payload(notification))),
    ]
    if not index.loading:
        publish(None)
    logger.info("Conversation stream opened for {}", user_id)
    try:
        await _stream(websocket, queue, on_frame)
    finally:
        for feed in feeds:
            feed.unsubscribe()
        counter.stop()
        index.stop()
        logger.info("Conversation stream closed for {}", user_id)


@router.websocket("/conversations/{conversation_id}")
async def conversation_stream(
    websocket: WebSocket,
    conversation_id: str,
    user_id: str,
    service: ConversationService = Depends(get_conversation_service),
) -> None:
    """Stream one conversation's timeline; text frames send messages."""
    profile = service.get_user_profile(user_id)
    if profile is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()

    queue: "asyncio.Queue[Payload]" = asyncio.Queue()
    push = _queue_pusher(queue)
    notifier = Notifier()
    timeline = ConversationTimeline(service, AuthContext.signed_in(profile), conversation_id, notifier)

    async def on_frame(frame: Payload) -> None:
        text = frame.get("text")
        if isinstance(text, str):
            timeline.set_draft(text)
            timeline.send_text()

    feeds = [
        timeline.add_listener(lambda current: push(_timeline_payload(current))),
        notifier.add_listener(lambda notification: push(_notification_payload(notification))),
    ]
    timeline.start()
    logger.info("Timeline stream for {} opened by {}", conversation_id, user_id)
    try:
        await _stream(websocket, queue, on_frame)
    finally:
        for feed in feeds:
            feed.unsubscribe()
        timeline.stop()
        logger.info("Timeline stream for {} closed by {}", conversation_id, user_id)
