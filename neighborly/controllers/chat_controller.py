"""Controllers for conversation and message endpoints.

The caller identifies themselves with the ``user_id`` query parameter,
which must name an existing user record.  Typed messaging errors are
left to the application's exception handler; anything unexpected is
logged and reported as a 500.
"""

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from loguru import logger

from ..models.chat_request import SendMessageRequest, StartConversationRequest
from ..models.chat_response import (
    ConversationDetail,
    MarkSeenResponse,
    SendMessageResponse,
    StartConversationResponse,
    UnreadCountResponse,
)
from ..models.conversation_summary import ConversationListItem
from ..models.user_profile import UserProfile
from ..services.auth_context import AuthContext
from ..services.conversation_index import ConversationIndex
from ..services.conversation_service import ConversationService, get_conversation_service
from ..services.unread_counter import UnreadCounter
from ..utils.error_handler import (
    AuthenticationRequired,
    MessagingError,
    NotFoundError,
    NotParticipantError,
)

router = APIRouter(prefix="", tags=["Messages"])


def get_current_user(
    user_id: str = Query(..., min_length=1, description="Identifier of the signed-in user."),
    service: ConversationService = Depends(get_conversation_service),
) -> UserProfile:
    """Resolve the caller's profile or reject the request."""
    profile = service.get_user_profile(user_id)
    if profile is None:
        raise AuthenticationRequired(f"Unknown user {user_id}")
    return profile


@router.get("/conversations", response_model=list[ConversationListItem])
async def list_conversations_endpoint(
    user: UserProfile = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
) -> list[ConversationListItem]:
    """List the caller's conversations, most recent first, with unread flags."""
    try:
        with ConversationIndex(service, AuthContext.signed_in(user)) as index:
            return index.conversations
    except MessagingError:
        raise
    except Exception as exc:
        logger.exception("Failed to list conversations")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list conversations",
        ) from exc


@router.post("/conversations", response_model=StartConversationResponse)
async def start_conversation_endpoint(
    request: StartConversationRequest,
    user: UserProfile = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
) -> StartConversationResponse:
    """Open the conversation with another user, creating it only if none exists."""
    try:
        conversation, created = service.start_conversation(user, request.other_user_id)
        return StartConversationResponse(conversation_id=conversation.id, created=created)
    except MessagingError:
        raise
    except Exception as exc:
        logger.exception("Failed to start conversation")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to start conversation",
        ) from exc


@router.get("/conversations/unread-count", response_model=UnreadCountResponse)
async def unread_count_endpoint(
    user: UserProfile = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
) -> UnreadCountResponse:
    """Return the navigation badge count."""
    try:
        with ConversationIndex(service, AuthContext.signed_in(user)) as index:
            with UnreadCounter(index) as counter:
                return UnreadCountResponse(count=counter.count, badge=counter.badge)
    except MessagingError:
        raise
    except Exception as exc:
        logger.exception("Failed to count unread conversations")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to count unread conversations",
        ) from exc


@router.post("/conversations/seen", response_model=MarkSeenResponse)
async def mark_all_seen_endpoint(
    user: UserProfile = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
) -> MarkSeenResponse:
    """Mark every unread conversation of the caller as seen."""
    with ConversationIndex(service, AuthContext.signed_in(user)) as index:
        pending = [item.id for item in index.unread_conversations]
    logger.info("Marking {} conversations seen for {}", len(pending), user.uid)
    return MarkSeenResponse(marked=service.mark_all_seen(user.uid, pending))


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation_endpoint(
    conversation_id: str,
    user: UserProfile = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationDetail:
    """Return one conversation with its messages in append order."""
    conversation = service.get_conversation(conversation_id)
    if conversation is None:
        raise NotFoundError(f"Conversation {conversation_id} does not exist")
    if not conversation.has_participant(user.uid):
        raise NotParticipantError(f"User {user.uid} is not a participant of this conversation")
    other_id = conversation.other_participant(user.uid)
    other_user = service.get_user_profile(other_id) if other_id else None
    return ConversationDetail(
        conversation=conversation,
        other_user=other_user,
        messages=conversation.messages,
    )


@router.post("/conversations/{conversation_id}/seen", response_model=MarkSeenResponse)
async def mark_seen_endpoint(
    conversation_id: str,
    user: UserProfile = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
) -> MarkSeenResponse:
    """Record that the caller has read the conversation."""
    service.mark_seen(conversation_id, user.uid)
    return MarkSeenResponse(marked=[conversation_id])


@router.post("/conversations/{conversation_id}/messages", response_model=SendMessageResponse)
async def send_message_endpoint(
    conversation_id: str,
    request: SendMessageRequest,
    user: UserProfile = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
) -> SendMessageResponse:
    """Append a text message.  Blank text is ignored and reported as not sent."""
    try:
        message = service.send_text(conversation_id, user, request.text)
        return SendMessageResponse(sent=message is not None, message=message)
    except MessagingError:
        raise
    except Exception as exc:
        logger.exception("Unhandled exception while sending message")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.post("/conversations/{conversation_id}/images", response_model=SendMessageResponse)
async def send_image_endpoint(
    conversation_id: str,
    file: UploadFile = File(...),
    user: UserProfile = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
) -> SendMessageResponse:
    """Upload an image file and append an image message."""
    data = await file.read()
    try:
        message = service.send_image(
            conversation_id,
            user,
            file.filename or "",
            file.content_type,
            data,
        )
        return SendMessageResponse(sent=True, message=message)
    except MessagingError:
        raise
    except Exception as exc:
        logger.exception("Unhandled exception while sending image")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc
