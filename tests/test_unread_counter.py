from __future__ import annotations

from datetime import timedelta

from conftest import BASE_TIME, conversation_document
from neighborly.models.user_profile import UserProfile
from neighborly.services.auth_context import AuthContext
from neighborly.services.conversation_index import ConversationIndex
from neighborly.services.conversation_service import ConversationService
from neighborly.services.unread_counter import UnreadCounter


def _seed(service: ConversationService) -> None:
    store = service.store
    # Sent by the viewer and not yet seen by them: never counted
    store.set_document(
        "chats",
        "own",
        conversation_document(
            ["alice", "bob"],
            last_message="Still need the drill?",
            last_message_from="alice",
            seen_by=[],
        ),
    )
    store.set_document(
        "chats",
        "incoming",
        conversation_document(
            ["alice", "carol"],
            last_message="I can help Saturday",
            last_message_time=BASE_TIME + timedelta(minutes=5),
            last_message_from="carol",
            seen_by=["carol"],
        ),
    )
    # Unseen but empty
    store.set_document(
        "chats",
        "empty",
        conversation_document(["carol", "alice"], last_message_time=BASE_TIME + timedelta(minutes=10)),
    )


def test_counts_only_incoming_unseen_messages(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)

    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        with UnreadCounter(index) as counter:
            assert counter.count == 1
            assert counter.badge == 1


def test_badge_is_hidden_at_zero(service: ConversationService, carol: UserProfile) -> None:
    _seed(service)

    with ConversationIndex(service, AuthContext.signed_in(carol)) as index:
        with UnreadCounter(index) as counter:
            assert counter.count == 0
            assert counter.badge is None


def test_count_follows_new_messages(
    service: ConversationService, alice: UserProfile, bob: UserProfile
) -> None:
    _seed(service)
    index = ConversationIndex(service, AuthContext.signed_in(alice))
    counter = UnreadCounter(index).start()
    counts: list[int] = []
    counter.add_listener(counts.append)

    service.send_text("own", bob, "Yes please!")

    assert counts[-1] == 2
    counter.stop()
    index.stop()


def test_entering_message_list_resets_then_marks_seen(
    service: ConversationService, alice: UserProfile
) -> None:
    _seed(service)
    index = ConversationIndex(service, AuthContext.signed_in(alice))
    counter = UnreadCounter(index).start()
    counts: list[int] = []
    counter.add_listener(counts.append)

    counter.enter_message_list()

    assert counts[0] == 0
    assert counter.count == 0
    assert "alice" in service.store.get_document("chats", "incoming").data["lastMessageSeenBy"]
    counter.stop()
    index.stop()


def test_local_reset_is_replaced_by_next_snapshot(
    service: ConversationService, alice: UserProfile, bob: UserProfile
) -> None:
    _seed(service)
    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        with UnreadCounter(index) as counter:
            counter.enter_message_list(mark_seen=False)
            assert counter.count == 0

            service.send_text("own", bob, "Sure, come by")

            assert counter.count == 2


def test_stop_detaches_without_stopping_index(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)
    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        counter = UnreadCounter(index).start()
        counter.stop()

        service.mark_seen("incoming", "alice")

        assert index.subscribed is True
        assert {item.id for item in index.unread_conversations} == {"own", "empty"}
        assert counter.count == 1
