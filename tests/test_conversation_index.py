from __future__ import annotations

from datetime import timedelta

from conftest import BASE_TIME, conversation_document
from neighborly.models.conversation_summary import ConversationListItem
from neighborly.models.user_profile import UserProfile
from neighborly.services.auth_context import AuthContext
from neighborly.services.conversation_index import ConversationIndex
from neighborly.services.conversation_service import ConversationService
from neighborly.services.notification_service import Notifier


def _seed(service: ConversationService) -> None:
    store = service.store
    store.set_document(
        "chats",
        "with-bob",
        conversation_document(
            ["alice", "bob"],
            last_message="See you at 5",
            last_message_time=BASE_TIME,
            last_message_from="bob",
            seen_by=["bob"],
        ),
    )
    store.set_document(
        "chats",
        "with-carol",
        conversation_document(
            ["alice", "carol"],
            last_message="Thanks!",
            last_message_time=BASE_TIME + timedelta(hours=1),
            last_message_from="alice",
            seen_by=["alice", "carol"],
        ),
    )
    store.set_document(
        "chats",
        "bob-carol",
        conversation_document(["bob", "carol"], last_message_time=BASE_TIME + timedelta(hours=2)),
    )


def test_lists_viewer_conversations_newest_first(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)

    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        items = index.conversations

    assert [item.id for item in items] == ["with-carol", "with-bob"]
    assert items[0].other_user_name == "Carol"
    assert items[1].other_user_name == "Bob"
    assert items[1].photo_url == "https://img.example/bob.png"
    assert index.loading is False


def test_unread_flag_reflects_seen_by(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)

    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        flags = {item.id: item.is_unread for item in index.conversations}

    assert flags == {"with-bob": True, "with-carol": False}


def test_empty_conversation_preview(service: ConversationService, alice: UserProfile) -> None:
    service.start_conversation(alice, "bob")

    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        (item,) = index.conversations

    assert item.last_message == ""
    assert item.preview == "Start a conversation"


def test_malformed_records_are_skipped(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)
    store = service.store
    no_names = conversation_document(["alice", "bob"])
    no_names["userNames"] = None
    store.set_document("chats", "no-names", no_names)
    missing_partner_name = conversation_document(["alice", "bob"])
    missing_partner_name["userNames"] = ["Alice", None]
    store.set_document("chats", "nameless", missing_partner_name)
    solo = conversation_document(["alice"])
    store.set_document("chats", "solo", solo)
    broken = conversation_document(["alice", "carol"])
    broken["messages"] = "not a list"
    store.set_document("chats", "broken", broken)

    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        ids = [item.id for item in index.conversations]

    assert ids == ["with-carol", "with-bob"]


def test_waits_for_session_resolution(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)
    auth = AuthContext()
    published: list[list[ConversationListItem]] = []
    index = ConversationIndex(service, auth).start()
    index.add_listener(published.append)

    assert index.loading is True
    assert index.subscribed is False
    assert published == []

    auth.resolve(alice)

    assert index.subscribed is True
    assert [item.id for item in published[-1]] == ["with-carol", "with-bob"]
    index.stop()


def test_signed_out_session_publishes_empty_list(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)
    auth = AuthContext.signed_in(alice)
    published: list[list[ConversationListItem]] = []
    index = ConversationIndex(service, auth).start()
    index.add_listener(published.append)

    auth.sign_out()

    assert published[-1] == []
    assert index.loading is False
    assert index.subscribed is False
    assert index.viewer_id is None


def test_resubscribes_when_user_changes(
    service: ConversationService, alice: UserProfile, bob: UserProfile
) -> None:
    _seed(service)
    auth = AuthContext.signed_in(alice)

    with ConversationIndex(service, auth) as index:
        auth.resolve(bob)
        ids = [item.id for item in index.conversations]

    assert ids == ["bob-carol", "with-bob"]
    assert index.viewer_id == "bob"


def test_live_updates_follow_new_messages(
    service: ConversationService, alice: UserProfile, bob: UserProfile
) -> None:
    _seed(service)

    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        service.mark_seen("with-bob", "alice")
        assert index.unread_conversations == []

        service.send_text("with-bob", bob, "Actually, 6 works better")
        first = index.conversations[0]

    assert first.id == "with-bob"
    assert first.last_message == "Actually, 6 works better"
    assert first.last_message_from == "bob"
    assert first.is_unread is True


def test_stop_cancels_updates(service: ConversationService, alice: UserProfile, bob: UserProfile) -> None:
    _seed(service)
    published: list[list[ConversationListItem]] = []
    index = ConversationIndex(service, AuthContext.signed_in(alice)).start()
    index.add_listener(published.append)
    index.stop()
    delivered = len(published)

    service.send_text("with-bob", bob, "Are you there?")

    assert len(published) == delivered
    assert index.subscribed is False


def test_mark_all_seen_clears_unread_rows(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)

    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        marked = index.mark_all_seen()
        remaining = index.unread_conversations

    assert marked == ["with-bob"]
    assert remaining == []


def test_mark_all_seen_failure_is_reported(
    service: ConversationService, alice: UserProfile, notifier: Notifier
) -> None:
    _seed(service)
    service.store.fail_transactions = True

    with ConversationIndex(service, AuthContext.signed_in(alice), notifier) as index:
        assert index.mark_all_seen() == []
        assert [item.id for item in index.unread_conversations] == ["with-bob"]

    assert notifier.latest is not None
    assert notifier.latest.message == "Failed to update conversations"


def test_unsortable_times_do_not_break_the_list(service: ConversationService, alice: UserProfile) -> None:
    _seed(service)
    for doc_id, value in (("text-time", "yesterday"), ("numeric-time", 1714554000)):
        record = conversation_document(["alice", "bob"], last_message="hi", last_message_from="bob")
        record["lastMessageTime"] = value
        service.store.set_document("chats", doc_id, record)

    with ConversationIndex(service, AuthContext.signed_in(alice)) as index:
        ids = [item.id for item in index.conversations]

    assert ids[:2] == ["with-carol", "with-bob"]
    assert "text-time" not in ids
