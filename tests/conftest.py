from __future__ import annotations

import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

# Keep the module-level app from creating a blob directory in the checkout
os.environ.setdefault("BLOB_ROOT", tempfile.mkdtemp(prefix="neighborly-blobs-"))

from neighborly.config.store_config import StoreConfig
from neighborly.models.user_profile import UserProfile
from neighborly.services.conversation_service import ConversationService
from neighborly.services.notification_service import Notifier
from neighborly.store.blob_store import BlobStore, LocalBlobStore, ProgressListener
from neighborly.store.in_memory_store import InMemoryDocumentStore
from neighborly.utils.error_handler import TransientBackendError

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Returns ``start``, ``start + step``, ``start + 2 * step`` and so on."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current


class SequentialIds:
    def __init__(self, prefix: str = "chat") -> None:
        self.prefix = prefix
        self.counter = 0

    def __call__(self) -> str:
        self.counter += 1
        return f"{self.prefix}-{self.counter}"


class FailingWriteStore(InMemoryDocumentStore):
    """In-memory store whose reads, message writes and read-marker writes can be made to fail."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.fail_appends = False
        self.fail_transactions = False
        self.fail_reads = False

    def get_document(self, *args: Any, **kwargs: Any) -> Any:
        if self.fail_reads:
            raise RuntimeError("read timed out")
        return super().get_document(*args, **kwargs)

    def append_and_merge_atomic(self, *args: Any, **kwargs: Any) -> None:
        if self.fail_appends:
            raise RuntimeError("write rejected")
        super().append_and_merge_atomic(*args, **kwargs)

    def run_transaction(self, *args: Any, **kwargs: Any) -> None:
        if self.fail_transactions:
            raise RuntimeError("transaction aborted")
        super().run_transaction(*args, **kwargs)


class FailingBlobStore(BlobStore):
    """Reports some progress, then fails the upload."""

    def __init__(self) -> None:
        self.attempts = 0

    def upload_blob(
        self,
        path: str,
        data: bytes,
        content_type: str,
        on_progress: ProgressListener | None = None,
    ) -> str:
        self.attempts += 1
        if on_progress is not None:
            on_progress(len(data) // 2, len(data))
        raise TransientBackendError("connection reset during upload")


USERS = {
    "alice": {"displayName": "Alice", "photoURL": "https://img.example/alice.png"},
    "bob": {"displayName": "Bob", "photoURL": "https://img.example/bob.png"},
    "carol": {"displayName": "Carol", "photoURL": None},
}


def seed_users(store: InMemoryDocumentStore) -> None:
    for uid, data in USERS.items():
        store.set_document("users", uid, data)


def conversation_document(
    participants: list[str],
    last_message: str = "",
    last_message_time: datetime | None = BASE_TIME,
    last_message_from: str | None = None,
    seen_by: list[str] | None = None,
    messages: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Raw conversation record shaped the way the service writes it."""
    return {
        "participants": participants,
        "userNames": [USERS[uid]["displayName"] for uid in participants],
        "userPhotos": [USERS[uid]["photoURL"] or "" for uid in participants],
        "photoURL": USERS[participants[-1]]["photoURL"] or "",
        "lastMessage": last_message,
        "lastMessageTime": last_message_time,
        "lastMessageFrom": last_message_from,
        "lastMessageSeenBy": seen_by if seen_by is not None else [],
        "lastRead": {},
        "messages": messages or [],
        "createdAt": BASE_TIME,
    }


def text_message(sender: str, text: str, read: bool = False) -> dict[str, Any]:
    return {
        "type": "text",
        "text": text,
        "sender": sender,
        "senderName": USERS[sender]["displayName"],
        "senderPhoto": USERS[sender]["photoURL"],
        "timestamp": BASE_TIME,
        "read": read,
    }


@pytest.fixture
def store() -> FailingWriteStore:
    # Server time runs ahead of every seeded timestamp
    document_store = FailingWriteStore(
        clock=FakeClock(start=BASE_TIME + timedelta(days=2)),
        id_factory=SequentialIds(),
    )
    seed_users(document_store)
    return document_store


@pytest.fixture
def store_config(tmp_path: Path) -> StoreConfig:
    return StoreConfig(
        blob_root=str(tmp_path / "blobs"),
        blob_base_url="/blobs",
        blob_chunk_size=4,
        max_image_bytes=1024,
    )


@pytest.fixture
def blob_store(store_config: StoreConfig) -> LocalBlobStore:
    return LocalBlobStore(
        root=store_config.blob_root,
        base_url=store_config.blob_base_url,
        chunk_size=store_config.blob_chunk_size,
    )


@pytest.fixture
def make_service(
    store: FailingWriteStore,
    blob_store: LocalBlobStore,
    store_config: StoreConfig,
) -> Callable[..., ConversationService]:
    def _make(
        blob: BlobStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> ConversationService:
        return ConversationService(
            store=store,
            blob_store=blob or blob_store,
            store_config=store_config,
            clock=clock or FakeClock(start=BASE_TIME + timedelta(days=1)),
        )

    return _make


@pytest.fixture
def service(make_service: Callable[..., ConversationService]) -> ConversationService:
    return make_service()


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def alice() -> UserProfile:
    return UserProfile(uid="alice", display_name="Alice", photo_url=USERS["alice"]["photoURL"])


@pytest.fixture
def bob() -> UserProfile:
    return UserProfile(uid="bob", display_name="Bob", photo_url=USERS["bob"]["photoURL"])


@pytest.fixture
def carol() -> UserProfile:
    return UserProfile(uid="carol", display_name="Carol")
