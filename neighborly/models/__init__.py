"""Expose commonly used model classes at the package level.

Importing these classes here allows consumers to write concise imports like::

    from neighborly.models import ChatMessage, Conversation, ConversationListItem

These names refer to the underlying Pydantic models defined in their
respective modules.
"""

from .chat_message import ChatMessage  # noqa: F401
from .conversation import Conversation  # noqa: F401
from .conversation_summary import ConversationListItem  # noqa: F401
from .notification import Notification  # noqa: F401
from .user_profile import UserProfile  # noqa: F401
from .enums import AuthState, MessageKind, NotificationLevel  # noqa: F401
