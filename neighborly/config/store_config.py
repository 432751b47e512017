from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class StoreConfig(BaseSettings):
    """Settings for the document store, blob storage and message limits."""

    chats_collection: str = Field("chats", alias="STORE_CHATS_COLLECTION")
    users_collection: str = Field("users", alias="STORE_USERS_COLLECTION")
    blob_root: str = Field("blobs", alias="BLOB_ROOT")
    blob_base_url: str = Field("/blobs", alias="BLOB_BASE_URL")
    blob_chunk_size: int = Field(64 * 1024, alias="BLOB_CHUNK_SIZE")
    chat_image_prefix: str = Field("chat-images", alias="CHAT_IMAGE_PREFIX")
    max_image_bytes: int = Field(10 * 1024 * 1024, alias="MAX_IMAGE_BYTES")
    image_placeholder_text: str = Field("Sent an image", alias="IMAGE_PLACEHOLDER_TEXT")
    max_message_length: int = Field(2000, alias="MAX_MESSAGE_LENGTH")

    @field_validator("blob_chunk_size", "max_image_bytes", "max_message_length")
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Size limits must be positive")
        return value

    @field_validator("chat_image_prefix")
    def validate_image_prefix(cls, value: str) -> str:
        cleaned = value.strip().strip("/")
        if not cleaned or ".." in cleaned.split("/"):
            raise ValueError("CHAT_IMAGE_PREFIX must be a relative storage path")
        return cleaned

    @field_validator("image_placeholder_text")
    def validate_placeholder(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("IMAGE_PLACEHOLDER_TEXT must not be blank")
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


@lru_cache()
def get_store_config() -> StoreConfig:
    """Return a cached store configuration."""

    return StoreConfig()


