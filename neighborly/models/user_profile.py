"""Display profile of a user as stored in the users collection."""

from pydantic import BaseModel, ConfigDict, Field


class UserProfile(BaseModel):
    """The fields the messaging views need from a user record."""

    uid: str
    display_name: str | None = Field(default=None, alias="displayName")
    photo_url: str | None = Field(default=None, alias="photoURL")

    model_config = ConfigDict(populate_by_name=True)
