# Pydantic records for the documents kept in MongoDB.
# Stored and wire field names are camelCase; attributes are snake_case.
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Type, TypeVar

import pydantic
from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ValidationError

R = TypeVar("R", bound="Record")

TRUE_VALUES = (True, "true", "True", "1", 1)


def as_flag(value: Any) -> bool:
    return value in TRUE_VALUES


def utcnow() -> datetime:
    # BSON dates carry milliseconds
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def has_text(value: Optional[str]) -> bool:
    return bool(value and value.strip())


class Privacy(str, Enum):
    EVERYONE = "everyone"
    CONTACTS = "contacts"
    NOBODY = "nobody"


class Record(BaseModel):
    """Base for stored documents: maps ``id`` to the ``_id`` ObjectId."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", use_enum_values=True)

    id: Optional[str] = None

    @field_validator("created_at", mode="after", check_fields=False)
    @classmethod
    def utc_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @classmethod
    def build(cls: Type[R], **fields) -> R:
        try:
            return cls(**fields)
        except pydantic.ValidationError as e:
            raise ValidationError(_describe(e)) from e

    @classmethod
    def from_document(cls: Type[R], doc: Dict[str, Any]) -> R:
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError(_describe(e)) from e

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(by_alias=True, exclude={"id"})
        if self.id:
            doc["_id"] = ObjectId(self.id)
        return doc

    def public(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def _describe(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "record"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def _required_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


Text = Annotated[str, AfterValidator(_required_text)]


class User(Record):
    identity: Text
    display_name: Optional[str] = Field(default=None, alias="displayName")
    password: str
    avatar: Optional[str] = None
    privacy: Privacy = Privacy.EVERYONE.value
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    def summary(self) -> Dict[str, Any]:
        """Public fields only; the password hash never leaves the server."""
        return {
            "identity": self.identity,
            "displayName": self.display_name,
            "avatar": self.avatar,
        }


class Message(Record):
    sender: Text
    receiver: Text
    text: Optional[str] = None
    file_url: Optional[str] = Field(default=None, alias="fileUrl")
    sender_avatar: Optional[str] = Field(default=None, alias="senderAvatar")
    is_group: bool = Field(default=False, alias="isGroup")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @model_validator(mode="after")
    def has_body(self):
        if not has_text(self.text) and not self.file_url:
            raise ValueError("message needs text or a file")
        return self


class Status(Record):
    user: Text
    text: Optional[str] = None
    file_url: Optional[str] = Field(default=None, alias="fileUrl")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @model_validator(mode="after")
    def has_body(self):
        if not has_text(self.text) and not self.file_url:
            raise ValueError("status needs text or a file")
        return self


class Group(Record):
    name: Text
    members: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @field_validator("members")
    @classmethod
    def dedupe_members(cls, members: List[str]) -> List[str]:
        seen = []
        for m in members:
            m = m.strip()
            if m and m not in seen:
                seen.append(m)
        return seen

    def has_member(self, identity: str) -> bool:
        return identity in self.members
