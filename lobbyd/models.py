"""In-memory lobby entities and their wire representations."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum

from .envelope import now_iso


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    REGULAR = "regular"
    ADMIN = "admin"


@dataclass(frozen=True)
class Identity:
    """A joined participant, valid for one connection's lifetime."""

    name: str
    role: Role = Role.REGULAR
    id: str = field(default_factory=new_id)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_wire(self) -> dict:
        return {"id": self.id, "name": self.name, "isAdmin": self.is_admin}


@dataclass(frozen=True)
class BanRecord:
    id: str
    name: str

    @classmethod
    def from_identity(cls, identity: Identity) -> BanRecord:
        return cls(id=identity.id, name=identity.name)

    def to_wire(self) -> dict:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class ChatMessage:
    author_id: str
    author_name: str
    text: str
    author_is_admin: bool = False
    timestamp: str = field(default_factory=now_iso)
    id: str = field(default_factory=new_id)

    @classmethod
    def by(cls, identity: Identity, text: str) -> ChatMessage:
        return cls(
            author_id=identity.id,
            author_name=identity.name,
            text=text,
            author_is_admin=identity.is_admin,
        )

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "userId": self.author_id,
            "userName": self.author_name,
            "text": self.text,
            "timestamp": self.timestamp,
            "isAdmin": self.author_is_admin,
        }


@dataclass(frozen=True)
class FeatureRequest:
    author_id: str
    author_name: str
    text: str
    timestamp: str = field(default_factory=now_iso)
    id: str = field(default_factory=new_id)

    @classmethod
    def by(cls, identity: Identity, text: str) -> FeatureRequest:
        return cls(author_id=identity.id, author_name=identity.name, text=text)

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "userId": self.author_id,
            "userName": self.author_name,
            "text": self.text,
            "timestamp": self.timestamp,
        }
