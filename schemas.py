"""
Document schemas for the store rating service.

MongoDB collections are defined below using Pydantic models:
- accounts: every identity (admin, user, store_owner)
- stores: rated stores, each owned by exactly one store_owner account
- ratings: one document per (user_id, store_id) pair

Accounts and stores use numeric ids allocated from the ``counters``
collection; ratings are identified by their (user_id, store_id) pair.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["admin", "user", "store_owner"]

ADMIN = "admin"
USER = "user"
STORE_OWNER = "store_owner"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(BaseModel):
    id: int
    name: str = Field(..., max_length=60)
    email: str
    password_hash: str = Field(..., description="BCrypt hash of password")
    address: Optional[str] = Field(None, max_length=400)
    role: Role = Field("user")
    store_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump()
        doc["_id"] = doc.pop("id")
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Account":
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls(id=doc["_id"], **data)

    def public(self) -> Dict[str, Any]:
        return public_account(self.model_dump())


class Store(BaseModel):
    id: int
    name: str = Field(..., max_length=60)
    email: str
    address: Optional[str] = Field(None, max_length=400)
    owner_id: Optional[int] = Field(None, description="Reference to the owning account id")
    created_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump()
        doc["_id"] = doc.pop("id")
        return doc


class Rating(BaseModel):
    user_id: int
    store_id: int
    rating: int = Field(..., ge=1, le=5)
    created_at: datetime
    updated_at: datetime


def sanitize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = d.pop("_id")
    return d


def public_account(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = sanitize(doc)
    return {
        "id": d["id"],
        "name": d.get("name"),
        "email": d.get("email"),
        "address": d.get("address"),
        "role": d.get("role"),
        "store_id": d.get("store_id"),
    }
