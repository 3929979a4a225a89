"""Pydantic models persisted in the keyed store."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Account(BaseModel):
    """A registered reader of the feed.

    ``addresses`` only ever grows, and only with addresses minted by the
    node for this account.
    """

    username: str
    addresses: set[str] = Field(default_factory=set)
    password_hash: str
    salt: str                      # hex-encoded, 16 random bytes

    @property
    def key(self) -> bytes:
        """The store key for this account."""
        return account_key(self.username)

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> Account:
        return cls.model_validate_json(raw)


def account_key(username: str) -> bytes:
    return username.encode("utf-8")
