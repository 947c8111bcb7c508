"""
SQLAlchemy ORM models.

``user`` belongs to the identity provider and is declared here only so the
token table can cascade on account deletion.  ``verification`` is a generic
key/value table; OAuth state rows live under the ``ynab_oauth_state:`` prefix.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import DeclarativeBase, relationship


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "user"

    id = Column(String(64), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(128))
    created_at = Column(DateTime(timezone=True), default=_now)

    ynab_token = relationship(
        "YnabToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )


class Verification(Base):
    __tablename__ = "verification"

    id = Column(String(64), primary_key=True, default=_uuid)
    identifier = Column(String(255), nullable=False, index=True)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class YnabToken(Base):
    __tablename__ = "ynab_token"

    id = Column(String(64), primary_key=True, default=_uuid)
    user_id = Column(
        String(64),
        ForeignKey("user.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    access_token = Column(Text, nullable=False)      # EncryptedSecret
    refresh_token = Column(Text, nullable=False)     # EncryptedSecret
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    user = relationship("User", back_populates="ynab_token")
