"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, Integer, String, Text

from smschat.storage import Base


DIRECTION_OUTBOUND = "outbound"
DIRECTION_INBOUND = "inbound"


class Message(Base):
    """
    SQLAlchemy model for chat messages relayed through the SMS provider.

    Table: messages
    provider_message_id is unique so status callbacks correlate to exactly
    one row. Timestamps are fixed-width ISO-8601 UTC strings.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String, nullable=False, index=True)
    phone_number = Column(String, nullable=False)
    message_body = Column(Text, nullable=False)
    direction = Column(String, nullable=False, default=DIRECTION_OUTBOUND)
    status = Column(String, nullable=False, index=True)
    provider_message_id = Column(String, nullable=True, unique=True, index=True)
    created_at = Column(String, nullable=False, index=True)
    updated_at = Column(String, nullable=False)


class User(Base):
    """
    Registered chat user.

    Table: users
    Only the bcrypt digest of the password is stored.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_name = Column(String, nullable=False, unique=True, index=True)
    password_digest = Column(String, nullable=False)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
