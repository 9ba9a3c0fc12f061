# models.py - Database models for BoardForge
# Only credentials live in the database: generated boards are handed back to
# the caller and never stored here.

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer, Text, Index,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


class AIProvider(str, PyEnum):
    GOOGLE = "google"
    OPENAI = "openai"
    GROQ = "groq"


class AIToken(Base):
    """API credential for a generative backend, managed by administrators.

    An active row overrides the provider's environment variable. ``config``
    holds ``model``, ``maxTokens``, ``temperature`` and ``timeout``.
    """
    __tablename__ = "ai_tokens"

    id = Column(String(36), primary_key=True, default=new_uuid)
    provider = Column(String(32), nullable=False, default=AIProvider.GOOGLE.value)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    token = Column(Text, nullable=False)
    config = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_ai_tokens_provider_active", "provider", "is_active"),
    )
