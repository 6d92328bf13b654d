"""
Database models for persistent storage.
"""
from datetime import datetime
from typing import Any
from sqlalchemy import String, BigInteger, DateTime, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Largest value a SQLite INTEGER column can hold
MAX_INSTALLATION_ID = 2**63 - 1


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in SQLite."""
    return datetime.utcnow()


def valid_installation_id(value: Any) -> bool:
    """Whether value is a positive id that fits the installation_id column."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 < value <= MAX_INSTALLATION_ID
    )


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class InstallationMapping(Base):
    """Binding from a provider installation/project id to tenant credentials."""
    
    __tablename__ = "installation_mappings"
    
    # GitHub installation ids and GitLab project ids are separate id spaces
    provider: Mapped[str] = mapped_column(String(16), primary_key=True)
    installation_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    organization_id: Mapped[int] = mapped_column(BigInteger, default=0, index=True)
    organization_label: Mapped[str] = mapped_column(String(255), default="")
    
    # Downstream credentials
    endpoint: Mapped[str] = mapped_column(String(512))
    auth_token: Mapped[str] = mapped_column(Text)
    webhook_secret: Mapped[str] = mapped_column(Text)
    default_environment: Mapped[str] = mapped_column(String(255), default="")
    enabled: Mapped[bool] = mapped_column(default=True)
    
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class SetupIntent(Base):
    """Pending tenant credentials awaiting the installation callback."""
    
    __tablename__ = "setup_intents"
    
    state: Mapped[str] = mapped_column(String(64), primary_key=True)
    provider: Mapped[str] = mapped_column(String(16), default="github")
    organization_id: Mapped[int] = mapped_column(BigInteger, default=0)
    organization_label: Mapped[str] = mapped_column(String(255), default="")
    
    endpoint: Mapped[str] = mapped_column(String(512))
    auth_token: Mapped[str] = mapped_column(Text)
    webhook_secret: Mapped[str] = mapped_column(Text)
    default_environment: Mapped[str] = mapped_column(String(255), default="")
    
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    
    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at
