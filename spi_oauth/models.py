"""
SQLAlchemy models for the server-side browser sessions.
"""
from sqlalchemy import Float, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SessionRecord(Base):
    __tablename__ = "sessions"

    # SHA-256 of the cookie value; the raw session id never hits the DB
    id_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    # JSON object, one entry per session key (e.g. "flows")
    data: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    # Unix time; refreshed on every write (idle timeout)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)
