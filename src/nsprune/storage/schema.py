"""SQLAlchemy ORM schema for the SQLite reference store.

Defines all database tables: objects, object_links, refs, _store_meta.
"""

from __future__ import annotations

from sqlalchemy import ForeignKey, Index, LargeBinary, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all store ORM models."""

    pass


class ObjectRow(Base):
    """Content-addressable object storage. Keyed by SHA-256 of payload."""

    __tablename__ = "objects"

    object_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class ObjectLinkRow(Base):
    """Edge from an object to another object it references (parent, tree, blob).

    Compaction walks these edges to decide reachability.
    """

    __tablename__ = "object_links"

    source_hash: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("objects.object_hash", ondelete="CASCADE"),
        primary_key=True,
    )
    target_hash: Mapped[str] = mapped_column(String(64), primary_key=True)

    __table_args__ = (Index("ix_object_links_target", "target_hash"),)


class RefRow(Base):
    """Mutable named pointer to an object."""

    __tablename__ = "refs"

    ref_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    target_hash: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("objects.object_hash"),
        nullable=False,
    )


class StoreMetaRow(Base):
    """Key-value metadata (schema version)."""

    __tablename__ = "_store_meta"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
