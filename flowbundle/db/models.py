"""SQLAlchemy 2.0 declarative models for flows, versions and stored files.

Uses dialect-agnostic types (Uuid, JSON) so models work with both
PostgreSQL (production) and SQLite (tests).

Ownership: Sector 1─* Flow 1─* Version 1─* File. Deleting a flow cascades
to its versions and files at the ORM level; the storage objects behind
the files are removed by the flow service before the rows go.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, BigInteger, ForeignKey, Integer, Text, UniqueConstraint, Uuid, func, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Sector(Base):
    __tablename__ = "sectors"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    # Short code used as the flow code prefix, e.g. "RH", "FIN", "TI"
    code: Mapped[str] = mapped_column(Text, unique=True, nullable=False)

    flows: Mapped[list["Flow"]] = relationship(back_populates="sector")


class Flow(Base):
    """A published process, identified by a per-sector code such as RH-001.

    current_version points at the Version.number shown by default.
    """

    __tablename__ = "flows"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    code: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'draft'"), default="draft"
    )
    sector_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("sectors.id", ondelete="SET NULL"), nullable=True
    )
    # Identity of the publisher as issued by the main platform's tokens
    published_by_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    published_by_name: Mapped[Optional[str]] = mapped_column(Text)
    current_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    views: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )

    sector: Mapped[Optional["Sector"]] = relationship(back_populates="flows")
    versions: Mapped[list["Version"]] = relationship(
        back_populates="flow", cascade="all, delete-orphan"
    )


class Version(Base):
    """Immutable snapshot of a flow's bundle.

    Files are only ever added while the archive is being ingested.
    """

    __tablename__ = "versions"
    __table_args__ = (UniqueConstraint("flow_id", "number"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    flow_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("flows.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )

    flow: Mapped["Flow"] = relationship(back_populates="versions")
    files: Mapped[list["File"]] = relationship(
        back_populates="version", cascade="all, delete-orphan"
    )


class File(Base):
    """One stored member of a bundle.

    original_path is the path exactly as it appeared in the archive
    ("libs/css/app.css") and is the key references are resolved against.
    storage_path is the object key in Supabase Storage.
    html_content holds a UTF-8 snapshot for markup files only.
    A version holds at most one file per original_path.
    """

    __tablename__ = "files"
    __table_args__ = (UniqueConstraint("version_id", "original_path"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    version_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("versions.id", ondelete="CASCADE"), nullable=False
    )
    original_path: Mapped[str] = mapped_column(Text, nullable=False)
    # Order of the member inside its archive; files are always listed by it
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger)
    mime_type: Mapped[Optional[str]] = mapped_column(Text)
    html_content: Mapped[Optional[str]] = mapped_column(Text)
    uploaded_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), nullable=False
    )

    version: Mapped["Version"] = relationship(back_populates="files")
