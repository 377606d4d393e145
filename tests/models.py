"""Sample mapped models and repositories exercised by the test suite."""
from __future__ import annotations

import uuid
from typing import List, Optional

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tenant_query.db.base import Base, SoftDeleteMixin, TenantMixin, TimestampMixin, UUIDPkMixin
from tenant_query.repositories import (
    BaseRepository,
    DependentRelationRepository,
    PivotRepository,
    TenancyRepository,
)


class User(UUIDPkMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(200), nullable=False)


class Group(UUIDPkMixin, TimestampMixin, SoftDeleteMixin, TenantMixin, Base):
    __tablename__ = "groups"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)

    owner: Mapped[Optional[User]] = relationship()
    members: Mapped[List["Member"]] = relationship(back_populates="group")
    notes: Mapped[List["Note"]] = relationship(back_populates="group")


class Member(UUIDPkMixin, TimestampMixin, SoftDeleteMixin, TenantMixin, Base):
    __tablename__ = "members"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("groups.id"), nullable=True)

    group: Mapped[Optional[Group]] = relationship(back_populates="members")


class Note(UUIDPkMixin, TimestampMixin, Base):
    __tablename__ = "notes"

    body: Mapped[str] = mapped_column(String(500), nullable=False)
    group_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("groups.id"), nullable=True)

    group: Mapped[Optional[Group]] = relationship(back_populates="notes")


class Tag(UUIDPkMixin, Base):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("name"),)

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)


class GroupTag(UUIDPkMixin, Base):
    __tablename__ = "group_tags"
    __table_args__ = (UniqueConstraint("group_id", "tag_id"),)

    group_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("groups.id"), nullable=False)
    tag_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("tags.id"), nullable=False)


class GroupRepository(BaseRepository[Group]):
    model = Group
    relations = {"members": None, "owner": None, "notes": None}
    default_order = [("name", "ASC")]


class MemberRepository(BaseRepository[Member]):
    model = Member
    relations = {"group": {"owner": None}}
    default_order = [("name", "ASC")]


class NoteRepository(BaseRepository[Note]):
    model = Note
    relations = {"group": None}


class TagRepository(BaseRepository[Tag]):
    model = Tag
    default_order = [("name", "ASC")]


class TenantGroupRepository(TenancyRepository[Group]):
    model = Group
    relations = {"members": None}


class TenantMemberRepository(TenancyRepository[Member]):
    model = Member
    relations = {"group": None}


class GroupTagRepository(PivotRepository[GroupTag]):
    model = GroupTag
    target_foreign_key = "group_id"
    related_foreign_key = "tag_id"


class GroupNoteRepository(DependentRelationRepository[Note]):
    model = Note
    related_foreign_key = "group_id"
