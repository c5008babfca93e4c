"""ORM models backing the SQL storage backend.

Column types stay portable (no PostgreSQL-only types) so the same models run
against PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.db.base import Base, BigIntPK


# ---------------------------------------------------------------------------
# Progression
# ---------------------------------------------------------------------------


class PlayerRankRow(Base):
    """One row per player: current lattice position and progression counters."""

    __tablename__ = "player_ranks"

    player_uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    main_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    sub_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    join_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    play_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    achievements_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_promotion: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class RankDefinitionRow(Base):
    """Reference data: thresholds and rewards for one lattice position."""

    __tablename__ = "rank_definitions"
    __table_args__ = (UniqueConstraint("main_rank", "sub_rank", name="uq_rank_definitions_position"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    main_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    sub_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    rank_name: Mapped[str] = mapped_column(String(100), nullable=False)
    main_rank_name: Mapped[str] = mapped_column(String(50), nullable=False)
    required_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_achievements: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discord_role_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rewards_economy: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rewards_commands: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)


class RankPromotionRow(Base):
    """Append-only promotion history."""

    __tablename__ = "rank_promotions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    player_uuid: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    from_main_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    from_sub_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    to_main_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    to_sub_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------


class XPEventRow(Base):
    """Accepted XP event: audit record and rate-limit window substrate."""

    __tablename__ = "xp_events"
    __table_args__ = (
        Index("ix_xp_events_rate_key", "player_uuid", "event_type", "event_source", "timestamp"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    player_uuid: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    event_source: Mapped[str] = mapped_column(String(128), nullable=False)
    xp_gained: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    server_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)


class XPGainLogRow(Base):
    """XP credited to a player's progression pool."""

    __tablename__ = "xp_gain_log"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    player_uuid: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AchievementLogRow(Base):
    __tablename__ = "achievement_log"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    player_uuid: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    achievement: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Whitelist / verification
# ---------------------------------------------------------------------------


class WhitelistRow(Base):
    __tablename__ = "whitelist"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    player_uuid: Mapped[str | None] = mapped_column(String(36), nullable=True, unique=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PlayerVerificationRow(Base):
    __tablename__ = "player_verifications"

    player_uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    state: Mapped[str] = mapped_column(String(16), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LinkedIdentityRow(Base):
    """Chat-platform account bound to a Minecraft account."""

    __tablename__ = "linked_identities"

    player_uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    external_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    external_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    linked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
