"""Default rank definitions — one per lattice position (25 x 7 = 175)."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.db.models import RankDefinitionRow
from gatekeeper.progression.models import RankDefinition
from gatekeeper.progression.ranks import DEFAULT_RANK_NAMES, RankNames, format_rank, main_rank_name

logger = logging.getLogger(__name__)


def required_time_minutes(main_rank: int, sub_rank: int) -> int:
    """Playtime threshold: grows by 1.5x per lattice step, starting at one hour."""
    return int(1.5 ** (main_rank + sub_rank - 2) * 60)


def required_achievements(main_rank: int, sub_rank: int) -> int:
    return (main_rank - 1) * 7 + (sub_rank - 1)


def default_rank_definitions(names: RankNames = DEFAULT_RANK_NAMES) -> list[RankDefinition]:
    """Build the stock definition table for every position in ``names``."""
    return [
        RankDefinition(
            main_rank=main,
            sub_rank=sub,
            rank_name=format_rank(main, sub, names),
            required_time_minutes=required_time_minutes(main, sub),
            required_achievements=required_achievements(main, sub),
        )
        for main in range(1, names.max_main + 1)
        for sub in range(1, names.max_sub + 1)
    ]


async def seed_rank_definitions(db: AsyncSession, names: RankNames = DEFAULT_RANK_NAMES) -> int:
    """Insert the default definitions if the table is empty.

    Returns the number of rows inserted (0 when definitions already exist).
    """
    existing = await db.execute(select(func.count()).select_from(RankDefinitionRow))
    if existing.scalar_one() > 0:
        return 0

    definitions = default_rank_definitions(names)
    db.add_all([
        RankDefinitionRow(
            main_rank=d.main_rank,
            sub_rank=d.sub_rank,
            rank_name=d.rank_name,
            main_rank_name=main_rank_name(d.main_rank, names),
            required_time_minutes=d.required_time_minutes,
            required_achievements=d.required_achievements,
            discord_role_id=d.discord_role_id,
            rewards_economy=d.rewards.economy_amount,
            rewards_commands=list(d.rewards.commands),
        )
        for d in definitions
    ])
    await db.commit()
    logger.info("Seeded %d rank definitions", len(definitions))
    return len(definitions)
