"""Read-mostly cache of rank definitions.

``reload()`` builds a fresh dict and swaps it in with a single assignment,
so readers see either the old table or the new one, never a half-built one.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from gatekeeper.progression.models import RankDefinition, definition_key
from gatekeeper.progression.ranks import DEFAULT_RANK_NAMES, RankNames, next_rank
from gatekeeper.storage.base import StorageBackend

logger = structlog.get_logger()


class RankDefinitionCache:
    """Rank definitions keyed by ``main * 100 + sub``."""

    def __init__(self, names: RankNames = DEFAULT_RANK_NAMES) -> None:
        self._names = names
        self._definitions: dict[int, RankDefinition] = {}

    def replace(self, definitions: Iterable[RankDefinition]) -> None:
        """Swap in a whole new table."""
        table = {d.cache_key: d for d in definitions}
        self._definitions = table

    async def reload(self, storage: StorageBackend) -> int:
        """Rebuild the cache from storage. Returns the number of definitions loaded.

        On failure the previous table is kept.
        """
        definitions = await storage.get_all_rank_definitions()
        self.replace(definitions)
        logger.info("rank_definitions_loaded", count=len(definitions))
        return len(definitions)

    def get(self, main_rank: int, sub_rank: int) -> RankDefinition | None:
        return self._definitions.get(definition_key(main_rank, sub_rank))

    def next_definition(self, main_rank: int, sub_rank: int) -> RankDefinition | None:
        """Definition of the successor position, if both it and a successor exist."""
        try:
            successor = next_rank(main_rank, sub_rank, self._names)
        except ValueError:
            return None
        if successor is None:
            return None
        return self.get(successor.main_rank, successor.sub_rank)

    def __len__(self) -> int:
        return len(self._definitions)

    def all(self) -> list[RankDefinition]:
        return sorted(self._definitions.values(), key=lambda d: (d.main_rank, d.sub_rank))
