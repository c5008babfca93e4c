"""XP modifier tables and the achievement catalog.

Both are data, not code: a per-event-type multiplier mapping and a catalog
keyed by advancement id. Unknown event types and unknown achievement ids
fall back to defaults instead of failing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from gatekeeper.config import DEFAULT_XP_MODIFIERS

CATALOG_EVENT_TYPE = "blaze_and_cave"
DEFAULT_MODIFIER = 1.0


def _frozen(mapping: Mapping[str, float]) -> Mapping[str, float]:
    return MappingProxyType({k.lower(): float(v) for k, v in mapping.items()})


@dataclass(frozen=True)
class XPModifiers:
    """Per-event-type XP multipliers. Lookup is case-insensitive."""

    table: Mapping[str, float] = field(default_factory=lambda: _frozen(DEFAULT_XP_MODIFIERS))
    default: float = DEFAULT_MODIFIER

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, float], default: float = DEFAULT_MODIFIER) -> XPModifiers:
        return cls(table=_frozen(mapping), default=default)

    def modifier_for(self, event_type: str) -> float:
        return self.table.get(event_type.lower(), self.default)


@dataclass(frozen=True)
class CatalogMultipliers:
    easy: float = 1.0
    medium: float = 1.25
    hard: float = 1.5
    insane: float = 2.0
    terralith_bonus: float = 0.1
    hardcore_bonus: float = 0.5

    def for_difficulty(self, difficulty: str | None) -> float:
        """Multiplier for a difficulty name; unknown difficulties count as 1.0."""
        return {
            "easy": self.easy,
            "medium": self.medium,
            "hard": self.hard,
            "insane": self.insane,
        }.get((difficulty or "").lower(), DEFAULT_MODIFIER)


@dataclass(frozen=True)
class AchievementEntry:
    """One advancement in the catalog."""

    key: str
    name: str
    base_xp: int
    difficulty: str = "easy"
    category: str = ""
    terralith: bool = False
    hardcore: bool = False
    description: str = ""

    def compute_xp(self, base_xp: int, multipliers: CatalogMultipliers) -> int:
        """Scale ``base_xp`` by difficulty and variant bonuses, truncated to int."""
        xp = base_xp * multipliers.for_difficulty(self.difficulty)
        if self.terralith:
            xp *= 1 + multipliers.terralith_bonus
        if self.hardcore:
            xp *= 1 + multipliers.hardcore_bonus
        return int(xp)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AchievementEntry:
        return cls(
            key=str(data["key"]),
            name=str(data.get("name", data["key"])),
            base_xp=int(data.get("base_xp", data.get("xp", 0))),
            difficulty=str(data.get("difficulty", "easy")).lower(),
            category=str(data.get("category", "")),
            terralith=bool(data.get("terralith", False)),
            hardcore=bool(data.get("hardcore", False)),
            description=str(data.get("description", "")),
        )


DEFAULT_CATALOG_ENTRIES: list[dict[str, Any]] = [
    {
        "key": "blazeandcave:overworld/get_wood",
        "name": "Getting Wood",
        "category": "overworld",
        "base_xp": 10,
        "difficulty": "easy",
        "description": "Punch a tree until a block of wood pops out",
    },
    {
        "key": "blazeandcave:overworld/stone_age",
        "name": "Stone Age",
        "category": "overworld",
        "base_xp": 15,
        "difficulty": "easy",
        "description": "Mine stone with your new pickaxe",
    },
    {
        "key": "blazeandcave:nether/enter_nether",
        "name": "We Need to Go Deeper",
        "category": "nether",
        "base_xp": 25,
        "difficulty": "medium",
        "description": "Build, light and enter a Nether Portal",
    },
    {
        "key": "blazeandcave:end/enter_end",
        "name": "The End?",
        "category": "end",
        "base_xp": 50,
        "difficulty": "hard",
        "description": "Enter the End Portal",
    },
    {
        "key": "blazeandcave:end/kill_dragon",
        "name": "Free the End",
        "category": "end",
        "base_xp": 100,
        "difficulty": "insane",
        "description": "Defeat the Ender Dragon",
    },
    {
        "key": "blazeandcave:terralith/explore_biomes",
        "name": "Terralith Explorer",
        "category": "terralith",
        "base_xp": 30,
        "difficulty": "medium",
        "terralith": True,
        "description": "Discover Terralith biomes",
    },
    {
        "key": "blazeandcave:hardcore/survive_nights",
        "name": "Hardcore Survivor",
        "category": "hardcore",
        "base_xp": 40,
        "difficulty": "hard",
        "hardcore": True,
        "description": "Survive nights in hardcore mode",
    },
]


class AchievementCatalog:
    """Achievement entries keyed by advancement id."""

    def __init__(self, entries: Iterable[AchievementEntry] = ()) -> None:
        self._entries: dict[str, AchievementEntry] = {e.key: e for e in entries}

    @classmethod
    def from_entries(cls, entries: Iterable[Mapping[str, Any] | AchievementEntry]) -> AchievementCatalog:
        return cls(e if isinstance(e, AchievementEntry) else AchievementEntry.from_dict(e) for e in entries)

    @classmethod
    def default(cls) -> AchievementCatalog:
        return cls.from_entries(DEFAULT_CATALOG_ENTRIES)

    def get(self, key: str) -> AchievementEntry | None:
        return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def by_category(self, category: str) -> list[AchievementEntry]:
        return [e for e in self._entries.values() if e.category == category]
