"""The 25 x 7 rank lattice: names, ordering and successor computation.

Everything here is pure. Name tables are carried by an immutable
``RankNames`` value passed in by the caller; ``DEFAULT_RANK_NAMES`` is the
stock progression.
"""

from __future__ import annotations

from dataclasses import dataclass

MAIN_RANK_NAMES: tuple[str, ...] = (
    "bystander", "onlooker", "wanderer", "traveller", "explorer",
    "adventurer", "surveyor", "navigator", "journeyman", "pathfinder",
    "trailblazer", "pioneer", "craftsman", "specialist", "artisan",
    "veteran", "sage", "luminary", "titan", "legend",
    "eternal", "ascendant", "celestial", "divine", "deity",
)

SUB_RANK_NAMES: tuple[str, ...] = (
    "novice", "apprentice", "adept", "master", "heroic", "mythic", "immortal",
)

UNKNOWN = "unknown"
UNKNOWN_RANK = "unknown rank"


@dataclass(frozen=True)
class RankNames:
    """Display names for both lattice axes, in progression order."""

    main: tuple[str, ...] = MAIN_RANK_NAMES
    sub: tuple[str, ...] = SUB_RANK_NAMES

    @property
    def max_main(self) -> int:
        return len(self.main)

    @property
    def max_sub(self) -> int:
        return len(self.sub)

    @property
    def total_positions(self) -> int:
        return self.max_main * self.max_sub


DEFAULT_RANK_NAMES = RankNames()


@dataclass(frozen=True, order=True)
class RankPosition:
    """A point in the lattice. Field order makes comparison follow progression."""

    main_rank: int
    sub_rank: int

    def ordinal(self, names: RankNames = DEFAULT_RANK_NAMES) -> int:
        """Total-order key: ``main * subs_per_main + sub``."""
        return self.main_rank * names.max_sub + self.sub_rank

    def is_valid(self, names: RankNames = DEFAULT_RANK_NAMES) -> bool:
        return 1 <= self.main_rank <= names.max_main and 1 <= self.sub_rank <= names.max_sub


STARTING_POSITION = RankPosition(1, 1)
FINAL_POSITION = RankPosition(DEFAULT_RANK_NAMES.max_main, DEFAULT_RANK_NAMES.max_sub)


def next_rank(main_rank: int, sub_rank: int, names: RankNames = DEFAULT_RANK_NAMES) -> RankPosition | None:
    """Return the successor of ``(main_rank, sub_rank)``, or None at the terminal position.

    Raises:
        ValueError: If the given position is outside the lattice.
    """
    if not RankPosition(main_rank, sub_rank).is_valid(names):
        msg = f"Rank position ({main_rank}, {sub_rank}) is outside the lattice"
        raise ValueError(msg)

    if sub_rank < names.max_sub:
        return RankPosition(main_rank, sub_rank + 1)
    if main_rank < names.max_main:
        return RankPosition(main_rank + 1, 1)
    return None


def clamp_position(main_rank: int, sub_rank: int, names: RankNames = DEFAULT_RANK_NAMES) -> RankPosition:
    """Pull an out-of-range position back into the lattice."""
    main = min(max(main_rank, 1), names.max_main)
    sub = min(max(sub_rank, 1), names.max_sub)
    return RankPosition(main, sub)


def main_rank_name(main_rank: int, names: RankNames = DEFAULT_RANK_NAMES) -> str:
    if 1 <= main_rank <= names.max_main:
        return names.main[main_rank - 1]
    return UNKNOWN


def sub_rank_name(sub_rank: int, names: RankNames = DEFAULT_RANK_NAMES) -> str:
    if 1 <= sub_rank <= names.max_sub:
        return names.sub[sub_rank - 1]
    return UNKNOWN


def format_rank(main_rank: int, sub_rank: int, names: RankNames = DEFAULT_RANK_NAMES) -> str:
    """Render ``"<sub name> <main name>"``, e.g. ``"novice bystander"``."""
    if not RankPosition(main_rank, sub_rank).is_valid(names):
        return UNKNOWN_RANK
    return f"{sub_rank_name(sub_rank, names)} {main_rank_name(main_rank, names)}"


def parse_main_rank(name: str | None, names: RankNames = DEFAULT_RANK_NAMES) -> int:
    """Main rank id for a name (case-insensitive); 0 when unknown."""
    if not name:
        return 0
    try:
        return names.main.index(name.strip().lower()) + 1
    except ValueError:
        return 0


def parse_sub_rank(name: str | None, names: RankNames = DEFAULT_RANK_NAMES) -> int:
    """Sub rank id for a name (case-insensitive); 0 when unknown."""
    if not name:
        return 0
    try:
        return names.sub.index(name.strip().lower()) + 1
    except ValueError:
        return 0


def rank_progress(main_rank: int, sub_rank: int, names: RankNames = DEFAULT_RANK_NAMES) -> dict:
    """Progress through the whole lattice.

    Returns:
        dict with ``position`` (1-based), ``total``, ``percent`` and a
        ``label`` such as ``"Rank 9/175 (4.6% complete)"``.
    """
    position = clamp_position(main_rank, sub_rank, names)
    completed = (position.main_rank - 1) * names.max_sub + (position.sub_rank - 1)
    total = names.total_positions
    percent = completed / total * 100
    return {
        "position": completed + 1,
        "total": total,
        "percent": round(percent, 1),
        "label": f"Rank {completed + 1}/{total} ({percent:.1f}% complete)",
    }
