from dataclasses import dataclass, field, replace

from casevault.opening.errors import SynchronizationMismatch
from casevault.opening.rewards import RNG, RewardTableEntry, eligible, select_winner


ROULETTE_LENGTH = 100
WINNER_BAND = (0.80, 0.85)


class SequenceFrozen(RuntimeError):
    pass


@dataclass
class RouletteSequence:
    items: list[RewardTableEntry]
    winner_index: int
    frozen: bool = False
    revision: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        if not 0 <= int(self.winner_index) < len(self.items):
            raise ValueError(f"winner index {self.winner_index} outside 0..{len(self.items) - 1}")
        self.winner_index = int(self.winner_index)

    @property
    def winner(self) -> RewardTableEntry:
        return self.items[self.winner_index]

    def freeze(self) -> "RouletteSequence":
        self.frozen = True
        return self

    def with_winner(self, reward: RewardTableEntry) -> "RouletteSequence":
        if self.frozen:
            raise SequenceFrozen("sequence is frozen once the spin has started")
        items = list(self.items)
        items[self.winner_index] = reward
        return replace(self, items=items, revision=self.revision + 1)

    def verify(self, reward: RewardTableEntry) -> None:
        if self.winner.id != reward.id:
            raise SynchronizationMismatch(self.winner.id, reward.id)

    def to_dict(self) -> dict:
        return {
            "items": [item.to_reward() for item in self.items],
            "winner_index": self.winner_index,
            "frozen": self.frozen,
        }


def pick_winner_index(length: int, rng=RNG) -> int:
    lo = int(length * WINNER_BAND[0])
    hi = max(lo, int(length * WINNER_BAND[1]))
    return min(length - 1, rng.randint(lo, hi))


def build_sequence(
    winner: RewardTableEntry,
    pool: list[RewardTableEntry],
    length: int = ROULETTE_LENGTH,
    rng=RNG,
    winner_index: int | None = None,
) -> RouletteSequence:
    size = int(length)
    if size < 1:
        raise ValueError("roulette needs at least one slot")
    index = pick_winner_index(size, rng) if winner_index is None else int(winner_index)
    decoys = eligible(pool)
    if not decoys:
        return RouletteSequence(items=[winner] * size, winner_index=index)
    items = [winner if i == index else select_winner(decoys, rng) for i in range(size)]
    return RouletteSequence(items=items, winner_index=index)


def sequence_from_payload(items: list[RewardTableEntry], winner_index: int) -> RouletteSequence:
    return RouletteSequence(items=list(items), winner_index=int(winner_index))
