import logging
import random
from dataclasses import asdict, dataclass
from typing import Callable, Iterable

from casevault.opening.errors import NoEligibleRewards, NotFound


KIND_SKIN = "skin"
KIND_COINS = "coin_reward"
KINDS = {KIND_SKIN, KIND_COINS}
RNG = random.SystemRandom()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewardTableEntry:
    id: str
    kind: str
    weight: float
    never_drop: bool = False
    display_name: str = ""
    image_ref: str = ""
    monetary_value: int = 0
    rarity: str = ""

    @property
    def eligible(self) -> bool:
        return not self.never_drop and self.weight > 0

    def to_dict(self) -> dict:
        return asdict(self)

    def to_reward(self) -> dict:
        # Shape returned by the open-case procedure; weights stay server-side.
        return {
            "id": self.id,
            "kind": self.kind,
            "display_name": self.display_name,
            "monetary_value": int(self.monetary_value),
            "image_ref": self.image_ref,
            "rarity": self.rarity,
        }


def _weight(row: dict) -> float:
    custom = row.get("custom_probability")
    if custom is not None and float(custom) > 0:
        return float(custom)
    value = row.get("weight", row.get("probability"))
    return max(0.0, float(value or 0))


def entry_from_row(row: dict) -> RewardTableEntry:
    kind = str(row.get("kind") or KIND_SKIN)
    if kind not in KINDS:
        raise ValueError(f"unknown reward kind: {kind}")
    return RewardTableEntry(
        id=str(row["id"]),
        kind=kind,
        weight=_weight(row),
        never_drop=bool(row.get("never_drop")),
        display_name=str(row.get("display_name") or ""),
        image_ref=str(row.get("image_ref") or ""),
        monetary_value=int(row.get("monetary_value") or 0),
        rarity=str(row.get("rarity") or ""),
    )


def reward_from_payload(payload: dict) -> RewardTableEntry:
    """Rebuild an entry from the reward dict a procedure sent back.

    Awarded rewards carry no weight; they are never fed to the selector.
    """
    return RewardTableEntry(
        id=str(payload["id"]),
        kind=str(payload.get("kind") or KIND_SKIN),
        weight=float(payload.get("weight") or 0),
        never_drop=False,
        display_name=str(payload.get("display_name") or ""),
        image_ref=str(payload.get("image_ref") or ""),
        monetary_value=int(payload.get("monetary_value") or 0),
        rarity=str(payload.get("rarity") or ""),
    )


def eligible(entries: Iterable[RewardTableEntry]) -> list[RewardTableEntry]:
    return [e for e in entries if e.eligible]


def load_reward_table(case_id: str, fetch: Callable[[str], list[dict]]) -> list[RewardTableEntry]:
    entries = [entry_from_row(row) for row in fetch(case_id)]
    if not eligible(entries):
        raise NotFound(f"case {case_id} has no droppable rewards", case_id=str(case_id))
    logger.debug("loaded %d reward rows for case %s", len(entries), case_id)
    return entries


def select_winner(entries: Iterable[RewardTableEntry], rng=RNG) -> RewardTableEntry:
    pool = eligible(entries)
    if not pool:
        raise NoEligibleRewards("no eligible rewards to draw from")
    total = float(sum(e.weight for e in pool))
    if total <= 0:
        raise NoEligibleRewards("eligible rewards carry no weight")
    target = rng.random() * total
    upto = 0.0
    for entry in pool:
        upto += entry.weight
        if upto > target:
            return entry
    # target landed on total through float rounding
    return pool[-1]
