import logging

from casevault.database import connect
from casevault.opening.rewards import KIND_COINS, KIND_SKIN


logger = logging.getLogger(__name__)

SKINS = [
    ("p250_sand_dune", "P250 | Sand Dune", "Pistol", "Consumer Grade", 3),
    ("mp9_storm", "MP9 | Storm", "SMG", "Consumer Grade", 4),
    ("nova_predator", "Nova | Predator", "Shotgun", "Industrial Grade", 9),
    ("galil_sage_spray", "Galil AR | Sage Spray", "Rifle", "Industrial Grade", 11),
    ("ump45_briefing", "UMP-45 | Briefing", "SMG", "Mil-Spec Grade", 35),
    ("famas_pulse", "FAMAS | Pulse", "Rifle", "Mil-Spec Grade", 48),
    ("usp_s_orion", "USP-S | Orion", "Pistol", "Restricted", 140),
    ("m4a1_s_decimator", "M4A1-S | Decimator", "Rifle", "Classified", 420),
    ("ak47_vulcan", "AK-47 | Vulcan", "Rifle", "Covert", 1900),
    ("awp_asiimov", "AWP | Asiimov", "Sniper Rifle", "Covert", 2600),
    ("karambit_fade", "Karambit | Fade", "Knife", "Rare Special Item", 9500),
]

COIN_REWARDS = [
    ("coins_25", "25 coins", 25),
    ("coins_150", "150 coins", 150),
]

# case id, name, price, free, [(kind, reward id, probability, never_drop)]
CASES = [
    (
        "daily",
        "Daily Free Case",
        0,
        True,
        [
            ("coin_reward", "coins_25", 70.0, False),
            ("skin", "p250_sand_dune", 20.0, False),
            ("skin", "mp9_storm", 9.0, False),
            ("coin_reward", "coins_150", 1.0, False),
        ],
    ),
    (
        "recruit",
        "Recruit Case",
        50,
        False,
        [
            ("skin", "p250_sand_dune", 30.0, False),
            ("skin", "mp9_storm", 25.0, False),
            ("skin", "nova_predator", 20.0, False),
            ("skin", "galil_sage_spray", 14.0, False),
            ("skin", "ump45_briefing", 8.0, False),
            ("skin", "usp_s_orion", 2.7, False),
            ("skin", "m4a1_s_decimator", 0.3, False),
        ],
    ),
    (
        "operator",
        "Operator Case",
        250,
        False,
        [
            ("skin", "ump45_briefing", 35.0, False),
            ("skin", "famas_pulse", 30.0, False),
            ("skin", "usp_s_orion", 20.0, False),
            ("skin", "m4a1_s_decimator", 10.0, False),
            ("skin", "ak47_vulcan", 3.5, False),
            ("skin", "awp_asiimov", 1.5, False),
            # preview only, never drawn
            ("skin", "karambit_fade", 0.5, True),
        ],
    ),
]

DAILY_REWARDS = [(1, 10), (2, 15), (3, 20), (4, 30), (5, 40), (6, 60), (7, 100)]

TASKS = [
    ("join_channel", "Join the announcements channel", 25),
    ("link_trade_url", "Save a Steam trade URL", 40),
    ("invite_friend", "Invite a friend", 100),
]


def seed(force: bool = False) -> bool:
    """Load the demo catalog into an empty database."""
    with connect() as db:
        db.execute("BEGIN IMMEDIATE")
        if not force and db.execute("SELECT 1 FROM cases LIMIT 1").fetchone():
            db.execute("ROLLBACK")
            return False
        db.executemany(
            "INSERT OR REPLACE INTO skins (id, name, weapon_type, rarity, price) VALUES (?, ?, ?, ?, ?)",
            SKINS,
        )
        db.executemany("INSERT OR REPLACE INTO coin_rewards (id, name, amount) VALUES (?, ?, ?)", COIN_REWARDS)
        for case_id, name, price, free, rewards in CASES:
            db.execute(
                "INSERT OR REPLACE INTO cases (id, name, price, is_free, is_active) VALUES (?, ?, ?, ?, 1)",
                (case_id, name, price, int(free)),
            )
            db.execute("DELETE FROM case_rewards WHERE case_id = ?", (case_id,))
            for kind, reward_id, probability, never_drop in rewards:
                db.execute(
                    """
                    INSERT INTO case_rewards (case_id, reward_type, skin_id, coin_reward_id, probability, never_drop)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        case_id,
                        kind,
                        reward_id if kind == KIND_SKIN else None,
                        reward_id if kind == KIND_COINS else None,
                        probability,
                        int(never_drop),
                    ),
                )
        db.executemany("INSERT OR REPLACE INTO daily_rewards (day_number, reward_coins) VALUES (?, ?)", DAILY_REWARDS)
        db.executemany("INSERT OR REPLACE INTO tasks (id, title, reward_coins) VALUES (?, ?, ?)", TASKS)
        db.execute("COMMIT")
    logger.info("seeded %d cases, %d skins", len(CASES), len(SKINS))
    return True
