from casevault.database import applyledger, syncwallet


SIGNUP_GRANT_COINS = 500

TX_REWARD = "reward"
TX_ADJUSTMENT = "adjustment"
TX_CASE_OPEN = "case_open"
TX_CASE_SELL = "case_sell"
TX_SKIN_SELL = "skin_sell"
TX_PROMO = "promo_code"
TX_DAILY = "daily_reward"
TX_TASK = "task_reward"
TX_QUIZ = "quiz_reward"
TX_REFERRAL = "referral_reward"


def get_balance(user_id: int) -> int:
    # Wallet follows the immutable ledger; resync before every read.
    return syncwallet(int(user_id))


def adjust_coins(user_id: int, amount: int, description: str, reference_id: str | None = None) -> bool:
    value = int(amount)
    if value == 0:
        return False
    return applyledger(int(user_id), value, TX_ADJUSTMENT, description, reference_id)
