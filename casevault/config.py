import os
from dotenv import load_dotenv


def load():
    load_dotenv()
    return {
        "host": os.getenv("HOST", "127.0.0.1"),
        "port": int(os.getenv("PORT", "5000")),
        "debug": os.getenv("DEBUG", "false").lower() == "true",
        "secret": os.getenv("SECRET", "devsecret"),
        "database_dir": os.getenv("DATABASE_DIR", "database"),
        "media_dir": os.getenv("MEDIA_DIR", "media"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "opening_seconds": float(os.getenv("OPENING_SECONDS", "1.0")),
        "spin_seconds": float(os.getenv("SPIN_SECONDS", "5.0")),
        "roulette_length": int(os.getenv("ROULETTE_LENGTH", "100")),
        "free_case_cooldown_hours": float(os.getenv("FREE_CASE_COOLDOWN_HOURS", "8")),
        "pending_ttl_seconds": int(os.getenv("PENDING_TTL_SECONDS", "600")),
    }
