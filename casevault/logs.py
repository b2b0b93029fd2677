import logging


FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

telemetry_logger = logging.getLogger("casevault.telemetry")


def setup(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=FORMAT)


def _fmt(value) -> str:
    text = str(value)
    return f'"{text}"' if not text or " " in text else text


def telemetry(event: str, **fields) -> None:
    """Emit one structured event line, e.g. ``case_opened user_id=3 case_id=alpha``."""
    parts = [event] + [f"{key}={_fmt(val)}" for key, val in sorted(fields.items())]
    telemetry_logger.info(" ".join(parts))
