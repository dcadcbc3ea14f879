import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from ledger.currency import CurrencyOption, resolve_currency


@dataclass(frozen=True)
class Settings:
    api_url: Optional[str]
    api_token: Optional[str]
    timeout: float
    refresh_interval: float
    currency: CurrencyOption
    log_level: str
    seed_path: str


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


def load_settings(dotenv: bool = True) -> Settings:
    if dotenv:
        load_dotenv()

    return Settings(
        api_url=os.getenv("LEDGER_API_URL") or None,
        api_token=os.getenv("LEDGER_API_TOKEN") or None,
        timeout=_float("LEDGER_TIMEOUT", 5.0),
        refresh_interval=_float("LEDGER_REFRESH_INTERVAL", 30.0),
        currency=resolve_currency(os.getenv("LEDGER_CURRENCY")),
        log_level=os.getenv("LEDGER_LOG_LEVEL", "INFO").upper(),
        seed_path=os.getenv("LEDGER_SEED", "data/seed.json"),
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
