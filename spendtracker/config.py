"""Runtime settings read from the environment.

Entrypoints call ``load_dotenv()`` first so a local ``.env`` can provide
any of the ``SPENDTRACKER_*`` variables below.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from spendtracker.logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_DATA_DIR = Path.cwd() / "data"
DEFAULT_DEBOUNCE_MS = 300
DEFAULT_RETRY_MS = 3000
DEFAULT_HIGH_DAILY_SPEND = 1000.0
DEFAULT_CURRENCY_SYMBOL = "₹"


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number, using %s", name, raw, default)
        return default
    if value < 0:
        logger.warning("Ignoring %s=%r: negative, using %s", name, raw, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    save_debounce_ms: int = DEFAULT_DEBOUNCE_MS
    save_retry_ms: int = DEFAULT_RETRY_MS
    high_daily_spend: float = DEFAULT_HIGH_DAILY_SPEND
    currency_symbol: str = DEFAULT_CURRENCY_SYMBOL

    @property
    def save_debounce(self) -> float:
        return self.save_debounce_ms / 1000

    @property
    def save_retry(self) -> float:
        return self.save_retry_ms / 1000

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            data_dir=Path(env.get("SPENDTRACKER_DATA_DIR") or DEFAULT_DATA_DIR),
            save_debounce_ms=int(_number(env, "SPENDTRACKER_SAVE_DEBOUNCE_MS", DEFAULT_DEBOUNCE_MS)),
            save_retry_ms=int(_number(env, "SPENDTRACKER_SAVE_RETRY_MS", DEFAULT_RETRY_MS)),
            high_daily_spend=_number(env, "SPENDTRACKER_HIGH_DAILY_SPEND", DEFAULT_HIGH_DAILY_SPEND),
            currency_symbol=env.get("SPENDTRACKER_CURRENCY_SYMBOL") or DEFAULT_CURRENCY_SYMBOL,
        )
