from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .engine import BetConvention


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return

    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        env_key = key.strip()
        if not env_key:
            continue

        # Shell/exported env vars win over file values.
        os.environ.setdefault(env_key, _strip_quotes(value.strip()))


def load_environment() -> None:
    backend_root = Path(__file__).resolve().parents[1]
    project_root = backend_root.parent

    _load_env_file(project_root / ".env")
    _load_env_file(backend_root / ".env")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True)
class ReplaySettings:
    settlement_delay: float = 1.5
    bet_convention: BetConvention = BetConvention.STREET_TOTAL
    hand_store_url: str | None = None
    hand_store_timeout_ms: int = 2500
    hand_store_poll_seconds: float = 2.0

    @classmethod
    def from_env(cls) -> "ReplaySettings":
        store_url = os.getenv("HAND_STORE_URL", "").strip() or None
        return cls(
            settlement_delay=max(0.0, _env_float("SETTLEMENT_DELAY_SECONDS", 1.5)),
            bet_convention=BetConvention(os.getenv("BET_CONVENTION", "street_total").strip().lower()),
            hand_store_url=store_url.rstrip("/") if store_url else None,
            hand_store_timeout_ms=int(os.getenv("HAND_STORE_TIMEOUT_MS", "2500")),
            hand_store_poll_seconds=max(0.1, _env_float("HAND_STORE_POLL_SECONDS", 2.0)),
        )
