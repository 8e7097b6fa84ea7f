import os

from backend.replay.config import ReplaySettings, _load_env_file
from backend.replay.engine import BetConvention


def test_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("SETTLEMENT_DELAY_SECONDS", "0.25")
    monkeypatch.setenv("BET_CONVENTION", "Incremental")
    monkeypatch.setenv("HAND_STORE_URL", "https://hands.example/api/")
    monkeypatch.delenv("HAND_STORE_POLL_SECONDS", raising=False)

    settings = ReplaySettings.from_env()

    assert settings.settlement_delay == 0.25
    assert settings.bet_convention is BetConvention.INCREMENTAL
    assert settings.hand_store_url == "https://hands.example/api"
    assert settings.hand_store_poll_seconds == 2.0


def test_settings_defaults(monkeypatch) -> None:
    for name in ("SETTLEMENT_DELAY_SECONDS", "BET_CONVENTION", "HAND_STORE_URL"):
        monkeypatch.delenv(name, raising=False)

    settings = ReplaySettings.from_env()

    assert settings.bet_convention is BetConvention.STREET_TOTAL
    assert settings.hand_store_url is None
    assert settings.settlement_delay == 1.5


def test_env_file_does_not_override_shell(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BET_CONVENTION", "street_total")
    monkeypatch.delenv("REPLAY_TEST_ONLY", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\nBET_CONVENTION=incremental\nexport REPLAY_TEST_ONLY='quoted value'\n",
        encoding="utf-8",
    )

    _load_env_file(env_file)

    assert os.environ["BET_CONVENTION"] == "street_total"
    assert os.environ["REPLAY_TEST_ONLY"] == "quoted value"
    monkeypatch.delenv("REPLAY_TEST_ONLY")
