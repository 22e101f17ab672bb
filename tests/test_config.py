from pathlib import Path

from spendtracker.config import DEFAULT_DATA_DIR, Settings


def test_defaults_from_empty_env():
    settings = Settings.from_env({})
    assert settings == Settings()
    assert settings.data_dir == DEFAULT_DATA_DIR
    assert settings.save_debounce == 0.3
    assert settings.save_retry == 3.0
    assert settings.currency_symbol == "₹"


def test_values_from_env():
    settings = Settings.from_env({
        "SPENDTRACKER_DATA_DIR": "/tmp/spend",
        "SPENDTRACKER_SAVE_DEBOUNCE_MS": "50",
        "SPENDTRACKER_SAVE_RETRY_MS": "1500",
        "SPENDTRACKER_HIGH_DAILY_SPEND": "250.5",
        "SPENDTRACKER_CURRENCY_SYMBOL": "$",
    })
    assert settings.data_dir == Path("/tmp/spend")
    assert settings.save_debounce == 0.05
    assert settings.save_retry_ms == 1500
    assert settings.high_daily_spend == 250.5
    assert settings.currency_symbol == "$"


def test_bad_numbers_fall_back_to_defaults(caplog):
    settings = Settings.from_env({
        "SPENDTRACKER_SAVE_DEBOUNCE_MS": "soon",
        "SPENDTRACKER_SAVE_RETRY_MS": "-5",
        "SPENDTRACKER_HIGH_DAILY_SPEND": "  ",
    })
    assert settings.save_debounce_ms == 300
    assert settings.save_retry_ms == 3000
    assert settings.high_daily_spend == 1000.0
    assert "SPENDTRACKER_SAVE_DEBOUNCE_MS" in caplog.text
    assert "SPENDTRACKER_SAVE_RETRY_MS" in caplog.text
