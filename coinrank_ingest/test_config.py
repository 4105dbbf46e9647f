import pytest

from dacite import DaciteError

from coinrank_ingest.config import (
    ConfigError,
    IngestionConfig,
    RunTime,
    load_config,
    parse_run_at,
)

BASE_ENV = {
    "API_KEY": "secret",
    "API_URL": "https://api.coinranking.com/v2/coins",
    "DATABASE_URL": "coins.duckdb",
}


def env_with(**overrides):
    env = dict(BASE_ENV)
    env.update(overrides)
    return env


class TestLoadConfig:

    def test_defaults(self):
        config = load_config(BASE_ENV)

        assert config.api.api_key == "secret"
        assert config.api.base_url == "https://api.coinranking.com/v2/coins"
        assert config.api.pages == 20
        assert config.api.page_size == 100
        assert config.api.rate_interval_ms == 2000
        assert config.api.rate_interval_seconds == 2.0
        assert config.api.request_timeout == 30.0
        assert config.api.page_retries == 0
        assert config.db_path == "coins.duckdb"
        assert config.run_at == RunTime(20, 32, 0)
        assert config.log_level == "INFO"

    @pytest.mark.parametrize("missing", ["API_KEY", "API_URL", "DATABASE_URL"])
    def test_missing_required_setting(self, missing):
        env = dict(BASE_ENV)
        del env[missing]

        with pytest.raises(ConfigError, match=missing):
            load_config(env)

    @pytest.mark.parametrize("value, expected", [("5", 5), ("abc", 20), ("0", 20), ("-3", 20), ("", 20)])
    def test_pages_fall_back_to_default(self, value, expected):
        assert load_config(env_with(PAGES=value)).api.pages == expected

    def test_overrides(self):
        config = load_config(env_with(
            RATE_INTERVAL_MS="500",
            REQUEST_TIMEOUT="7.5",
            PAGE_RETRIES="2",
            RUN_AT="02:17",
            LOG_LEVEL="debug"
        ))

        assert config.api.rate_interval_seconds == 0.5
        assert config.api.request_timeout == 7.5
        assert config.api.page_retries == 2
        assert config.run_at == RunTime(2, 17, 0)
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("name, value", [
        ("REQUEST_TIMEOUT", "-1"),
        ("RATE_INTERVAL_MS", "fast"),
        ("RUN_AT", "25:00"),
        ("LOG_LEVEL", "chatty"),
    ])
    def test_invalid_values(self, name, value):
        with pytest.raises(ConfigError):
            load_config(env_with(**{name: value}))


@pytest.mark.parametrize("value, expected", [
    ("20:32", RunTime(20, 32, 0)),
    ("20:32:15", RunTime(20, 32, 15)),
    (" 00:00:00 ", RunTime(0, 0, 0)),
])
def test_parse_run_at(value, expected):
    assert parse_run_at(value) == expected


@pytest.mark.parametrize("value", ["noon", "20", "20:60", "1:2:3:4", "aa:bb"])
def test_parse_run_at_invalid(value):
    with pytest.raises(ConfigError):
        parse_run_at(value)


def test_run_time_str():
    assert str(RunTime(2, 7, 0)) == "02:07:00"


class TestFromDict:

    def test_nested_dict(self):
        config = IngestionConfig.from_dict({
            "api": {"base_url": "http://x", "api_key": "k", "request_timeout": 5},
            "db_path": ":memory:",
            "run_at": {"hour": 1, "minute": 2, "second": 3}
        })

        assert config.api.request_timeout == 5.0
        assert config.run_at == RunTime(1, 2, 3)

    def test_unknown_keys_rejected(self):
        with pytest.raises(DaciteError):
            IngestionConfig.from_dict({
                "api": {"base_url": "http://x", "api_key": "k", "bogus": 1},
                "db_path": ":memory:"
            })
