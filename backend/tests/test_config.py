"""Tests for settings and engine configuration."""

import json

import pytest
from pydantic import ValidationError

from dealflow.config import (
    EngineConfig,
    ScoringWeights,
    Settings,
    SourceConfig,
    TablesConfig,
    load_engine_config,
)
from dealflow.core.exceptions import ConfigError


class TestSettings:
    """Tests for process settings."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgres://u:p@db/deals", "postgresql+asyncpg://u:p@db/deals"),
            ("postgresql://u:p@db/deals", "postgresql+asyncpg://u:p@db/deals"),
            ("sqlite:///./deals.db", "sqlite+aiosqlite:///./deals.db"),
            ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
        ],
    )
    def test_database_url_made_async(self, url, expected):
        assert Settings(_env_file=None, DATABASE_URL=url).DATABASE_URL == expected

    def test_credentials_for(self):
        """Test only non-empty credentials of the requested network are returned."""
        settings = Settings(_env_file=None, CJ_API_KEY="key", BESTBUY_API_KEY="bb")

        assert settings.credentials_for("cj") == {"api_key": "key"}
        assert settings.credentials_for("bestbuy") == {"api_key": "bb"}
        assert settings.credentials_for("amazon") == {}
        assert settings.credentials_for("unknown") == {}


class TestEngineConfig:
    """Tests for EngineConfig validation."""

    def test_defaults(self):
        config = EngineConfig()

        assert config.scoring.weights.price_history == 30
        assert config.dedup.similarity_threshold == 0.85
        assert config.price_history.all_time_low_tolerance == 1.02
        assert config.scheduler.tick_interval_seconds == 60
        assert config.tables.retailer_trust["amazon"] == 95
        assert {s.kind for s in config.sources} == {"affiliate", "rss", "scraper", "submission"}

    def test_camel_case_keys(self):
        """Test configuration documents may use camelCase keys."""
        config = EngineConfig.model_validate({
            "sources": [],
            "dedup": {"similarityThreshold": 0.9},
            "priceHistory": {"allTimeLowTolerance": 1.05},
            "scoring": {"weights": {
                "priceHistory": 40, "discount": 20, "quality": 20,
                "freshness": 10, "trust": 5, "engagement": 5,
            }},
        })

        assert config.dedup.similarity_threshold == 0.9
        assert config.price_history.all_time_low_tolerance == 1.05
        assert config.scoring.weights.price_history == 40

    def test_weights_must_total_100(self):
        with pytest.raises(ValidationError, match="sum to 100"):
            ScoringWeights(price_history=50)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            EngineConfig.model_validate({"dedup": {"threshold": 0.9}})
        with pytest.raises(ValidationError):
            EngineConfig.model_validate({"cache": {}})

    def test_threshold_out_of_range(self):
        with pytest.raises(ValidationError):
            EngineConfig.model_validate({"dedup": {"similarityThreshold": 1.5}})

    def test_duplicate_source_names(self):
        rss = {"kind": "rss", "name": "Feed", "url": "https://example.com/rss"}
        with pytest.raises(ValidationError, match="duplicate source names: Feed"):
            EngineConfig.model_validate({"sources": [rss, rss]})

    @pytest.mark.parametrize(
        "source",
        [
            {"kind": "rss", "name": "Feed"},
            {"kind": "scraper", "name": "Page", "url": "https://example.com"},
            {"kind": "affiliate", "name": "Net"},
            {"kind": "ftp", "name": "Other"},
        ],
    )
    def test_incomplete_source_rejected(self, source):
        with pytest.raises(ValidationError):
            SourceConfig.model_validate(source)

    def test_source_min_interval(self):
        source = SourceConfig(kind="submission", name="user-submissions", rate_limit_per_minute=300)
        assert source.min_interval == pytest.approx(0.2)

    def test_tables_require_default_entries(self):
        with pytest.raises(ValidationError, match="default"):
            TablesConfig(retailer_trust={"amazon": 95})


class TestLoadEngineConfig:
    """Tests for load_engine_config."""

    def test_empty_path_gives_defaults(self):
        assert load_engine_config("") == EngineConfig()
        assert load_engine_config(None) == EngineConfig()

    def test_load_file(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({
            "sources": [{"kind": "rss", "name": "Feed", "url": "https://example.com/rss",
                         "intervalMinutes": 20}],
            "maintenance": {"staleOfferDays": 14},
        }))

        config = load_engine_config(str(path))

        assert [s.name for s in config.sources] == ["Feed"]
        assert config.sources[0].interval_minutes == 20
        assert config.maintenance.stale_offer_days == 14

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            load_engine_config(str(tmp_path / "missing.json"))

    def test_invalid_document(self, tmp_path):
        """Test schema violations surface as ConfigError."""
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"scoring": {"weights": {"discount": 90}}}))

        with pytest.raises(ConfigError, match="Invalid engine config"):
            load_engine_config(str(path))

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError):
            load_engine_config(str(path))
