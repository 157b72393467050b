from __future__ import annotations

import pytest
from pydantic import ValidationError

from isolation_anomalies.config import DEFAULT_DATABASE_URL, HarnessSettings


def test_defaults() -> None:
	settings = HarnessSettings.from_env({})
	assert settings.database_url == DEFAULT_DATABASE_URL
	assert settings.mysql_url.startswith("mysql+pymysql://")
	assert settings.trial_count == 1000
	assert settings.pool_size == 5
	assert settings.cas_max_attempts is None


def test_from_env() -> None:
	settings = HarnessSettings.from_env(
		{
			"DATABASE_URL": "postgresql+psycopg2://u:p@db:5432/x",
			"ANOMALY_TRIAL_COUNT": "100",
			"ANOMALY_POOL_SIZE": "2",
			"ANOMALY_CAS_MAX_ATTEMPTS": "50",
			"UNRELATED": "ignored",
		}
	)
	assert settings.database_url == "postgresql+psycopg2://u:p@db:5432/x"
	assert settings.trial_count == 100
	assert settings.pool_size == 2
	assert settings.cas_max_attempts == 50


def test_empty_values_fall_back_to_defaults() -> None:
	assert HarnessSettings.from_env({"ANOMALY_TRIAL_COUNT": ""}).trial_count == 1000


@pytest.mark.parametrize(
	"values",
	[
		{"pool_size": 1},
		{"trial_count": 0},
		{"cas_max_attempts": 0},
		{"unknown": 1},
	],
)
def test_invalid_settings(values) -> None:
	with pytest.raises(ValidationError):
		HarnessSettings(**values)
