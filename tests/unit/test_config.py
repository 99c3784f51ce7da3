# tests/unit/test_config.py
"""Unit tests for run configuration."""

from pathlib import Path

import pytest

from tidecopy.config import RunConfig
from tidecopy.exceptions import ConfigError


def test_from_env_reads_prefixed_variables() -> None:
    """
    Tests that ``TIDECOPY_*`` variables override defaults and that explicit
    overrides win over both, while None overrides are ignored.
    """
    env = {"TIDECOPY_CONCURRENCY": "4", "TIDECOPY_PAGE_SIZE": "50"}

    config: RunConfig = RunConfig.from_env(
        env, page_size=10, max_attempts=None, report_path=Path("r.csv")
    )

    assert config.concurrency == 4
    assert config.page_size == 10
    assert config.max_attempts == RunConfig().max_attempts
    assert config.report_path == Path("r.csv")


@pytest.mark.parametrize("value", ["many", "0", "-3"])
def test_from_env_rejects_bad_values(value: str) -> None:
    with pytest.raises(ConfigError, match="TIDECOPY_CONCURRENCY"):
        RunConfig.from_env({"TIDECOPY_CONCURRENCY": value})


def test_config_validates_directly() -> None:
    with pytest.raises(ConfigError):
        RunConfig(concurrency=0)

