from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.config import Settings

pytestmark = pytest.mark.anyio


async def test_defaults_select_real_sources() -> None:
    settings = Settings(_env_file=None)

    assert settings.registry_sources == ["leasebreak", "streeteasy"]
    assert settings.match_threshold == 60
    assert settings.rate_limit_domain_intervals_ms["www.leasebreak.com"] == 1200


async def test_registry_sources_accept_comma_separated_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("REGISTRY_SOURCES", " Mock_StreetEasy, leasebreak ,leasebreak")

    settings = Settings(_env_file=None)

    assert settings.registry_sources == ["mock_streeteasy", "leasebreak"]


async def test_domain_intervals_accept_pairs_from_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv(
        "RATE_LIMIT_DOMAIN_INTERVALS_MS", "WWW.LeaseBreak.com=1500, api.firecrawl.dev=2500"
    )

    settings = Settings(_env_file=None)

    assert settings.rate_limit_domain_intervals_ms == {
        "www.leasebreak.com": 1500,
        "api.firecrawl.dev": 2500,
    }


async def test_unknown_registry_source_is_rejected() -> None:
    with pytest.raises(ValidationError, match="Invalid registry_sources: craigslist"):
        Settings(_env_file=None, registry_sources="craigslist,leasebreak")


async def test_threshold_is_bounded() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, match_threshold=150)
