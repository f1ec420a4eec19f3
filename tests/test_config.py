import pytest
from pydantic import ValidationError

from dind_backend.api.lifespan.manager import build_dependency_specs
from dind_backend.core.config import Settings, mask_url
from fastapi import FastAPI


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


@pytest.mark.parametrize(
    "environment, explicit, expected",
    [
        ("production", None, True),
        ("development", None, False),
        ("test", None, False),
        ("development", True, True),
        ("production", False, False),
    ],
)
def test_fail_fast_policy(environment, explicit, expected):
    settings = make_settings(ENVIRONMENT=environment, EXIT_ON_MANDATORY_FAILURE=explicit)
    assert settings.fail_fast_on_mandatory_failure is expected


def test_database_url_follows_environment():
    settings = make_settings(
        ENVIRONMENT="test",
        DATABASE_URL="mongodb://db/app",
        DATABASE_TEST_URL="mongodb://db/app-test",
    )
    assert settings.database_url_for_env == "mongodb://db/app-test"
    assert make_settings(ENVIRONMENT="production", DATABASE_URL="mongodb://db/app").database_url_for_env == "mongodb://db/app"


def test_cors_origins_are_split():
    settings = make_settings(CORS_ORIGINS="http://a.test, http://b.test,")
    assert settings.cors_origins == ["http://a.test", "http://b.test"]


def test_websocket_path_must_be_absolute():
    with pytest.raises(ValidationError):
        make_settings(WEBSOCKET_PATH="ws")


def test_timeouts_must_be_positive():
    with pytest.raises(ValidationError):
        make_settings(DRAIN_TIMEOUT=0)


def test_mask_url_hides_credentials():
    assert mask_url("mongodb://admin:s3cret@db:27017/app") == "mongodb://***:***@db:27017/app"
    assert mask_url("redis://localhost:6379") == "redis://localhost:6379"


def test_model_dump_safe():
    settings = make_settings(REDIS_URL="redis://:pw@cache:6379", REDIS_PASSWORD="pw")
    dumped = settings.model_dump_safe()
    assert dumped["REDIS_PASSWORD"] == "***"
    assert "pw" not in dumped["REDIS_URL"]


def test_dependency_specs_follow_settings():
    app = FastAPI()
    settings = make_settings(
        ENVIRONMENT="test",
        CACHE_ENABLED=True,
        CACHE_MANDATORY=False,
        ENABLE_WEBSOCKET=True,
        CONNECT_RETRY_ATTEMPTS=4,
    )

    specs = build_dependency_specs(settings, app)

    assert [s.name for s in specs] == ["database", "cache", "realtime"]
    assert [s.mandatory for s in specs] == [True, False, False]
    assert specs[0].adapter.url == settings.DATABASE_TEST_URL
    assert specs[1].adapter.allow_flush is True
    assert specs[0].adapter.retry_attempts == 4
    assert app.state.realtime_hub is specs[2].adapter.hub


def test_cache_can_be_disabled():
    specs = build_dependency_specs(make_settings(CACHE_ENABLED=False), FastAPI())
    assert [s.name for s in specs] == ["database"]
