import pytest
from pydantic import ValidationError

from provisioner.shared.core.config import Settings


def _settings(**overrides) -> Settings:
    values = {"TESTING": True, "ENVIRONMENT": "development"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_defaults_match_documented_values():
    settings = _settings()
    assert settings.SCIM_BASE_PATH == "/scim/v2"
    assert settings.SCIM_DEFAULT_PAGE_SIZE == 100
    assert settings.SCIM_MAX_RESULTS == 200
    assert settings.SCIM_STRICT_FILTERS is False
    assert settings.SCIM_PATCH_IGNORE_UNSUPPORTED is False


def test_unknown_environment_is_rejected():
    with pytest.raises(ValidationError):
        _settings(ENVIRONMENT="qa")


def test_testing_is_rejected_in_production():
    with pytest.raises(ValidationError):
        _settings(ENVIRONMENT="production", SCIM_BEARER_TOKEN="x" * 32)


@pytest.mark.parametrize("base_path", ["scim/v2", "/scim/v2/"])
def test_base_path_must_be_rooted_without_trailing_slash(base_path):
    with pytest.raises(ValidationError):
        _settings(SCIM_BASE_PATH=base_path)


def test_default_page_size_must_fit_max_results():
    with pytest.raises(ValidationError):
        _settings(SCIM_DEFAULT_PAGE_SIZE=300, SCIM_MAX_RESULTS=200)


@pytest.mark.parametrize("token", [None, "short"])
def test_bearer_token_required_outside_testing(token):
    with pytest.raises(ValidationError):
        _settings(TESTING=False, SCIM_BEARER_TOKEN=token)


def test_database_url_required_in_production():
    with pytest.raises(ValidationError):
        _settings(
            TESTING=False,
            ENVIRONMENT="production",
            SCIM_BEARER_TOKEN="x" * 32,
            DATABASE_URL="",
        )


def test_valid_production_settings():
    settings = _settings(
        TESTING=False,
        ENVIRONMENT="production",
        SCIM_BEARER_TOKEN="x" * 32,
        DATABASE_URL="postgresql://scim:secret@db/scim",
    )
    assert settings.is_production is True
