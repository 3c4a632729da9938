import pytest

from provisioner.shared.core.config import Settings
from provisioner.shared.core.logging import secret_redactor
from provisioner.shared.db.session import (
    _build_connect_args,
    _resolve_effective_url,
    normalize_db_url,
)


def _settings(**overrides) -> Settings:
    values = {"TESTING": True, "ENVIRONMENT": "development"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_secret_redactor_masks_tokens_and_passwords():
    event = {
        "event": "scim_request_received",
        "body": {"userName": "alice", "password": "hunter2", "nested": [{"api_key": "k"}]},
        "headers": {"Authorization": "Bearer abc.def"},
        "note": "sent Bearer abc.def upstream",
    }

    redacted = secret_redactor(None, "info", event)

    assert redacted["body"]["userName"] == "alice"
    assert redacted["body"]["password"] == "[REDACTED]"
    assert redacted["body"]["nested"][0]["api_key"] == "[REDACTED]"
    assert redacted["headers"]["Authorization"] == "[REDACTED]"
    assert redacted["note"] == "sent Bearer [REDACTED] upstream"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("sqlite+aiosqlite:///x.db", "sqlite+aiosqlite:///x.db"),
        ("", ""),
    ],
)
def test_normalize_db_url(raw, expected):
    assert normalize_db_url(raw) == expected


def test_missing_url_falls_back_to_memory_sqlite_in_development():
    assert _resolve_effective_url(_settings(DATABASE_URL="")) == "sqlite+aiosqlite:///:memory:"


def test_postgres_ssl_mode_maps_to_connect_args():
    url = "postgresql+asyncpg://u:p@h/db"
    assert _build_connect_args(_settings(DB_SSL_MODE="disable"), url) == {"ssl": False}
    assert _build_connect_args(_settings(DB_SSL_MODE="require"), url) == {"ssl": "require"}
    assert _build_connect_args(_settings(), "sqlite+aiosqlite:///x.db") == {}
