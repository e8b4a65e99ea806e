from __future__ import annotations

import os

import pytest

from confspec import ConfigManager, EnvSource, Spec


def test_env_source_reads_prefixed_variables(monkeypatch):
    # Clean up environment in case tests share process
    for key in list(os.environ.keys()):
        if key.startswith("MYAPP_"):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setenv("MYAPP_DB_HOST", "localhost")
    monkeypatch.setenv("MYAPP_DB_PORT", "5432")
    monkeypatch.setenv("MYAPP_APP_DEBUG", "true")
    monkeypatch.setenv("OTHER_PREFIX_SHOULD_BE_IGNORED", "1")

    source = EnvSource("MYAPP_")
    data = source.load() or {}

    assert data["db.host"] == "localhost"
    # values stay raw strings, coercion happens during resolution
    assert data["db.port"] == "5432"
    assert data["app.debug"] == "true"

    # ensure unrelated env vars are ignored
    assert "other_prefix_should_be_ignored" not in str(data).lower()


def test_env_source_custom_separator():
    source = EnvSource(
        "MYAPP_",
        separator="__",
        environ={"MYAPP_DB__MAX_POOL": "10", "MYAPP_": "ignored"},
    )

    assert source.load() == {"db.max_pool": "10"}


def test_env_source_returns_none_when_nothing_matches():
    assert EnvSource("NOPE_", environ={"OTHER": "1"}).load() is None


def test_env_source_rejects_empty_separator():
    with pytest.raises(ValueError):
        EnvSource(separator="")


def test_env_values_are_coerced_by_the_spec(monkeypatch):
    monkeypatch.setenv("MYAPP_DB_PORT", "5432")
    monkeypatch.setenv("MYAPP_APP_DEBUG", "TRUE")

    db = Spec()
    db.declare_required("port", int)
    app = Spec()
    app.declare_optional("debug", False)
    root = Spec()
    root.nest("db", db)
    root.nest("app", app)

    cfg = ConfigManager(root, [EnvSource("MYAPP_")]).load()

    assert cfg.db.port == 5432
    assert cfg.app.debug is True
    assert cfg.origin("db.port") == "EnvSource(prefix='MYAPP_')"
