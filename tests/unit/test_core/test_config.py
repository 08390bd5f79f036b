import os
from core.config import DEFAULT_OVERPASS_URLS, Settings


def test_defaults(monkeypatch):
    for name in ("OVERPASS_URLS", "SMTP_HOST", "SMTP_PORT", "PROVIDER_TIMEOUT_S", "PARCEL_CACHE_DIR"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.overpass_urls == DEFAULT_OVERPASS_URLS
    assert settings.provider_timeout_s == 25.0
    assert settings.smtp_port == 587
    assert not settings.smtp_configured


def test_from_env(monkeypatch):
    monkeypatch.setenv("OVERPASS_URLS", "https://a.example/api, https://b.example/api,")
    monkeypatch.setenv("PROVIDER_TIMEOUT_S", "5")
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "465")
    monkeypatch.setenv("SMTP_USER", "mailer")
    monkeypatch.setenv("SMTP_PASS", "secret")
    monkeypatch.setenv("SMTP_FROM", "noreply@example.com")
    monkeypatch.setenv("PARCEL_CACHE_DIR", "/tmp/parcel-cache")

    settings = Settings.from_env()
    assert settings.overpass_urls == ["https://a.example/api", "https://b.example/api"]
    assert settings.provider_timeout_s == 5.0
    assert settings.smtp_port == 465
    assert settings.smtp_configured
    assert settings.overpass_cache_path == os.path.join("/tmp/parcel-cache", "overpass_cache.db")


def test_ensure_cache_dir(tmp_path):
    target = tmp_path / "nested" / "cache"
    settings = Settings(cache_dir=str(target))
    settings.ensure_cache_dir()
    assert target.is_dir()
