from config import Settings


def test_settings_read_typed_values_from_env(monkeypatch):
    monkeypatch.setenv("SIGNED_URL_TTL", "60")
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "1024")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")
    monkeypatch.setenv("DATABASE_NAME", "drive_test")

    settings = Settings(_env_file=None)

    assert settings.signed_url_ttl == 60
    assert settings.max_upload_bytes == 1024
    assert settings.database_name == "drive_test"
    assert settings.get_cors_origins() == ["http://a.test", "http://b.test"]


def test_settings_defaults(monkeypatch):
    for name in ("DATABASE_URL", "PORT", "SIGNED_URL_TTL", "CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.database_url is None
    assert settings.port == 8000
    assert settings.signed_url_ttl == 3600
    assert settings.get_cors_origins() == ["*"]
    assert settings.blob_token_audience == "pretty-drive-blob"
