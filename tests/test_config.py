"""
Tests for YAML config loading and Settings shortcuts
"""

from support_chat.config import DEFAULT_CORS_HEADERS, Settings, YAMLConfigProvider
from support_chat.schemas import SessionFallback

CONFIG = """
app:
  name: "Support Chat API"
  debug: ${SC_TEST_DEBUG:false}
server:
  port: ${SC_TEST_PORT:8000}
database:
  url: ${SC_TEST_DATABASE_URL:sqlite:///./support_chat.db}
auth:
  jwt_secret: ${SC_TEST_SECRET}
chat:
  history_page_size: ${SC_TEST_PAGE_SIZE:null}
  session_fallback: ${SC_TEST_FALLBACK:fail}
"""


class TestYAMLConfigProvider:
    def write_config(self, tmp_path):
        (tmp_path / "app_config.yaml").write_text(CONFIG, encoding="utf-8")
        return YAMLConfigProvider(str(tmp_path))

    def test_defaults_substituted(self, tmp_path, monkeypatch):
        for name in ("SC_TEST_DEBUG", "SC_TEST_PORT", "SC_TEST_DATABASE_URL",
                     "SC_TEST_SECRET", "SC_TEST_PAGE_SIZE", "SC_TEST_FALLBACK"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(provider=self.write_config(tmp_path))

        assert settings.debug is False
        assert settings.port == 8000
        assert settings.database_url == "sqlite:///./support_chat.db"
        assert settings.jwt_secret == ""
        assert settings.history_page_size is None
        assert settings.session_fallback == SessionFallback.FAIL

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SC_TEST_DEBUG", "true")
        monkeypatch.setenv("SC_TEST_PORT", "9100")
        monkeypatch.setenv("SC_TEST_DATABASE_URL", "postgresql://chat:chat@db/chat")
        monkeypatch.setenv("SC_TEST_SECRET", "s3cret")
        monkeypatch.setenv("SC_TEST_PAGE_SIZE", "20")
        monkeypatch.setenv("SC_TEST_FALLBACK", "create_new")

        settings = Settings(provider=self.write_config(tmp_path))

        assert settings.debug is True
        assert settings.port == 9100
        assert settings.database_url == "postgresql://chat:chat@db/chat"
        assert settings.jwt_secret == "s3cret"
        assert settings.history_page_size == 20
        assert settings.session_fallback == SessionFallback.CREATE_NEW

    def test_reload_picks_up_changes(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SC_TEST_PORT", "8000")
        provider = self.write_config(tmp_path)
        settings = Settings(provider=provider)
        assert settings.port == 8000

        monkeypatch.setenv("SC_TEST_PORT", "8001")
        assert settings.port == 8000
        settings.reload()
        assert settings.port == 8001


class TestSettingsDefaults:
    def test_empty_config(self):
        settings = Settings(app_config={})
        assert settings.api_prefix == "/api/v1"
        assert settings.history_page_size == 50
        assert settings.session_fallback == SessionFallback.FAIL
        assert settings.cors_allow_origins == ["*"]
        assert settings.cors_allow_headers == DEFAULT_CORS_HEADERS
        assert "связаться с сотрудником" in settings.escalation_phrases
        assert settings.llm_model == "google/gemini-2.5-flash"

    def test_bundled_config_loads(self):
        settings = Settings()
        assert settings.app_name == "Support Chat API"
        assert settings.api_prefix == "/api/v1"
        assert "x-client-info" in settings.cors_allow_headers
