from api_recon.config import AppConfig


class TestAppConfig:
    def test_defaults(self, monkeypatch):
        for var in ("API_RECON_HTTP_TIMEOUT", "API_RECON_USER_AGENT", "API_RECON_OUTPUT_FORMAT"):
            monkeypatch.delenv(var, raising=False)
        config = AppConfig.from_env()
        assert config.http_timeout == 30.0
        assert config.user_agent.startswith("api-recon/")
        assert config.output_format == "json"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("API_RECON_HTTP_TIMEOUT", "2.5")
        monkeypatch.setenv("API_RECON_USER_AGENT", "scanner/1.0")
        monkeypatch.setenv("API_RECON_OUTPUT_FORMAT", "YAML")
        config = AppConfig.from_env()
        assert config.http_timeout == 2.5
        assert config.user_agent == "scanner/1.0"
        assert config.output_format == "yaml"

    def test_unknown_format_falls_back_to_json(self, monkeypatch):
        monkeypatch.setenv("API_RECON_OUTPUT_FORMAT", "xml")
        assert AppConfig.from_env().output_format == "json"
