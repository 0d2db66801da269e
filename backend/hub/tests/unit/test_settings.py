import pytest
from pydantic import ValidationError

from hub.settings import HubSettings


class TestHubSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("HUB_ADMIN_CODES", raising=False)
        settings = HubSettings()

        assert settings.admin_codes == []
        assert settings.cors_origins == []
        assert settings.audit_log_default_limit == 100
        assert settings.audit_log_max_limit == 1000

    def test_admin_codes_comma_separated(self, monkeypatch):
        monkeypatch.setenv("HUB_ADMIN_CODES", "Admin-One, Admin-Two")
        assert HubSettings().admin_codes == ["Admin-One", "Admin-Two"]

    def test_cors_origins_json_array(self, monkeypatch):
        monkeypatch.setenv("HUB_CORS_ORIGINS", '["http://a.test","http://b.test"]')
        assert HubSettings().cors_origins == ["http://a.test", "http://b.test"]

    def test_malformed_json_rejected(self, monkeypatch):
        monkeypatch.setenv("HUB_CORS_ORIGINS", "[http://a.test")
        with pytest.raises(ValidationError):
            HubSettings()

    def test_database_path_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HUB_DATABASE_PATH", str(tmp_path / "hub.sqlite3"))
        assert HubSettings().database_path.endswith("hub.sqlite3")

    def test_source_hook_annotations_stay_unevaluated(self):
        annotations = HubSettings.settings_customise_sources.__annotations__
        assert annotations["init_settings"] == "PydanticBaseSettingsSource"
