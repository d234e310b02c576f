import json

from toolsmith.config import REPO_ROOT, Settings, load_config


class TestSettings:
    def test_defaults(self, monkeypatch):
        for var in ("TOOLSMITH_REPO_PATH", "TOOLSMITH_DB_PATH", "TOOLSMITH_ERROR_LOG", "TOOLSMITH_NO_AUTO_CAPTURE"):
            monkeypatch.delenv(var, raising=False)
        s = Settings.from_config({})
        assert s.repo_path == REPO_ROOT / "tool_repo"
        assert s.script_timeout_sec == 300.0
        assert s.max_retries == 3
        assert s.repair_attempt_limit == 10
        assert s.auto_capture_scripts is True

    def test_file_values(self, monkeypatch):
        monkeypatch.delenv("TOOLSMITH_NO_AUTO_CAPTURE", raising=False)
        s = Settings.from_config({
            "memory": {"similarity_threshold": 0.75, "confidence_threshold": 0.6},
            "resilience": {"max_retries": 5, "retryable_messages": ["rate limited"]},
            "execution": {"script_timeout_sec": 0},
        })
        assert s.similarity_threshold == 0.75
        assert s.confidence_threshold == 0.6
        assert s.max_retries == 5
        assert s.retryable_messages == ["rate limited"]
        assert s.script_timeout_sec == 0.0

    def test_env_overrides_win(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TOOLSMITH_REPO_PATH", str(tmp_path / "repo"))
        monkeypatch.setenv("TOOLSMITH_NO_AUTO_CAPTURE", "yes")
        s = Settings.from_config({"registry": {"repo_path": "elsewhere", "auto_capture_scripts": True}})
        assert s.repo_path == tmp_path / "repo"
        assert s.auto_capture_scripts is False


class TestLoadConfig:
    def test_explicit_path(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"registry": {"maintenance_interval_sec": 10}}), encoding="utf-8")
        assert load_config(str(path))["registry"]["maintenance_interval_sec"] == 10

    def test_unreadable_file_gives_empty_config(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_config(str(path)) == {}
