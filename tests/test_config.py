"""Tests for configuration loading."""

import logging

import pytest

from patchstream.config import Config, _find_config_file


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("ENDPOINT_URL", "API_KEY", "CONNECT_TIMEOUT", "READ_TIMEOUT",
                 "CHUNK_SIZE", "LOG_DIR", "LOG_LEVEL"):
        monkeypatch.delenv(f"PATCHSTREAM_{name}", raising=False)


class TestConfig:
    def test_defaults(self):
        cfg = Config()
        assert cfg.ENDPOINT_URL == "http://localhost:3000/api/json-render"
        assert cfg.API_KEY == ""
        assert cfg.CONNECT_TIMEOUT == 10.0
        assert cfg.READ_TIMEOUT == 120.0
        assert cfg.CHUNK_SIZE == 0
        assert cfg.HEADERS == {}

    def test_yaml_values(self, tmp_path):
        path = tmp_path / ".patchstream.yaml"
        path.write_text(
            "endpoint_url: http://example.test/render\n"
            "read_timeout: 45\n"
            "chunk_size: 512\n"
            "headers:\n"
            "  X-Team: ui\n",
            encoding="utf-8",
        )
        cfg = Config.load(str(path))
        assert cfg.ENDPOINT_URL == "http://example.test/render"
        assert cfg.READ_TIMEOUT == 45.0
        assert cfg.CHUNK_SIZE == 512
        assert cfg.HEADERS == {"X-Team": "ui"}

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "cfg.yaml"
        path.write_text("endpoint_url: http://from-yaml\n", encoding="utf-8")
        monkeypatch.setenv("PATCHSTREAM_ENDPOINT_URL", "http://from-env")
        monkeypatch.setenv("PATCHSTREAM_CONNECT_TIMEOUT", "2.5")
        cfg = Config.load(str(path))
        assert cfg.ENDPOINT_URL == "http://from-env"
        assert cfg.CONNECT_TIMEOUT == 2.5

    def test_missing_explicit_file_uses_defaults(self, tmp_path):
        cfg = Config.load(str(tmp_path / "nope.yaml"))
        assert cfg.READ_TIMEOUT == 120.0

    def test_invalid_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("endpoint_url: [unclosed\n", encoding="utf-8")
        cfg = Config.load(str(path))
        assert cfg.ENDPOINT_URL == "http://localhost:3000/api/json-render"

    def test_config_found_in_cwd(self, tmp_path, monkeypatch):
        (tmp_path / ".patchstream.yml").write_text("api_key: secret\n",
                                                   encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        assert Config.load().API_KEY == "secret"

    def test_config_found_in_parent_directory(self, tmp_path, monkeypatch):
        (tmp_path / ".patchstream.yaml").write_text("read_timeout: 7\n",
                                                    encoding="utf-8")
        nested = tmp_path / "app" / "screens"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        cfg = Config.load()
        assert cfg.READ_TIMEOUT == 7.0
        assert cfg.SOURCE == str(tmp_path / ".patchstream.yaml")

    def test_nearest_config_wins(self, tmp_path):
        (tmp_path / ".patchstream.yaml").write_text("api_key: outer\n",
                                                    encoding="utf-8")
        inner = tmp_path / "inner"
        inner.mkdir()
        (inner / ".patchstream.yaml").write_text("api_key: inner\n",
                                                 encoding="utf-8")
        assert _find_config_file(start=str(inner)) == str(inner / ".patchstream.yaml")

    def test_non_mapping_yaml_is_reported(self, tmp_path, caplog):
        path = tmp_path / "list.yaml"
        path.write_text("- endpoint_url\n- http://x\n", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="patchstream.config"):
            cfg = Config.load(str(path))
        assert cfg.ENDPOINT_URL == "http://localhost:3000/api/json-render"
        assert "top level must be a mapping" in caplog.text

    def test_missing_explicit_file_is_reported(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="patchstream.config"):
            cfg = Config.load(str(tmp_path / "absent.yaml"))
        assert cfg.SOURCE is None
        assert "absent.yaml not found" in caplog.text

    def test_unparsable_env_value_falls_back_to_yaml(self, tmp_path, monkeypatch,
                                                     caplog):
        path = tmp_path / "cfg.yaml"
        path.write_text("read_timeout: 30\nchunk_size: lots\n", encoding="utf-8")
        monkeypatch.setenv("PATCHSTREAM_READ_TIMEOUT", "soon")
        with caplog.at_level(logging.WARNING, logger="patchstream.config"):
            cfg = Config.load(str(path))
        assert cfg.READ_TIMEOUT == 30.0
        assert cfg.CHUNK_SIZE == 0
        assert "PATCHSTREAM_READ_TIMEOUT" in caplog.text
        assert "chunk_size" in caplog.text
