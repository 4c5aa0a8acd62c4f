import json
from pathlib import Path

import pytest

from secureshare.config import EXAMPLE_CONFIG, Config, load_config


def test_defaults():
    config = Config()
    assert config.relay_port == 8765
    assert config.framing == "combined"
    assert config.advertise_hosts == ["127.0.0.1"]
    assert config.output_dir == Path("./received")


def test_unknown_framing_is_rejected():
    with pytest.raises(ValueError):
        Config(framing="interleaved")


def test_from_env(monkeypatch):
    monkeypatch.setenv("SECURESHARE_RELAY_HOST", "relay.example.org")
    monkeypatch.setenv("SECURESHARE_RELAY_PORT", "9000")
    monkeypatch.setenv("SECURESHARE_ADVERTISE_HOSTS", "10.0.0.5, 192.168.1.7")
    monkeypatch.setenv("SECURESHARE_FRAMING", "alternating")
    monkeypatch.setenv("SECURESHARE_OUTPUT_DIR", "/tmp/inbox")
    monkeypatch.setenv("SECURESHARE_CONNECT_TIMEOUT", "12.5")

    config = Config.from_env()

    assert config.relay_host == "relay.example.org"
    assert config.relay_port == 9000
    assert config.advertise_hosts == ["10.0.0.5", "192.168.1.7"]
    assert config.framing == "alternating"
    assert config.output_dir == Path("/tmp/inbox")
    assert config.connect_timeout == 12.5


def test_from_env_rejects_bad_framing(monkeypatch):
    monkeypatch.setenv("SECURESHARE_FRAMING", "bogus")
    with pytest.raises(ValueError):
        Config.from_env()


def test_save_and_load_file(tmp_path):
    path = tmp_path / "config.json"
    Config(relay_host="10.1.1.1", api_port=9090, advertise_hosts=["10.1.1.2"]).save(path)

    config = Config.from_file(path)
    assert config.relay_host == "10.1.1.1"
    assert config.api_port == 9090
    assert config.advertise_hosts == ["10.1.1.2"]


def test_missing_file_gives_defaults(tmp_path):
    assert Config.from_file(tmp_path / "absent.json") == Config()


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"relay_host": "file-host", "relay_port": 7000}))
    monkeypatch.setenv("SECURESHARE_RELAY_HOST", "env-host")

    config = load_config(path)

    assert config.relay_host == "env-host"
    assert config.relay_port == 7000


def test_example_config_is_loadable(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(EXAMPLE_CONFIG)
    assert Config.from_file(path).advertise_hosts == ["192.168.1.20"]
