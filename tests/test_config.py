# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Tests for environment configuration, banking tables and ACL files."""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "bridge"))

from pductl.config import Config, ConfigError, load_acl, parse_banking
from pductl.pdu_model import DEFAULT_BANKING


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("PDU_"):
            monkeypatch.delenv(key)


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.address == "tcp://127.0.0.1:4141"
        assert config.username == "admin"
        assert config.serial_baud == 9600
        assert config.read_timeout == 0.3
        assert config.command_timeout == 0
        assert config.poll_interval == 10.0
        assert config.cache_ttl == 60.0
        assert config.banking == DEFAULT_BANKING
        assert config.prompts.ready == "MMP-14>"
        assert config.web_port == 8080
        assert config.tls_enabled is False
        assert config.mock_mode is False
        assert config.log_level == "INFO"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PDU_ADDRESS", "mock://")
        monkeypatch.setenv("PDU_POLL_INTERVAL", "0")
        monkeypatch.setenv("PDU_PROMPT_READY", "RPC-3>")
        monkeypatch.setenv("PDU_LOG_LEVEL", "debug")
        config = Config()
        assert config.mock_mode is True
        assert config.poll_interval == 0
        assert config.prompts.ready == "RPC-3>"
        assert config.prompts.username == "Enter user name: "
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("env,value", [
        ("PDU_WEB_PORT", "abc"),
        ("PDU_WEB_PORT", "70000"),
        ("PDU_SERIAL_BAUD", "100"),
        ("PDU_READ_TIMEOUT", "0"),
        ("PDU_POLL_INTERVAL", "-1"),
        ("PDU_CACHE_TTL", "soon"),
        ("PDU_LOG_LEVEL", "LOUD"),
        ("PDU_PROMPT_PASSWORD", ""),
        ("PDU_BANKING", "1-5"),
    ])
    def test_invalid_values(self, monkeypatch, env, value):
        monkeypatch.setenv(env, value)
        with pytest.raises(ConfigError):
            Config()

    def test_tls_requires_cert_and_key(self, monkeypatch):
        monkeypatch.setenv("PDU_TLS_CERT", "/etc/pdu/server.pem")
        with pytest.raises(ConfigError, match="together"):
            Config()
        monkeypatch.setenv("PDU_TLS_KEY", "/etc/pdu/server.key")
        assert Config().tls_enabled is True


class TestParseBanking:
    def test_default_spec_matches_default_table(self):
        config = Config()
        assert config.banking.num_outlets == 20
        assert config.banking.lookup(7) == (1, 2)
        assert config.banking.lookup(16) == (2, 4)

    def test_unsorted_input_with_spaces(self):
        banking = parse_banking(" 9-12 : 2 : 2 , 1-8:1:1 ")
        assert [r.first for r in banking.ranges] == [1, 9]
        assert banking.num_outlets == 12

    @pytest.mark.parametrize("text", [
        "",
        "1-5:1",
        "a-b:1:1",
        "5-1:1:1",
        "0-4:1:1",
        "1-5:1:1,5-8:1:2",
    ])
    def test_rejected(self, text):
        with pytest.raises(ConfigError):
            parse_banking(text, env="PDU_BANKING")

    def test_error_names_variable(self):
        with pytest.raises(ConfigError, match="PDU_BANKING"):
            parse_banking("junk", env="PDU_BANKING")


class TestLoadACL:
    def test_list_form(self, tmp_path):
        path = tmp_path / "acl.json"
        path.write_text(json.dumps([{"name": "^ops$", "operations": ["status"]}]))
        acl = load_acl(str(path))
        assert len(acl) == 1
        assert acl.check("ops", "status")

    def test_wrapped_form(self, tmp_path):
        path = tmp_path / "acl.json"
        path.write_text(json.dumps({"acl": [{"name": "a"}, {"name": "b"}]}))
        assert len(load_acl(str(path))) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            load_acl(str(tmp_path / "nope.json"))

    def test_bad_json(self, tmp_path):
        path = tmp_path / "acl.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_acl(str(path))

    @pytest.mark.parametrize("data", [
        [{"operations": ["status"]}],
        [{"name": "(unclosed"}],
        {"acl": "everyone"},
    ])
    def test_bad_entries(self, tmp_path, data):
        path = tmp_path / "acl.json"
        path.write_text(json.dumps(data))
        with pytest.raises(ConfigError):
            load_acl(str(path))
