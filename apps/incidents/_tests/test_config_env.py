import os

import pytest

from config.env import env_bool, env_float, env_int, load_env


@pytest.fixture
def environ(monkeypatch):
    env = {}
    monkeypatch.setattr(os, "environ", env)
    return env


class TestLoadEnv:
    def test_reads_dotenv_without_overriding_process_values(self, environ, tmp_path):
        (tmp_path / ".env").write_text("INCIDENT_RESOLUTION_HOURS=4\nCRON_KEY=from-file\n")
        environ["CRON_KEY"] = "from-process"

        loaded = load_env(tmp_path)

        assert loaded == [tmp_path / ".env"]
        assert environ["INCIDENT_RESOLUTION_HOURS"] == "4"
        assert environ["CRON_KEY"] == "from-process"

    def test_dev_file_only_in_dev_environment(self, environ, tmp_path):
        (tmp_path / ".env.dev").write_text("DJANGO_DEBUG=true\n")

        assert load_env(tmp_path) == []

        environ["DJANGO_ENV"] = "local"
        assert load_env(tmp_path) == [tmp_path / ".env.dev"]
        assert environ["DJANGO_DEBUG"] == "true"


class TestTypedValues:
    def test_defaults_for_missing_or_blank(self, environ):
        environ["INCIDENT_CONFLICT_RETRIES"] = "  "

        assert env_int("INCIDENT_CONFLICT_RETRIES", 2) == 2
        assert env_float("INCIDENT_RESOLUTION_HOURS", 6.0) == 6.0
        assert env_bool("DJANGO_DEBUG", True) is True

    def test_parses_values(self, environ):
        environ.update({"A": " 5 ", "B": "0.5", "C": "Yes", "D": "off"})

        assert env_int("A", 0) == 5
        assert env_float("B", 1.0) == 0.5
        assert env_bool("C") is True
        assert env_bool("D", True) is False
