"""Tests for agents_config module."""

import pytest

from specd.lib.agents_config import (
    DEFAULT_CHECK_TIMEOUT,
    DEFAULT_ROLE_COMMANDS,
    AgentsConfig,
    check_binary_available,
    get_role_command,
    load_agents_config,
)


class TestLoadAgentsConfig:
    """Tests for load_agents_config()."""

    def test_returns_defaults_when_no_root(self):
        config = load_agents_config(None)
        assert config.roles == DEFAULT_ROLE_COMMANDS
        assert config.checks == []

    def test_returns_defaults_when_file_missing(self, tmp_path):
        config = load_agents_config(tmp_path)
        assert config.roles == DEFAULT_ROLE_COMMANDS

    def test_loads_roles_and_checks(self, tmp_path):
        (tmp_path / "agents.yaml").write_text(
            "roles:\n"
            "  review: custom-claude --fast -p {prompt}\n"
            "checks:\n"
            "  - name: lint\n"
            "    command: ruff check .\n"
            "  - name: types\n"
            "    command: mypy .\n"
            "    optional: true\n"
            "    timeout: 60\n"
            "overrides:\n"
            "  - types\n"
        )
        config = load_agents_config(tmp_path)
        assert config.roles["review"] == "custom-claude --fast -p {prompt}"
        # Other roles keep their defaults
        assert config.roles["implementation"] == DEFAULT_ROLE_COMMANDS["implementation"]
        assert [c.name for c in config.checks] == ["lint", "types"]
        assert config.checks[0].timeout == DEFAULT_CHECK_TIMEOUT
        assert config.checks[1].optional
        assert config.checks[1].timeout == 60
        assert config.overrides == frozenset({"types"})

    def test_handles_invalid_yaml(self, tmp_path, caplog):
        (tmp_path / "agents.yaml").write_text("roles: [unclosed\n")
        config = load_agents_config(tmp_path)
        assert config.roles == DEFAULT_ROLE_COMMANDS
        assert "Failed to parse" in caplog.text

    def test_skips_malformed_and_duplicate_checks(self, tmp_path, caplog):
        (tmp_path / "agents.yaml").write_text(
            "checks:\n"
            "  - name: lint\n"
            "    command: ruff check .\n"
            "  - name: lint\n"
            "    command: flake8\n"
            "  - just a string\n"
        )
        config = load_agents_config(tmp_path)
        assert [(c.name, c.command) for c in config.checks] == [("lint", "ruff check .")]
        assert "Duplicate check 'lint'" in caplog.text
        assert "malformed check entry" in caplog.text

    def test_warns_on_unknown_override(self, tmp_path, caplog):
        (tmp_path / "agents.yaml").write_text("overrides:\n  - coverage\n")
        config = load_agents_config(tmp_path)
        assert config.overrides == frozenset({"coverage"})
        assert "unknown checks" in caplog.text


class TestGetRoleCommand:
    """Tests for get_role_command()."""

    def test_workspace_substitution(self):
        result = get_role_command(AgentsConfig(), "implementation",
                                  {"workspace": "/tmp/ws", "prompt": "do stuff"})
        assert result.cmd[0] == "codex"
        assert "-C" in result.cmd
        assert "/tmp/ws" in result.cmd
        assert result.prompt_via_stdin is True
        assert "do stuff" not in result.cmd
        assert result.get_stdin_input("do stuff") == "do stuff"

    def test_prompt_via_arg_when_in_template(self):
        config = AgentsConfig(roles={"review": "claude -p {prompt}"})
        result = get_role_command(config, "review", {"prompt": "review this"})
        assert result.prompt_via_stdin is False
        assert result.cmd == ["claude", "-p", "review this"]
        assert result.get_stdin_input("review this") is None

    def test_prompt_with_special_characters(self):
        config = AgentsConfig(roles={"review": "claude -p {prompt}"})
        prompt = 'fix the "quoted" string and \'this\' too\nand a second line'
        result = get_role_command(config, "review", {"prompt": prompt})
        # Prompt stays a single intact argument
        assert prompt in result.cmd

    def test_spec_id_substitution(self):
        config = AgentsConfig(roles={"review": "agent --spec {spec_id}"})
        result = get_role_command(config, "review", {"spec_id": "0001-login"})
        assert result.cmd == ["agent", "--spec", "0001-login"]

    def test_unsubstituted_variable_logged(self, caplog):
        config = AgentsConfig(roles={"review": "agent --dir {workspace}"})
        get_role_command(config, "review", {})
        assert "unsubstituted variables" in caplog.text

    def test_raises_on_unknown_role(self):
        with pytest.raises(ValueError, match="No command configured"):
            get_role_command(AgentsConfig(), "documentation", {})


class TestCheckBinaryAvailable:
    """Tests for check_binary_available()."""

    def test_present(self):
        assert check_binary_available("sh -c true")

    def test_absent(self):
        assert not check_binary_available("definitely-not-a-real-binary-xyz --flag")

    def test_empty(self):
        assert not check_binary_available("")
