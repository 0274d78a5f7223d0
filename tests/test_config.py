"""Tests for bmad.lib.config."""

from pathlib import Path

import jsonschema
import pytest
import yaml

import bmad
from bmad.agents import ClaudeClient, create_client
from bmad.lib import validate
from bmad.lib.config import CONFIG_ENV_VAR, find_config, load_config
from bmad.lib.errors import BmadError, ErrorKind, format_error, root_cause

from conftest import REPO_ROOT


def rewrite(project, mutate):
    path = project / "bmad-cli.yaml"
    data = yaml.safe_load(path.read_text())
    mutate(data)
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:

    def test_paths_resolve_against_config_dir(self, project, config):
        assert config.stories_dir == project.resolve() / "stories"
        assert config.run_dir_base == project.resolve() / "tmp"
        assert config.documents["architecture"] == project.resolve() / "docs" / "architecture.md"
        assert config.story_schema is None

    def test_defaults(self, config):
        assert config.engine.type == "claude"
        assert config.engine.timeout == 30
        assert config.approval_threshold == 5
        assert config.max_clarification_rounds is None

    def test_triage_and_fix_loop_sections(self, project):
        def mutate(data):
            data["triage"] = {"approval_threshold": 7}
            data["fix_loop"] = {"max_clarification_rounds": 2}

        config = load_config(rewrite(project, mutate))
        assert config.approval_threshold == 7
        assert config.max_clarification_rounds == 2

    def test_missing_required_path(self, project):
        path = rewrite(project, lambda data: data["paths"].pop("epics_dir"))
        with pytest.raises(BmadError) as exc_info:
            load_config(path)
        err = exc_info.value
        assert err.kind is ErrorKind.CONFIG
        assert err.details == {"predicate": "config.required", "path": "paths"}
        assert isinstance(root_cause(err), jsonschema.ValidationError)
        line = format_error(err)
        assert "\n" not in line
        assert line.endswith("(caused by: 'epics_dir' is a required property)")

    def test_implement_settings(self, project, config):
        assert config.requirements == project.resolve() / "docs" / "requirements.yaml"
        assert config.tests_dir == project.resolve() / "tests"
        assert config.test_command is None
        assert config.max_implement_attempts == 5

        def mutate(data):
            data["paths"]["requirements"] = "reqs.yaml"
            data["testing"] = {"command": "pytest -q", "max_attempts": 2}

        loaded = load_config(rewrite(project, mutate))
        assert loaded.requirements == project.resolve() / "reqs.yaml"
        assert loaded.test_command == "pytest -q"
        assert loaded.max_implement_attempts == 2

    def test_shipped_config(self):
        config = load_config(REPO_ROOT / "bmad-cli.yaml")
        assert config.max_clarification_rounds is None
        assert config.test_command == "pytest -q"
        assert config.story_schema.exists()

    def test_missing_template_entry(self, project):
        path = rewrite(project, lambda data: data["templates"].pop("qa_system"))
        with pytest.raises(BmadError, match="qa_system"):
            load_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bmad-cli.yaml"
        path.write_text("paths: [unclosed\n")
        with pytest.raises(BmadError) as exc_info:
            load_config(path)
        assert exc_info.value.kind is ErrorKind.CONFIG

    def test_template_lookup(self, config):
        assert config.template("tasks").name == "tasks.md"
        with pytest.raises(BmadError) as exc_info:
            config.template("nope")
        assert exc_info.value.kind is ErrorKind.CONFIG


class TestFindConfig:

    def test_explicit_path_wins(self, project, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, "/nonexistent.yaml")
        assert find_config(str(project / "bmad-cli.yaml")) == project / "bmad-cli.yaml"

    def test_env_var(self, project, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(project / "bmad-cli.yaml"))
        assert find_config() == project / "bmad-cli.yaml"

    def test_current_directory(self, project, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(project)
        assert find_config().name == "bmad-cli.yaml"

    def test_not_found(self, tmp_path, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.chdir(tmp_path)
        with pytest.raises(BmadError) as exc_info:
            find_config()
        assert exc_info.value.kind is ErrorKind.CONFIG


class TestCreateClient:

    def test_claude(self, config):
        client = create_client(config)
        assert isinstance(client, ClaudeClient)
        assert client.timeout == 30

    def test_unknown_engine(self, project):
        path = rewrite(project, lambda data: data["engine"].update(type="gpt"))
        with pytest.raises(BmadError) as exc_info:
            create_client(load_config(path))
        assert exc_info.value.kind is ErrorKind.CONFIG
        assert "gpt" in exc_info.value.message


class TestSchemas:

    def test_schemas_ship_inside_the_package(self):
        schemas = validate._get_schemas_dir()
        assert schemas.parent == Path(bmad.__file__).parent
        for name in ("config", "checklist"):
            assert (schemas / f"{name}.schema.json").exists(), name
