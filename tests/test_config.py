from pathlib import Path

import pytest

from capaws.backend import Boto3Backend
from capaws.config import ProviderConfig, _deep_merge, load_config

pytestmark = [pytest.mark.unit]


class TestDeepMerge:
    def test_shallow_override(self):
        assert _deep_merge({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_nested_merge(self):
        base = {"aws": {"region": "us-east-1", "poll_interval": 5}}
        override = {"aws": {"region": "us-west-2"}}
        assert _deep_merge(base, override) == {"aws": {"region": "us-west-2", "poll_interval": 5}}

    def test_empty_override(self):
        assert _deep_merge({"a": 1}, {}) == {"a": 1}


class TestLoadConfig:
    def test_defaults_without_files(self, tmp_path: Path):
        result = load_config(project_dir=tmp_path / "nope", global_path=tmp_path / "nope.toml")
        assert result == ProviderConfig()
        assert result.running_timeout == 600
        assert result.ami_owner_id == "258751437250"

    def test_project_only(self, tmp_path: Path):
        (tmp_path / "capaws.toml").write_text('[aws]\nregion = "us-west-2"\nrunning_timeout = 900\n')
        result = load_config(project_dir=tmp_path, global_path=tmp_path / "nonexistent.toml")
        assert result.region == "us-west-2"
        assert result.running_timeout == 900

    def test_project_overrides_global(self, tmp_path: Path):
        global_toml = tmp_path / "defaults.toml"
        global_toml.write_text('[aws]\nregion = "eu-west-1"\nami_base_os = "centos"\n')
        project_dir = tmp_path / "project"
        project_dir.mkdir()
        (project_dir / "capaws.toml").write_text('[aws]\nregion = "us-west-2"\n')

        result = load_config(project_dir=project_dir, global_path=global_toml)

        assert result.region == "us-west-2"
        assert result.ami_base_os == "centos"

    def test_other_sections_ignored(self, tmp_path: Path):
        (tmp_path / "capaws.toml").write_text('[logging]\nlevel = "DEBUG"\n')
        result = load_config(project_dir=tmp_path, global_path=tmp_path / "nonexistent.toml")
        assert result == ProviderConfig()

    def test_unknown_setting(self, tmp_path: Path):
        (tmp_path / "capaws.toml").write_text('[aws]\nregoin = "us-west-2"\n')
        with pytest.raises(ValueError, match="regoin"):
            load_config(project_dir=tmp_path, global_path=tmp_path / "nonexistent.toml")


class TestProviderConfig:
    def test_create_backend(self):
        backend = ProviderConfig(region="ap-south-1", poll_interval=2).create_backend()
        assert isinstance(backend, Boto3Backend)
        assert backend.region == "ap-south-1"
        assert backend.poll_interval == 2
