"""TOML-based provider configuration.

Loads ~/.capaws/defaults.toml (global) and capaws.toml (project), merges
them, and builds a ``ProviderConfig`` from the ``[aws]`` table.

Example ``capaws.toml``::

    [aws]
    region = "us-west-2"
    running_timeout = 900
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from capaws.constants import (
    DEFAULT_AMI_BASE_OS,
    DEFAULT_AMI_BASE_OS_VERSION,
    DEFAULT_AMI_OWNER_ID,
    INSTANCE_POLL_INTERVAL,
    INSTANCE_RUNNING_TIMEOUT,
    INSTANCE_TERMINATED_TIMEOUT,
)

if TYPE_CHECKING:
    from capaws.backend import Boto3Backend

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".capaws" / "defaults.toml"
PROJECT_CONFIG_NAME = "capaws.toml"
SECTION = "aws"


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """AWS provider configuration.

    Args:
        region: AWS region for resources. Default: us-east-1
        running_timeout: Seconds to wait for a new instance to run.
        terminated_timeout: Seconds to wait for an instance to terminate.
        poll_interval: Seconds between instance state polls.
        ami_owner_id: Account publishing the default images.
        ami_base_os: Base OS of the default images.
        ami_base_os_version: Base OS version of the default images.
    """

    region: str = "us-east-1"
    running_timeout: float = INSTANCE_RUNNING_TIMEOUT
    terminated_timeout: float = INSTANCE_TERMINATED_TIMEOUT
    poll_interval: float = INSTANCE_POLL_INTERVAL
    ami_owner_id: str = DEFAULT_AMI_OWNER_ID
    ami_base_os: str = DEFAULT_AMI_BASE_OS
    ami_base_os_version: str = DEFAULT_AMI_BASE_OS_VERSION

    def create_backend(self) -> Boto3Backend:
        from capaws.backend import Boto3Backend

        return Boto3Backend(region=self.region, poll_interval=self.poll_interval)

    @classmethod
    def from_dict(cls, raw: RawConfig) -> ProviderConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(
                f"Unknown [{SECTION}] settings: {', '.join(unknown)}. "
                f"Valid: {', '.join(sorted(known))}"
            )
        return cls(**raw)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ProviderConfig:
    """Load the provider configuration.

    Reads the global file, then ``capaws.toml`` in ``project_dir``; project
    settings override global ones key by key. Only the ``[aws]`` table is used.

    Args:
        project_dir: Directory holding ``capaws.toml``. Defaults to the cwd.
        global_path: Global defaults file. Defaults to ``~/.capaws/defaults.toml``.

    Raises:
        ValueError: If the ``[aws]`` table has unknown settings.
    """
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    return ProviderConfig.from_dict(merged.get(SECTION, {}))
