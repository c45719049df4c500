"""capaws - EC2 instance reconciliation for cluster machines.

Example:

    from capaws import InstanceService, load_config

    config = load_config()
    service = InstanceService(config.create_backend(), scope, config=config)
    instance = service.create_or_get_machine(machine, bootstrap_token)
"""

from capaws.backend import Boto3Backend, EC2Backend
from capaws.config import ProviderConfig, load_config
from capaws.constants import ClusterTag, InstanceState, Role, SecurityGroupRole
from capaws.errors import (
    BackendError,
    CapawsError,
    FailedDependencyError,
    ImageLookupError,
    InconsistencyError,
    UnknownRoleError,
    UserDataError,
    WaitError,
)
from capaws.events import Event, EventBus, EventRecorder
from capaws.instances import InstanceService, build_run_instances_request
from capaws.logging import LogConfig, setup_logging, teardown_logging
from capaws.scope import (
    AMIReference,
    ClusterConfig,
    ClusterNetworkSpec,
    ClusterScope,
    IAMProfileReference,
    Machine,
    MachineConfig,
    NetworkStatus,
    SecretReference,
    Subnet,
    SubnetReference,
    parse_role,
)
from capaws.tags import BuildParams, ResourceLifecycle, TagSet, build_tags, tag_delta
from capaws.types import Instance, NetworkInterface

__all__ = [
    "AMIReference",
    "BackendError",
    "Boto3Backend",
    "BuildParams",
    "CapawsError",
    "ClusterConfig",
    "ClusterNetworkSpec",
    "ClusterScope",
    "ClusterTag",
    "EC2Backend",
    "Event",
    "EventBus",
    "EventRecorder",
    "FailedDependencyError",
    "IAMProfileReference",
    "ImageLookupError",
    "InconsistencyError",
    "Instance",
    "InstanceService",
    "InstanceState",
    "LogConfig",
    "Machine",
    "MachineConfig",
    "NetworkInterface",
    "NetworkStatus",
    "ProviderConfig",
    "ResourceLifecycle",
    "Role",
    "SecretReference",
    "SecurityGroupRole",
    "Subnet",
    "SubnetReference",
    "TagSet",
    "UnknownRoleError",
    "UserDataError",
    "WaitError",
    "build_run_instances_request",
    "build_tags",
    "load_config",
    "parse_role",
    "setup_logging",
    "tag_delta",
    "teardown_logging",
]
