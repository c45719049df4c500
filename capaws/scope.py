"""Inputs to the reconciliation engine: the machine and its cluster.

These are plain snapshots handed in by the orchestrator on every call;
nothing here is persisted or cached.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from capaws.constants import ClusterTag, Role, SecurityGroupRole
from capaws.errors import UnknownRoleError
from capaws.filters import Filter


def parse_role(value: str | Role) -> Role:
    """Parse a role string, rejecting anything but the known roles."""
    try:
        return Role(value)
    except ValueError:
        raise UnknownRoleError(str(value)) from None


# =============================================================================
# Machine
# =============================================================================


@dataclass(frozen=True, slots=True)
class AMIReference:
    id: str | None = None


@dataclass(frozen=True, slots=True)
class IAMProfileReference:
    """IAM instance profile, by id (name) or by ARN. ``id`` wins when both are set."""

    id: str | None = None
    arn: str | None = None

    @property
    def identity(self) -> str:
        return self.id or self.arn or ""


@dataclass(frozen=True, slots=True)
class SubnetReference:
    """Explicit subnet, or filters resolving to one."""

    id: str | None = None
    filters: tuple[Filter, ...] = ()


@dataclass(frozen=True, slots=True)
class SecretReference:
    name: str


@dataclass(frozen=True, slots=True)
class MachineConfig:
    """Provider-specific part of a machine spec.

    Args:
        instance_type: EC2 instance type.
        ami: Image to boot. If no id, a default image is looked up.
        iam_instance_profile: Instance profile to attach.
        subnet: Subnet placement. If None, the first private cluster subnet is used.
        availability_zone: Zone scoping ``subnet.filters``.
        device_index: Device index of the launch network interface.
        public_ip: Whether the launch network interface gets a public IP.
        key_name: SSH key pair name. No key is attached when empty.
        user_data_secret: Secret holding user data for machines outside a cluster.
        ebs_optimized: EBS optimization flag, left to EC2 when None.
    """

    instance_type: str
    ami: AMIReference = field(default_factory=AMIReference)
    iam_instance_profile: IAMProfileReference = field(default_factory=IAMProfileReference)
    subnet: SubnetReference | None = None
    availability_zone: str = ""
    device_index: int = 0
    public_ip: bool | None = None
    key_name: str = ""
    user_data_secret: SecretReference | None = None
    ebs_optimized: bool | None = None


@dataclass(frozen=True, slots=True)
class Machine:
    """The declared machine a single instance is reconciled against.

    ``instance_id`` is the id recorded in the machine status, if any.
    """

    name: str
    role: Role
    config: MachineConfig
    namespace: str = "default"
    labels: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    instance_id: str | None = None
    kubelet_version: str = ""
    control_plane_version: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", parse_role(self.role))

    @property
    def cluster_id(self) -> str:
        return self.labels.get(ClusterTag.CLUSTER_ID_LABEL, "")


# =============================================================================
# Cluster
# =============================================================================


@dataclass(frozen=True, slots=True)
class Subnet:
    id: str
    availability_zone: str = ""
    is_public: bool = False


@dataclass(frozen=True, slots=True)
class ClusterNetworkSpec:
    """Network ranges declared on the cluster object."""

    pod_cidr_blocks: tuple[str, ...] = ()
    service_cidr_blocks: tuple[str, ...] = ()
    service_domain: str = ""


@dataclass(frozen=True, slots=True)
class ClusterConfig:
    """Provider config of the cluster. Holds the cluster CA material."""

    ca_certificate: bytes = b""
    ca_private_key: bytes = b""


@dataclass(frozen=True, slots=True)
class NetworkStatus:
    """Observed cluster infrastructure."""

    api_server_elb_dns_name: str = ""
    subnets: tuple[Subnet, ...] = ()
    security_groups: Mapping[SecurityGroupRole, str] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    def private_subnets(self) -> tuple[Subnet, ...]:
        return tuple(s for s in self.subnets if not s.is_public)


@dataclass(frozen=True, slots=True)
class ClusterScope:
    """The cluster a machine belongs to.

    ``cluster`` is None for machines not managed through a cluster object;
    ``config`` and ``network`` are None when the cluster has not reported them.
    """

    name: str
    cluster: ClusterNetworkSpec | None = None
    config: ClusterConfig | None = None
    network: NetworkStatus | None = None
    additional_security_groups: tuple[str, ...] = ()

    def security_group(self, role: SecurityGroupRole) -> str | None:
        if self.network is None:
            return None
        return self.network.security_groups.get(role)
