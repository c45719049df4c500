"""Centralized constants and enums for capaws.

Tag keys and values defined here are matched verbatim by other controllers
filtering EC2 resources, so they must never change.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# AWS Resource Tags
# =============================================================================

CLUSTER_TAG_PREFIX: Final = "kubernetes.io/cluster/"
"""Tag key prefix; the full key is the prefix followed by the cluster id."""

NAME_TAG: Final = "Name"
LEGACY_CLUSTER_ID_TAG: Final = "clusterid"


class ClusterTag(StrEnum):
    """Tag keys owned by the AWS cluster provider."""

    PROVIDER_MANAGED = "sigs.k8s.io/cluster-api-provider-aws/managed"
    ROLE = "sigs.k8s.io/cluster-api-provider-aws/role"
    CLUSTER_ID_LABEL = "sigs.k8s.io/cluster-api-cluster"


class RoleTagValue(StrEnum):
    """Values written under ``ClusterTag.ROLE``."""

    APISERVER = "apiserver"
    BASTION = "bastion"
    COMMON = "common"


PROVIDER_MANAGED_VALUE: Final = "true"


# =============================================================================
# Machine Roles
# =============================================================================


class Role(StrEnum):
    """Purpose of a machine. Drives security groups and user data."""

    CONTROL_PLANE = "controlplane"
    NODE = "node"


# =============================================================================
# Security Group Roles
# =============================================================================


class SecurityGroupRole(StrEnum):
    """Cluster-level security groups keyed by the role they serve."""

    BASTION = "bastion"
    CONTROL_PLANE = "controlplane"
    NODE = "node"


# =============================================================================
# EC2 Instance States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    STOPPED = "stopped"


LIVE_STATES: Final = (InstanceState.PENDING, InstanceState.RUNNING)


# =============================================================================
# Resource Types
# =============================================================================

RESOURCE_TYPE_INSTANCE: Final = "instance"
RESOURCE_TYPE_VOLUME: Final = "volume"


# =============================================================================
# Images
# =============================================================================

DEFAULT_AMI_OWNER_ID: Final = "258751437250"
DEFAULT_AMI_BASE_OS: Final = "ubuntu"
DEFAULT_AMI_BASE_OS_VERSION: Final = "18.04"
AMI_NAME_FORMAT: Final = "capa-ami-{base_os}-{base_os_version}-{kubernetes_version}-*"


# =============================================================================
# User Data
# =============================================================================

USER_DATA_SECRET_KEY: Final = "userData"


# =============================================================================
# Timeouts (in seconds)
# =============================================================================

INSTANCE_RUNNING_TIMEOUT: Final = 600
INSTANCE_TERMINATED_TIMEOUT: Final = 600
INSTANCE_POLL_INTERVAL: Final = 15
