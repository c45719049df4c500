"""Provider-independent view of an EC2 instance.

The same ``Instance`` type describes a create request being assembled and
an instance observed through ``describe_instances``. Descriptors are
immutable: each provisioning step returns a new one.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from capaws.tags import TagSet


@dataclass(frozen=True, slots=True)
class NetworkInterface:
    """Network interface attached at launch."""

    subnet_id: str
    device_index: int = 0
    associate_public_ip: bool | None = None
    groups: tuple[str, ...] = ()

    def to_ec2(self) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "DeviceIndex": self.device_index,
            "SubnetId": self.subnet_id,
        }
        if self.associate_public_ip is not None:
            spec["AssociatePublicIpAddress"] = self.associate_public_ip
        if self.groups:
            spec["Groups"] = list(self.groups)
        return spec


@dataclass(frozen=True, slots=True)
class Instance:
    """An EC2 instance, desired or observed.

    ``security_group_ids`` and ``subnet_id`` are only sent when
    ``network_interfaces`` is empty.
    """

    type: str = ""
    image_id: str = ""
    iam_profile: str = ""
    subnet_id: str = ""
    network_interfaces: tuple[NetworkInterface, ...] = ()
    security_group_ids: tuple[str, ...] = ()
    key_name: str | None = None
    user_data: str | bytes | None = None
    ebs_optimized: bool | None = None
    tags: TagSet = field(default_factory=TagSet)

    # Observed only
    id: str = ""
    state: str = ""
    private_ip: str | None = None
    public_ip: str | None = None
    private_dns_name: str | None = None
    public_dns_name: str | None = None
    availability_zone: str | None = None

    @classmethod
    def from_sdk(cls, raw: Mapping[str, Any]) -> Instance:
        """Convert an instance record from ``describe_instances``/``run_instances``."""
        profile = raw.get("IamInstanceProfile") or {}
        return cls(
            id=raw["InstanceId"],
            state=(raw.get("State") or {}).get("Name", ""),
            type=raw.get("InstanceType", ""),
            image_id=raw.get("ImageId", ""),
            iam_profile=profile.get("Arn", ""),
            subnet_id=raw.get("SubnetId", ""),
            security_group_ids=tuple(g["GroupId"] for g in raw.get("SecurityGroups", [])),
            key_name=raw.get("KeyName"),
            ebs_optimized=raw.get("EbsOptimized"),
            tags=TagSet.from_ec2(raw.get("Tags")),
            private_ip=raw.get("PrivateIpAddress"),
            public_ip=raw.get("PublicIpAddress"),
            private_dns_name=raw.get("PrivateDnsName") or None,
            public_dns_name=raw.get("PublicDnsName") or None,
            availability_zone=(raw.get("Placement") or {}).get("AvailabilityZone"),
        )
