"""EC2 describe-filter builders."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from capaws.constants import NAME_TAG, InstanceState
from capaws.tags import ResourceLifecycle, cluster_tag_key

type EC2Filter = dict[str, Any]


@dataclass(frozen=True, slots=True)
class Filter:
    """A user-supplied describe filter, e.g. ``Filter("tag:Name", ("private-*",))``."""

    name: str
    values: tuple[str, ...] = ()

    def to_ec2(self) -> EC2Filter:
        return {"Name": self.name, "Values": list(self.values)}


def build_ec2_filters(filters: Iterable[Filter]) -> list[EC2Filter]:
    return [f.to_ec2() for f in filters]


def cluster_owned(cluster_name: str) -> EC2Filter:
    """Resources owned by ``cluster_name``."""
    return {
        "Name": f"tag:{cluster_tag_key(cluster_name)}",
        "Values": [ResourceLifecycle.OWNED.value],
    }


def name(value: str) -> EC2Filter:
    return {"Name": f"tag:{NAME_TAG}", "Values": [value]}


def instance_states(*states: InstanceState) -> EC2Filter:
    return {"Name": "instance-state-name", "Values": [s.value for s in states]}


def availability_zone(zone: str) -> EC2Filter:
    return {"Name": "availabilityZone", "Values": [zone]}


def image_name(pattern: str) -> EC2Filter:
    return {"Name": "name", "Values": [pattern]}

