"""Tag model and builder for EC2 resources.

Ownership and identity of every resource managed here is carried by tags,
not by a stored id. Example:

    >>> tags = build_tags(BuildParams(cluster_name="c1", lifecycle=ResourceLifecycle.OWNED, name="m1"))
    >>> tags["kubernetes.io/cluster/c1"]
    'owned'
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from capaws.constants import (
    CLUSTER_TAG_PREFIX,
    NAME_TAG,
    PROVIDER_MANAGED_VALUE,
    ClusterTag,
)


class ResourceLifecycle(StrEnum):
    """Whether a resource lives and dies with its cluster.

    ``OWNED`` resources are deleted together with the cluster. ``SHARED``
    resources are used by several clusters and must survive teardown.
    """

    OWNED = "owned"
    SHARED = "shared"


class TagSet(Mapping[str, str]):
    """Immutable mapping of tag keys to tag values."""

    __slots__ = ("_tags",)

    def __init__(self, tags: Mapping[str, str] | Iterable[tuple[str, str]] = ()) -> None:
        self._tags: dict[str, str] = dict(tags)

    def __getitem__(self, key: str) -> str:
        return self._tags[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __repr__(self) -> str:
        return f"TagSet({self._tags!r})"

    def equals(self, other: Mapping[str, str]) -> bool:
        return self._tags == dict(other)

    def difference(self, other: Mapping[str, str]) -> TagSet:
        """Tags of this set not present in ``other`` with the same value."""
        return TagSet(
            (key, value) for key, value in self._tags.items()
            if other.get(key) != value
        )

    def merge(self, other: Mapping[str, str]) -> TagSet:
        """New set with ``other`` layered over this one."""
        return TagSet({**self._tags, **other})

    def to_ec2(self) -> list[dict[str, str]]:
        """Convert to the ``[{"Key": ..., "Value": ...}]`` list EC2 expects."""
        return [{"Key": key, "Value": value} for key, value in self._tags.items()]

    @classmethod
    def from_ec2(cls, tags: Iterable[Mapping[str, Any]] | None) -> TagSet:
        return cls((t["Key"], t.get("Value", "")) for t in tags or ())


def cluster_tag_key(cluster_id: str) -> str:
    """Ownership tag key for a cluster."""
    return f"{CLUSTER_TAG_PREFIX}{cluster_id}"


@dataclass(frozen=True, slots=True)
class BuildParams:
    """Inputs for ``build_tags``.

    Args:
        cluster_name: Name of the owning cluster.
        lifecycle: Ownership value written under the cluster tag.
        name: Value of the ``Name`` tag, if any.
        role: Value of the role tag, if any.
        additional: Extra tags. Reserved keys built here take precedence.
    """

    cluster_name: str
    lifecycle: ResourceLifecycle
    name: str | None = None
    role: str | None = None
    additional: Mapping[str, str] = field(default_factory=dict)


def build_tags(params: BuildParams) -> TagSet:
    """Build the canonical tag set for a resource."""
    tags = dict(params.additional)

    if params.name:
        tags[NAME_TAG] = params.name

    if params.role:
        tags[ClusterTag.ROLE] = params.role

    tags[cluster_tag_key(params.cluster_name)] = params.lifecycle.value
    tags[ClusterTag.PROVIDER_MANAGED] = PROVIDER_MANAGED_VALUE

    return TagSet(tags)


def tag_delta(
    desired: Mapping[str, str],
    observed: Mapping[str, str],
) -> tuple[TagSet, TagSet]:
    """Compute the ``(create, remove)`` sets converging ``observed`` to ``desired``.

    A key whose value changed is only re-created; it is never removed first.
    """
    create = TagSet(desired).difference(observed)
    remove = TagSet(
        (key, value) for key, value in observed.items() if key not in desired
    )
    return create, remove
