"""Default image resolution for machines without an explicit AMI.

Images are published per base OS and Kubernetes version under the name
``capa-ami-<os>-<os version>-<kubernetes version>-<suffix>``; the most
recently created match wins.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from capaws.constants import (
    AMI_NAME_FORMAT,
    DEFAULT_AMI_OWNER_ID,
)
from capaws.errors import BACKEND_ERRORS, BackendError, ImageLookupError
from capaws.filters import image_name

if TYPE_CHECKING:
    from capaws.backend import EC2Backend

log = logger.bind(component="ami")


def ami_name_pattern(base_os: str, base_os_version: str, kubernetes_version: str) -> str:
    return AMI_NAME_FORMAT.format(
        base_os=base_os,
        base_os_version=base_os_version,
        kubernetes_version=kubernetes_version.removeprefix("v"),
    )


def lookup_default_ami(
    backend: EC2Backend,
    base_os: str,
    base_os_version: str,
    kubernetes_version: str,
    owner_id: str = DEFAULT_AMI_OWNER_ID,
) -> str:
    """Resolve the newest published image for a base OS and Kubernetes version.

    Returns:
        AMI ID string (e.g., "ami-0123456789abcdef0")

    Raises:
        ImageLookupError: If no image matches.
        BackendError: If the image query fails.
    """
    pattern = ami_name_pattern(base_os, base_os_version, kubernetes_version)
    log.info("Resolving default AMI {pattern} owned by {owner}", pattern=pattern, owner=owner_id)

    try:
        images = backend.describe_images(owners=[owner_id], filters=[image_name(pattern)])
    except BACKEND_ERRORS as e:
        raise BackendError(
            "describe_images",
            f"failed to find ami {pattern!r}",
            owner=owner_id,
        ) from e

    if not images:
        raise ImageLookupError(
            f"No image found for {base_os} {base_os_version} and Kubernetes "
            f"{kubernetes_version or '<unset>'} (pattern {pattern!r}, owner {owner_id})"
        )

    # ISO-8601 timestamps sort lexicographically
    latest = max(images, key=lambda image: image.get("CreationDate", ""))
    ami_id: str = latest["ImageId"]
    log.info("Resolved AMI: {ami_id}", ami_id=ami_id)
    return ami_id
