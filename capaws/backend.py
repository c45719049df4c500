"""EC2 capability interface and its boto3 implementation.

The reconciliation engine only talks to ``EC2Backend``. Every method is
synchronous and raises ``botocore.exceptions.ClientError`` on API faults;
the waits raise ``WaitError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from functools import cached_property
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from botocore.exceptions import ClientError
from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from capaws.constants import (
    INSTANCE_POLL_INTERVAL,
    INSTANCE_RUNNING_TIMEOUT,
    INSTANCE_TERMINATED_TIMEOUT,
    InstanceState,
)
from capaws.errors import WaitError, is_not_found

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="ec2-backend")

type Reservation = dict[str, Any]


@runtime_checkable
class EC2Backend(Protocol):
    """The subset of EC2 the reconciliation engine needs."""

    def describe_instances(
        self,
        instance_ids: Sequence[str] = (),
        filters: Sequence[dict[str, Any]] = (),
    ) -> list[Reservation]: ...

    def run_instances(self, **request: Any) -> dict[str, Any]: ...

    def terminate_instances(self, instance_ids: Sequence[str]) -> None: ...

    def wait_until_running(self, instance_id: str, timeout: float) -> None: ...

    def wait_until_terminated(self, instance_id: str, timeout: float) -> None: ...

    def modify_instance_attribute(self, instance_id: str, groups: Sequence[str]) -> None: ...

    def create_tags(self, resource_ids: Sequence[str], tags: list[dict[str, str]]) -> None: ...

    def delete_tags(self, resource_ids: Sequence[str], tags: list[dict[str, str]]) -> None: ...

    def describe_subnets(self, filters: Sequence[dict[str, Any]]) -> list[dict[str, Any]]: ...

    def describe_availability_zones(self, zone_names: Sequence[str]) -> list[dict[str, Any]]: ...

    def describe_images(
        self,
        owners: Sequence[str],
        filters: Sequence[dict[str, Any]],
    ) -> list[dict[str, Any]]: ...


class _InstancePendingError(Exception):
    """Instance not in the target state yet - poll again."""


class Boto3Backend:
    """``EC2Backend`` on top of a boto3 EC2 client.

    Args:
        region: AWS region of the client.
        poll_interval: Seconds between state polls while waiting.
        client: Pre-built client, mostly for stubbing. Created lazily if None.
    """

    def __init__(
        self,
        region: str,
        poll_interval: float = INSTANCE_POLL_INTERVAL,
        client: EC2Client | None = None,
    ) -> None:
        self.region = region
        self.poll_interval = poll_interval
        self._client = client

    @cached_property
    def _ec2(self) -> EC2Client:
        """Lazy EC2 client."""
        if self._client is not None:
            return self._client

        import boto3

        return boto3.client("ec2", region_name=self.region)

    def describe_instances(
        self,
        instance_ids: Sequence[str] = (),
        filters: Sequence[dict[str, Any]] = (),
    ) -> list[Reservation]:
        kwargs: dict[str, Any] = {}
        if instance_ids:
            kwargs["InstanceIds"] = list(instance_ids)
        if filters:
            kwargs["Filters"] = list(filters)

        reservations: list[Reservation] = []
        paginator = self._ec2.get_paginator("describe_instances")
        for page in paginator.paginate(**kwargs):
            reservations.extend(page.get("Reservations", []))
        return reservations

    def run_instances(self, **request: Any) -> dict[str, Any]:
        return dict(self._ec2.run_instances(**request))

    def terminate_instances(self, instance_ids: Sequence[str]) -> None:
        self._ec2.terminate_instances(InstanceIds=list(instance_ids))

    def wait_until_running(
        self,
        instance_id: str,
        timeout: float = INSTANCE_RUNNING_TIMEOUT,
    ) -> None:
        self._wait_for_state(
            instance_id,
            InstanceState.RUNNING,
            failed=(
                InstanceState.SHUTTING_DOWN,
                InstanceState.TERMINATED,
                InstanceState.STOPPING,
            ),
            timeout=timeout,
        )

    def wait_until_terminated(
        self,
        instance_id: str,
        timeout: float = INSTANCE_TERMINATED_TIMEOUT,
    ) -> None:
        self._wait_for_state(
            instance_id,
            InstanceState.TERMINATED,
            failed=(InstanceState.PENDING, InstanceState.STOPPING),
            timeout=timeout,
        )

    def modify_instance_attribute(self, instance_id: str, groups: Sequence[str]) -> None:
        self._ec2.modify_instance_attribute(InstanceId=instance_id, Groups=list(groups))

    def create_tags(self, resource_ids: Sequence[str], tags: list[dict[str, str]]) -> None:
        self._ec2.create_tags(Resources=list(resource_ids), Tags=tags)  # type: ignore[arg-type]

    def delete_tags(self, resource_ids: Sequence[str], tags: list[dict[str, str]]) -> None:
        self._ec2.delete_tags(Resources=list(resource_ids), Tags=tags)  # type: ignore[arg-type]

    def describe_subnets(self, filters: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        response = self._ec2.describe_subnets(Filters=list(filters))  # type: ignore[arg-type]
        return list(response.get("Subnets", []))

    def describe_availability_zones(self, zone_names: Sequence[str]) -> list[dict[str, Any]]:
        response = self._ec2.describe_availability_zones(ZoneNames=list(zone_names))
        return list(response.get("AvailabilityZones", []))

    def describe_images(
        self,
        owners: Sequence[str],
        filters: Sequence[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        response = self._ec2.describe_images(
            Owners=list(owners),
            Filters=list(filters),  # type: ignore[arg-type]
        )
        return list(response.get("Images", []))

    def _current_state(self, instance_id: str) -> str | None:
        """State name of an instance, None while EC2 does not list it yet."""
        try:
            response = self._ec2.describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if is_not_found(e):
                return None
            raise

        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance["State"]["Name"]
        return None

    def _wait_for_state(
        self,
        instance_id: str,
        target: InstanceState,
        *,
        failed: tuple[InstanceState, ...],
        timeout: float,
    ) -> None:
        """Poll until ``instance_id`` reaches ``target``.

        A missing instance counts as pending. States in ``failed`` end the
        wait immediately.
        """

        @retry(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_exception_type(_InstancePendingError),
            reraise=False,
        )
        def _poll() -> None:
            state = self._current_state(instance_id)
            if state == target:
                return
            if state in failed:
                raise WaitError(instance_id, target, f"instance is {state}")
            log.debug(
                "Instance {instance_id} is {state}, waiting for {target}",
                instance_id=instance_id, state=state or "not visible", target=target,
            )
            raise _InstancePendingError()

        try:
            _poll()
        except RetryError as e:
            raise WaitError(instance_id, target, f"timed out after {timeout:.0f}s") from e
