"""EC2 instance reconciliation for machines.

``InstanceService.create_or_get_machine`` is the idempotent entry point:
it looks an instance up by the id recorded on the machine, then by the
cluster ownership and ``Name`` tags, and only creates one when both
lookups come back empty. The tag lookup is what keeps a crash between
"instance created" and "id saved" from producing a second instance.

Nothing is retried here. Every failure is raised to the caller, which is
expected to call ``create_or_get_machine`` again.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import TYPE_CHECKING, Any, assert_never

from loguru import logger

from capaws import filters
from capaws.ami import lookup_default_ami
from capaws.certificates import certificate_hash
from capaws.config import ProviderConfig
from capaws.constants import (
    LEGACY_CLUSTER_ID_TAG,
    LIVE_STATES,
    RESOURCE_TYPE_INSTANCE,
    RESOURCE_TYPE_VOLUME,
    USER_DATA_SECRET_KEY,
    InstanceState,
    Role,
    SecurityGroupRole,
)
from capaws.errors import (
    BACKEND_ERRORS,
    BackendError,
    FailedDependencyError,
    InconsistencyError,
    UserDataError,
    WaitError,
    is_not_found,
)
from capaws.events import EventBus
from capaws.tags import BuildParams, ResourceLifecycle, TagSet, build_tags, cluster_tag_key, tag_delta
from capaws.types import Instance, NetworkInterface
from capaws.userdata import ControlPlaneInput, KubeadmUserData, NodeInput

if TYPE_CHECKING:
    from collections.abc import Callable

    from capaws.backend import EC2Backend
    from capaws.events import EventRecorder, Subject
    from capaws.scope import ClusterScope, Machine, SubnetReference
    from capaws.userdata import SecretStore, UserDataGenerator

log = logger.bind(component="ec2-instances")


def build_run_instances_request(instance: Instance, cluster_id: str) -> dict[str, Any]:
    """Translate a desired instance into ``run_instances`` arguments.

    The flat ``SubnetId``/``SecurityGroupIds`` pair and ``NetworkInterfaces``
    are mutually exclusive; the interfaces win when present.
    """
    request: dict[str, Any] = {
        "InstanceType": instance.type,
        "ImageId": instance.image_id,
        "MinCount": 1,
        "MaxCount": 1,
    }

    if instance.key_name:
        request["KeyName"] = instance.key_name
    if instance.user_data:
        request["UserData"] = instance.user_data
    if instance.ebs_optimized is not None:
        request["EbsOptimized"] = instance.ebs_optimized

    if instance.network_interfaces:
        request["NetworkInterfaces"] = [ni.to_ec2() for ni in instance.network_interfaces]
    else:
        request["SubnetId"] = instance.subnet_id
        if instance.security_group_ids:
            request["SecurityGroupIds"] = list(instance.security_group_ids)

    if instance.iam_profile:
        key = "Arn" if instance.iam_profile.startswith("arn:") else "Name"
        request["IamInstanceProfile"] = {key: instance.iam_profile}

    tag_specifications: list[dict[str, Any]] = []
    if instance.tags:
        tag_specifications.append({
            "ResourceType": RESOURCE_TYPE_INSTANCE,
            "Tags": instance.tags.to_ec2(),
        })
    tag_specifications.append({
        "ResourceType": RESOURCE_TYPE_VOLUME,
        "Tags": [{"Key": LEGACY_CLUSTER_ID_TAG, "Value": cluster_id}],
    })
    request["TagSpecifications"] = tag_specifications

    return request


def _first_instance(reservations: list[dict[str, Any]]) -> Instance | None:
    for reservation in reservations:
        for raw in reservation.get("Instances", []):
            return Instance.from_sdk(raw)
    return None


def _unique(ids: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(i for i in ids if i))


class InstanceService:
    """Finds, creates, tags and terminates the EC2 instances of one cluster.

    Args:
        backend: EC2 capability.
        scope: Cluster the machines belong to.
        events: Receives ``CreatedInstance``/``DeletedInstance`` events.
        user_data: Renders bootstrap user data.
        secrets: Reads user data secrets of machines outside a cluster.
        config: Timeouts and default image settings.
        cert_hasher: Hashes the cluster CA certificate for node discovery.
    """

    def __init__(
        self,
        backend: EC2Backend,
        scope: ClusterScope,
        *,
        events: EventRecorder | None = None,
        user_data: UserDataGenerator | None = None,
        secrets: SecretStore | None = None,
        config: ProviderConfig | None = None,
        cert_hasher: Callable[[bytes], str] = certificate_hash,
    ) -> None:
        self.backend = backend
        self.scope = scope
        self.events = events or EventBus()
        self.user_data = user_data or KubeadmUserData()
        self.secrets = secrets
        self.config = config or ProviderConfig()
        self.cert_hasher = cert_hasher

    # =========================================================================
    # Finder
    # =========================================================================

    def instance_if_exists(self, instance_id: str) -> Instance | None:
        """Return the pending or running instance with this id, if any."""
        log.debug("Looking for instance {instance_id}", instance_id=instance_id)

        try:
            reservations = self.backend.describe_instances(
                instance_ids=[instance_id],
                filters=[filters.instance_states(*LIVE_STATES)],
            )
        except BACKEND_ERRORS as e:
            if is_not_found(e):
                return None
            raise BackendError(
                "describe_instances",
                f"failed to describe instance {instance_id!r}",
                instance_id=instance_id,
            ) from e

        return _first_instance(reservations)

    def instance_by_tags(self, machine: Machine) -> Instance | None:
        """Return the pending or running instance tagged for this machine, if any.

        When several instances match, the first one in backend order is
        returned.
        """
        log.debug(
            "Looking for existing instance for machine {machine} in cluster {cluster}",
            machine=machine.name, cluster=self.scope.name,
        )

        try:
            reservations = self.backend.describe_instances(
                filters=[
                    filters.cluster_owned(self.scope.name),
                    filters.name(machine.name),
                    filters.instance_states(*LIVE_STATES),
                ],
            )
        except BACKEND_ERRORS as e:
            if is_not_found(e):
                return None
            raise BackendError(
                "describe_instances",
                "failed to describe instances by tags",
                machine=machine.name,
                cluster=self.scope.name,
            ) from e

        matches = sum(len(r.get("Instances", [])) for r in reservations)
        if matches > 1:
            log.warning(
                "{n} instances match machine {machine}, using the first one",
                n=matches, machine=machine.name,
            )
        return _first_instance(reservations)

    # =========================================================================
    # Reconcile
    # =========================================================================

    def create_or_get_machine(
        self,
        machine: Machine,
        bootstrap_token: str,
        *,
        timeout: float | None = None,
    ) -> Instance:
        """Return the machine's instance, creating it only if none exists."""
        log.info("Attempting to create or get machine {machine}", machine=machine.name)

        if machine.instance_id is not None:
            log.debug(
                "Looking up machine {machine} by id {instance_id}",
                machine=machine.name, instance_id=machine.instance_id,
            )
            try:
                instance = self.instance_if_exists(machine.instance_id)
            except BackendError as e:
                raise BackendError(
                    "create_or_get_machine",
                    f"failed to look up machine {machine.name!r} by id",
                    machine=machine.name,
                    instance_id=machine.instance_id,
                ) from e
            if instance is not None:
                return instance

        log.debug("Looking up machine {machine} by tags", machine=machine.name)
        try:
            instance = self.instance_by_tags(machine)
        except BackendError as e:
            raise BackendError(
                "create_or_get_machine",
                f"failed to query machine {machine.name!r} instance by tags",
                machine=machine.name,
            ) from e
        if instance is not None:
            return instance

        return self.create_instance(machine, bootstrap_token, timeout=timeout)

    # =========================================================================
    # Provisioner
    # =========================================================================

    def create_instance(
        self,
        machine: Machine,
        bootstrap_token: str,
        *,
        timeout: float | None = None,
    ) -> Instance:
        """Create and start an instance for ``machine``.

        Every missing dependency is detected before ``run_instances`` is
        called, so a failure here never leaves an instance behind.
        """
        role = machine.role
        log.info("Creating a new {role} instance for machine {machine}", role=role, machine=machine.name)

        desired = Instance(
            type=machine.config.instance_type,
            iam_profile=machine.config.iam_instance_profile.identity,
            ebs_optimized=machine.config.ebs_optimized,
            tags=self._instance_tags(machine, role),
        )
        desired = replace(desired, image_id=self._resolve_image(machine))
        desired, interface = self._resolve_network(desired, machine)

        self._check_preconditions()

        match role:
            case Role.CONTROL_PLANE:
                desired = self._compose_control_plane(desired, machine, interface)
            case Role.NODE:
                desired = self._compose_node(desired, machine, interface, bootstrap_token)
            case _:
                assert_never(role)

        if machine.config.key_name:
            desired = replace(desired, key_name=machine.config.key_name)

        created = self._run_instance(desired, machine, timeout)

        self.events.event(
            machine,
            "CreatedInstance",
            f"Created new {role} instance with id {created.id!r}",
        )
        return created

    def _instance_tags(self, machine: Machine, role: Role) -> TagSet:
        tags = build_tags(BuildParams(
            cluster_name=self.scope.name,
            lifecycle=ResourceLifecycle.OWNED,
            name=machine.name,
            role=role.value,
        ))
        # Legacy tags, still read by tooling keyed on the cluster id
        return tags.merge({
            LEGACY_CLUSTER_ID_TAG: machine.cluster_id,
            cluster_tag_key(machine.cluster_id): ResourceLifecycle.OWNED.value,
        })

    def _resolve_image(self, machine: Machine) -> str:
        if machine.config.ami.id:
            return machine.config.ami.id

        return lookup_default_ami(
            self.backend,
            base_os=self.config.ami_base_os,
            base_os_version=self.config.ami_base_os_version,
            kubernetes_version=machine.kubelet_version,
            owner_id=self.config.ami_owner_id,
        )

    def _resolve_network(
        self,
        desired: Instance,
        machine: Machine,
    ) -> tuple[Instance, NetworkInterface | None]:
        """Pick the subnet.

        An explicit subnet config yields a launch network interface; without
        one the first private cluster subnet is set on the instance itself.
        """
        subnet = machine.config.subnet

        if subnet is None:
            private = self.scope.network.private_subnets() if self.scope.network else ()
            if not private:
                raise FailedDependencyError(
                    f"failed to run machine {machine.name!r}, no subnets available"
                )
            return replace(desired, subnet_id=private[0].id), None

        subnet_id = subnet.id or self._subnet_from_filters(machine, subnet)
        interface = NetworkInterface(
            subnet_id=subnet_id,
            device_index=machine.config.device_index,
            associate_public_ip=machine.config.public_ip,
        )
        return desired, interface

    def _subnet_from_filters(self, machine: Machine, subnet: SubnetReference) -> str:
        ec2_filters = []
        zone = machine.config.availability_zone
        if zone:
            try:
                self.backend.describe_availability_zones([zone])
            except BACKEND_ERRORS as e:
                log.error("Error describing availability zone {zone}: {error}", zone=zone, error=e)
                raise BackendError(
                    "describe_availability_zones",
                    f"error describing availability zones: {e}",
                    machine=machine.name,
                    zone=zone,
                ) from e
            ec2_filters.append(filters.availability_zone(zone))

        ec2_filters.extend(filters.build_ec2_filters(subnet.filters))

        log.info("Describing subnets based on filters: {filters}", filters=ec2_filters)
        try:
            subnets = self.backend.describe_subnets(ec2_filters)
        except BACKEND_ERRORS as e:
            log.error("Error describing subnets: {error}", error=e)
            raise BackendError(
                "describe_subnets",
                f"error describing subnets: {e}",
                machine=machine.name,
            ) from e

        if not subnets:
            raise FailedDependencyError(
                f"failed to run machine {machine.name!r}, no subnet matches filters {ec2_filters}"
            )
        return subnets[0]["SubnetId"]

    def _check_preconditions(self) -> None:
        config = self.scope.config
        if config is not None and not config.ca_certificate:
            raise FailedDependencyError("failed to run controlplane, missing CACertificate")

        network = self.scope.network
        if network is not None and not network.api_server_elb_dns_name:
            raise FailedDependencyError("failed to run controlplane, APIServer ELB not available")

    def _elb_address(self) -> str:
        if self.scope.network is None or not self.scope.network.api_server_elb_dns_name:
            raise FailedDependencyError("failed to run machine, APIServer ELB not available")
        return self.scope.network.api_server_elb_dns_name

    def _compose_control_plane(
        self,
        desired: Instance,
        machine: Machine,
        interface: NetworkInterface | None,
    ) -> Instance:
        group = self.scope.security_group(SecurityGroupRole.CONTROL_PLANE)
        if group is None:
            raise FailedDependencyError("failed to run controlplane, security group not available")

        config = self.scope.config
        if config is None or not config.ca_private_key:
            raise FailedDependencyError("failed to run controlplane, missing CAPrivateKey")

        cluster = self.scope.cluster
        if cluster is None or not cluster.pod_cidr_blocks or not cluster.service_cidr_blocks:
            raise FailedDependencyError("failed to run controlplane, cluster network not available")

        params = ControlPlaneInput(
            ca_cert=config.ca_certificate.decode(),
            ca_key=config.ca_private_key.decode(),
            elb_address=self._elb_address(),
            cluster_name=self.scope.name,
            pod_subnet=cluster.pod_cidr_blocks[0],
            service_subnet=cluster.service_cidr_blocks[0],
            service_domain=cluster.service_domain,
            kubernetes_version=machine.control_plane_version,
        )
        try:
            user_data = self.user_data.control_plane(params)
        except Exception as e:
            raise UserDataError(f"failed to generate control plane user data for {machine.name!r}: {e}") from e

        groups = _unique([*desired.security_group_ids, group])
        desired = replace(desired, user_data=user_data, security_group_ids=groups)
        if interface is not None:
            desired = replace(desired, network_interfaces=(replace(interface, groups=groups),))
        return desired

    def _compose_node(
        self,
        desired: Instance,
        machine: Machine,
        interface: NetworkInterface | None,
        bootstrap_token: str,
    ) -> Instance:
        ids = list(desired.security_group_ids)
        if self.scope.cluster is not None:
            group = self.scope.security_group(SecurityGroupRole.NODE)
            if group is None:
                raise FailedDependencyError("failed to run node, security group not available")
            ids.append(group)
        ids.extend(self.scope.additional_security_groups)
        groups = _unique(ids)
        log.info("SecurityGroups: {groups}", groups=groups)

        desired = replace(desired, security_group_ids=groups)
        if interface is not None:
            desired = replace(desired, network_interfaces=(replace(interface, groups=groups),))

        secret = machine.config.user_data_secret
        if self.scope.cluster is None and secret is not None:
            user_data = self._user_data_from_secret(machine, secret.name)
        else:
            user_data = self._node_user_data(machine, bootstrap_token)
        return replace(desired, user_data=user_data)

    def _user_data_from_secret(self, machine: Machine, name: str) -> bytes | None:
        if self.secrets is None:
            raise FailedDependencyError(
                f"machine {machine.name!r} references user data secret {name!r} but no secret store is configured"
            )

        try:
            data = self.secrets.get(machine.namespace, name)
        except Exception as e:
            raise BackendError(
                "get_secret",
                f"failed to read user data secret {machine.namespace}/{name}",
                machine=machine.name,
            ) from e

        if USER_DATA_SECRET_KEY not in data:
            log.warning(
                "Secret {namespace}/{name} does not have {key} field set. "
                "Thus, no user data applied when creating an instance.",
                namespace=machine.namespace, name=name, key=USER_DATA_SECRET_KEY,
            )
            return None
        return bytes(data[USER_DATA_SECRET_KEY])

    def _node_user_data(self, machine: Machine, bootstrap_token: str) -> str:
        config = self.scope.config
        if config is None or not config.ca_certificate:
            raise FailedDependencyError("failed to run node, missing CACertificate")

        try:
            ca_cert_hash = self.cert_hasher(config.ca_certificate)
            return self.user_data.node(NodeInput(
                ca_cert_hash=ca_cert_hash,
                bootstrap_token=bootstrap_token,
                elb_address=self._elb_address(),
            ))
        except FailedDependencyError:
            raise
        except Exception as e:
            raise UserDataError(f"failed to generate node user data for {machine.name!r}: {e}") from e

    def _run_instance(self, desired: Instance, machine: Machine, timeout: float | None) -> Instance:
        request = build_run_instances_request(desired, machine.cluster_id)

        try:
            response = self.backend.run_instances(**request)
        except BACKEND_ERRORS as e:
            log.error("Failed to run instance for machine {machine}: {error}", machine=machine.name, error=e)
            raise BackendError(
                "run_instances",
                f"failed to run instance: {e}",
                machine=machine.name,
                instance_type=desired.type,
                image_id=desired.image_id,
            ) from e

        instances = response.get("Instances") or []
        if not instances:
            raise InconsistencyError(
                f"no instance returned for reservation {response.get('ReservationId')!r} "
                f"of machine {machine.name!r}"
            )

        created = Instance.from_sdk(instances[0])
        log.info("Instance {instance_id} created, waiting until running", instance_id=created.id)
        self._wait(
            self.backend.wait_until_running,
            created.id,
            InstanceState.RUNNING,
            self.config.running_timeout if timeout is None else timeout,
        )

        return self.instance_if_exists(created.id) or created

    def _wait(
        self,
        wait: Callable[[str, float], None],
        instance_id: str,
        state: InstanceState,
        timeout: float,
    ) -> None:
        try:
            wait(instance_id, timeout)
        except BACKEND_ERRORS as e:
            raise WaitError(instance_id, state, str(e)) from e

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def terminate_instance(self, instance_id: str, machine: Machine | None = None) -> None:
        """Terminate an instance and record a ``DeletedInstance`` event."""
        log.info("Attempting to terminate instance with id {instance_id}", instance_id=instance_id)

        try:
            self.backend.terminate_instances([instance_id])
        except BACKEND_ERRORS as e:
            log.error("Failed to terminate instance {instance_id}: {error}", instance_id=instance_id, error=e)
            raise BackendError(
                "terminate_instances",
                f"failed to terminate instance with id {instance_id!r}",
                instance_id=instance_id,
            ) from e

        log.info("Terminated instance with id {instance_id}", instance_id=instance_id)
        subject: Subject = self.scope if self.scope.cluster is not None or machine is None else machine
        self.events.event(subject, "DeletedInstance", f"Terminated instance {instance_id!r}")

    def terminate_instance_and_wait(
        self,
        instance_id: str,
        machine: Machine | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        """Terminate an instance and block until EC2 reports it terminated.

        Raises:
            BackendError: If the terminate call fails.
            WaitError: If the instance does not reach ``terminated``.
        """
        self.terminate_instance(instance_id, machine)

        log.info("Waiting for EC2 instance with id {instance_id} to terminate", instance_id=instance_id)
        self._wait(
            self.backend.wait_until_terminated,
            instance_id,
            InstanceState.TERMINATED,
            self.config.terminated_timeout if timeout is None else timeout,
        )

    def update_instance_security_groups(self, instance_id: str, group_ids: list[str]) -> None:
        """Replace the security groups of an instance."""
        log.info("Attempting to update security groups on instance {instance_id}", instance_id=instance_id)

        try:
            self.backend.modify_instance_attribute(instance_id, group_ids)
        except BACKEND_ERRORS as e:
            log.error("Failed to update security groups of {instance_id}: {error}", instance_id=instance_id, error=e)
            raise BackendError(
                "modify_instance_attribute",
                f"failed to modify instance {instance_id!r} security groups",
                instance_id=instance_id,
            ) from e

    def update_resource_tags(
        self,
        resource_id: str,
        create: Mapping[str, str],
        remove: Mapping[str, str],
    ) -> None:
        """Create ``create`` and delete ``remove`` tags on a resource.

        Each call is skipped when its mapping is empty. A failed create
        raises before the delete is attempted.
        """
        log.debug("Attempting to update tags on resource {resource_id}", resource_id=resource_id)

        if create:
            log.debug("Attempting to create tags on resource {resource_id}", resource_id=resource_id)
            try:
                self.backend.create_tags([resource_id], TagSet(create).to_ec2())
            except BACKEND_ERRORS as e:
                log.error("Failed to create tags on {resource_id}: {error}", resource_id=resource_id, error=e)
                raise BackendError(
                    "create_tags",
                    f"failed to create tags for resource {resource_id!r}: {dict(create)}",
                    resource_id=resource_id,
                ) from e

        if remove:
            log.debug("Attempting to delete tags on resource {resource_id}", resource_id=resource_id)
            try:
                self.backend.delete_tags([resource_id], TagSet(remove).to_ec2())
            except BACKEND_ERRORS as e:
                log.error("Failed to delete tags on {resource_id}: {error}", resource_id=resource_id, error=e)
                raise BackendError(
                    "delete_tags",
                    f"failed to delete tags for resource {resource_id!r}: {dict(remove)}",
                    resource_id=resource_id,
                ) from e

    def reconcile_tags(self, instance: Instance, desired: Mapping[str, str]) -> bool:
        """Converge the tags of an observed instance to ``desired``.

        Returns:
            True if any tag was created or removed.
        """
        create, remove = tag_delta(desired, instance.tags)
        if not create and not remove:
            return False

        self.update_resource_tags(instance.id, create, remove)
        return True
