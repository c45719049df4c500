"""User data for booting control-plane and node instances.

The reconciliation engine treats user data as an opaque document produced
by a ``UserDataGenerator``. ``KubeadmUserData`` is the default generator: it
renders a boot script that writes a kubeadm configuration and runs
``kubeadm init`` or ``kubeadm join``.

User data is kept as plain text; boto3 base64-encodes it on the wire.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from loguru import logger

log = logger.bind(component="userdata")


@dataclass(frozen=True, slots=True)
class ControlPlaneInput:
    ca_cert: str
    ca_key: str
    elb_address: str
    cluster_name: str
    pod_subnet: str
    service_subnet: str
    service_domain: str
    kubernetes_version: str


@dataclass(frozen=True, slots=True)
class NodeInput:
    ca_cert_hash: str
    bootstrap_token: str
    elb_address: str


@runtime_checkable
class UserDataGenerator(Protocol):
    def control_plane(self, params: ControlPlaneInput) -> str: ...

    def node(self, params: NodeInput) -> str: ...


@runtime_checkable
class SecretStore(Protocol):
    """Read access to orchestrator secrets."""

    def get(self, namespace: str, name: str) -> Mapping[str, bytes]: ...


class KubeadmUserData:
    """Renders kubeadm boot scripts."""

    api_server_port: int = 6443

    def control_plane(self, params: ControlPlaneInput) -> str:
        if not params.ca_cert or not params.ca_key:
            raise ValueError("control plane user data requires CA certificate and key")

        log.debug("Rendering control plane user data for {cluster}", cluster=params.cluster_name)
        return f"""#!/bin/bash
set -eux

mkdir -p /etc/kubernetes/pki

cat > /etc/kubernetes/pki/ca.crt << 'CAEOF'
{params.ca_cert.strip()}
CAEOF

cat > /etc/kubernetes/pki/ca.key << 'CAEOF'
{params.ca_key.strip()}
CAEOF
chmod 600 /etc/kubernetes/pki/ca.key

PRIVATE_IP=$(curl -s http://169.254.169.254/latest/meta-data/local-ipv4)
HOSTNAME=$(curl -s http://169.254.169.254/latest/meta-data/local-hostname)

cat > /tmp/kubeadm.yaml << KUBEADMEOF
---
apiVersion: kubeadm.k8s.io/v1beta1
kind: ClusterConfiguration
apiServer:
  certSANs:
    - "$PRIVATE_IP"
    - "{params.elb_address}"
  extraArgs:
    cloud-provider: aws
clusterName: "{params.cluster_name}"
controlPlaneEndpoint: "{params.elb_address}:{self.api_server_port}"
controllerManager:
  extraArgs:
    cloud-provider: aws
kubernetesVersion: "{params.kubernetes_version}"
networking:
  dnsDomain: "{params.service_domain}"
  podSubnet: "{params.pod_subnet}"
  serviceSubnet: "{params.service_subnet}"
---
apiVersion: kubeadm.k8s.io/v1beta1
kind: InitConfiguration
nodeRegistration:
  name: "$HOSTNAME"
  kubeletExtraArgs:
    cloud-provider: aws
KUBEADMEOF

kubeadm init --config /tmp/kubeadm.yaml
"""

    def node(self, params: NodeInput) -> str:
        if not params.bootstrap_token:
            raise ValueError("node user data requires a bootstrap token")

        return f"""#!/bin/bash
set -eux

HOSTNAME=$(curl -s http://169.254.169.254/latest/meta-data/local-hostname)

cat > /tmp/kubeadm-node.yaml << KUBEADMEOF
---
apiVersion: kubeadm.k8s.io/v1beta1
kind: JoinConfiguration
discovery:
  bootstrapToken:
    token: "{params.bootstrap_token}"
    apiServerEndpoint: "{params.elb_address}:{self.api_server_port}"
    caCertHashes:
      - "{params.ca_cert_hash}"
nodeRegistration:
  name: "$HOSTNAME"
  kubeletExtraArgs:
    cloud-provider: aws
KUBEADMEOF

kubeadm join --config /tmp/kubeadm-node.yaml
"""
