"""CA certificate hashing for kubeadm discovery."""

from __future__ import annotations

import hashlib

from cryptography import x509
from cryptography.hazmat.primitives import serialization


def certificate_hash(pem: bytes) -> str:
    """Hash of a CA certificate's public key, as kubeadm's ``--discovery-token-ca-cert-hash``.

    Raises:
        ValueError: If ``pem`` is not a PEM encoded certificate.
    """
    cert = x509.load_pem_x509_certificate(pem)
    spki = cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return f"sha256:{hashlib.sha256(spki).hexdigest()}"
