# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Kubernetes Manifests

Assembles the output of a provisioning run into two Kubernetes documents:

- a ``Secret`` carrying ``ca.crt``, ``server.crt`` and ``server.key``,
- a ``ConfigMap`` carrying ``api-addr``, ``gcs-bucket-name`` and ``kms-key-id``,

always in that order, and serializes them as one multi-document YAML file.
"""

from __future__ import annotations

import base64
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

from vaultinit.exceptions import ManifestError

logger = logging.getLogger(__name__)

CA_CERT_KEY = "ca.crt"
SERVER_CERT_KEY = "server.crt"
SERVER_KEY_KEY = "server.key"

API_ADDR_KEY = "api-addr"
BUCKET_NAME_KEY = "gcs-bucket-name"
KMS_KEY_ID_KEY = "kms-key-id"

MANIFEST_FILE_MODE = 0o600


class ObjectMeta(BaseModel):
    """Kubernetes object metadata."""

    name: str = Field(..., description="Object name")
    namespace: Optional[str] = Field(None, description="Namespace, cluster default if unset")


class VaultSecret(BaseModel):
    """TLS material for the Vault server."""

    metadata: ObjectMeta
    ca_cert: bytes
    server_cert: bytes
    server_key: bytes

    def to_document(self) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": self.metadata.model_dump(exclude_none=True),
            "type": "Opaque",
            "data": {
                CA_CERT_KEY: _b64(self.ca_cert),
                SERVER_CERT_KEY: _b64(self.server_cert),
                SERVER_KEY_KEY: _b64(self.server_key),
            },
        }


class VaultConfigMap(BaseModel):
    """Seal and storage settings for the Vault server."""

    metadata: ObjectMeta
    api_addr: str
    bucket_name: str
    kms_key_id: str

    def to_document(self) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self.metadata.model_dump(exclude_none=True),
            "data": {
                API_ADDR_KEY: self.api_addr,
                BUCKET_NAME_KEY: self.bucket_name,
                KMS_KEY_ID_KEY: self.kms_key_id,
            },
        }


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def build_manifests(
    ca_cert: bytes,
    server_cert: bytes,
    server_key: bytes,
    api_addr: str,
    bucket_name: str,
    key_id: str,
    name: str = "vault",
    namespace: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Build the Secret and ConfigMap documents, Secret first.

    Args:
        ca_cert: PEM CA certificate.
        server_cert: PEM server certificate.
        server_key: PEM server private key.
        api_addr: Vault API address.
        bucket_name: GCS bucket name.
        key_id: Full KMS crypto key name.
        name: Name of both objects.
        namespace: Namespace of both objects.
    """
    metadata = ObjectMeta(name=name, namespace=namespace)
    secret = VaultSecret(
        metadata=metadata,
        ca_cert=ca_cert,
        server_cert=server_cert,
        server_key=server_key,
    )
    config_map = VaultConfigMap(
        metadata=metadata,
        api_addr=api_addr,
        bucket_name=bucket_name,
        kms_key_id=key_id,
    )
    return [secret.to_document(), config_map.to_document()]


def dump_manifests(documents: list[dict[str, Any]]) -> str:
    """Serialize documents as multi-document YAML separated by ``---``."""
    return yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False)


def write_manifests(
    documents: list[dict[str, Any]],
    path: Path,
    mode: int = MANIFEST_FILE_MODE,
) -> Path:
    """Write documents to ``path``, readable by the owner only.

    Raises:
        ManifestError: If the file cannot be written.
    """
    data = dump_manifests(documents)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "w") as f:
            f.write(data)
        # O_CREAT only applies the mode to new files.
        os.chmod(path, mode)
    except OSError as exc:
        raise ManifestError(f"Failed to write manifests to {path}: {exc}") from exc
    logger.info("Saved manifests to %s", path)
    return path


def load_manifests(path: Path) -> list[dict[str, Any]]:
    """Load the documents of a manifest file.

    Raises:
        ManifestError: If the file is missing or not valid YAML.
    """
    if not path.exists():
        raise ManifestError(f"Manifest file not found: {path}")
    try:
        with open(path) as f:
            return [doc for doc in yaml.safe_load_all(f) if doc is not None]
    except yaml.YAMLError as exc:
        raise ManifestError(f"Failed to load manifests: {exc}") from exc


def decode_secret_data(document: dict[str, Any]) -> dict[str, bytes]:
    """Decode the base64 ``data`` of a Secret document.

    Raises:
        ManifestError: If the document is not a Secret.
    """
    if document.get("kind") != "Secret":
        raise ManifestError(f"Expected a Secret, got {document.get('kind')!r}")
    return {key: base64.b64decode(value) for key, value in document.get("data", {}).items()}
