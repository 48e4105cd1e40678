# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Bootstrap Configuration

Everything a provisioning run needs, passed explicitly to the orchestrator.
Loaded from a YAML file (``vaultinit.yaml``) with CLI overrides on top.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from vaultinit.exceptions import ConfigurationError
from vaultinit.identifiers import service_account_email

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "vaultinit.yaml"

DEFAULT_DNS_NAMES = ["vault", "vault.default.svc.cluster.local", "localhost"]
DEFAULT_IP_ADDRESSES = ["127.0.0.1"]

_ACCOUNT_ID_RE = re.compile(r"^[a-z](?:[-a-z0-9]{4,28}[a-z0-9])$")
_BUCKET_RE = re.compile(r"^[a-z0-9][-_.a-z0-9]{1,61}[a-z0-9]$")
_RESOURCE_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{1,63}$")


class BootstrapConfig(BaseModel):
    """Configuration for one provisioning run.

    Example:
        >>> config = BootstrapConfig(
        ...     project_id="my-project",
        ...     key_ring_id="vault",
        ...     key_id="vault-init",
        ...     bucket_name="my-project-vault",
        ...     service_account_id="vault-server",
        ... )
    """

    project_id: str = Field(..., description="Google Cloud project id")
    location: str = Field(default="global", description="KMS location")
    key_ring_id: str = Field(..., description="KMS key ring id")
    key_id: str = Field(..., description="KMS crypto key id")
    bucket_name: str = Field(..., description="GCS bucket holding Vault data")
    bucket_location: Optional[str] = Field(
        default=None, description="GCS bucket location (service default if unset)"
    )
    service_account_id: str = Field(..., description="Service account id (6-30 chars)")
    service_account_name: str = Field(
        default="vault-server", description="Service account display name"
    )

    dns_names: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DNS_NAMES),
        description="DNS subject alternative names of the server certificate",
    )
    ip_addresses: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IP_ADDRESSES),
        description="IP subject alternative names of the server certificate",
    )

    api_addr: str = Field(default="https://vault.default.svc", description="Vault API address")
    manifest_name: str = Field(default="vault", description="Secret and ConfigMap name")
    manifest_namespace: Optional[str] = Field(default=None, description="Kubernetes namespace")
    output_path: Path = Field(default=Path("vault-config.yaml"), description="Manifest file")

    credentials_file: Optional[Path] = Field(
        default=None, description="Service account JSON key (ADC if unset)"
    )
    backend: Literal["gcp", "memory"] = Field(default="gcp", description="Provider backend")
    timeout_seconds: float = Field(default=30.0, gt=0, le=600, description="Per-call timeout")
    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts for transient errors")
    retry_backoff_seconds: float = Field(
        default=1.0, ge=0, description="Initial backoff between attempts"
    )

    @field_validator("project_id", "location", "key_ring_id", "key_id")
    @classmethod
    def validate_resource_id(cls, v: str) -> str:
        if not _RESOURCE_ID_RE.match(v):
            raise ValueError(f"Invalid resource id: {v!r}")
        return v

    @field_validator("bucket_name")
    @classmethod
    def validate_bucket_name(cls, v: str) -> str:
        if not _BUCKET_RE.match(v):
            raise ValueError(f"Invalid bucket name: {v!r}")
        return v

    @field_validator("service_account_id")
    @classmethod
    def validate_service_account_id(cls, v: str) -> str:
        """Service account ids are 6-30 lowercase letters, digits or hyphens."""
        if not _ACCOUNT_ID_RE.match(v):
            raise ValueError(
                f"Invalid service account id: {v!r} "
                "(6-30 characters, lowercase letters, digits and hyphens)"
            )
        return v

    @field_validator("ip_addresses")
    @classmethod
    def validate_ip_addresses(cls, v: list[str]) -> list[str]:
        for address in v:
            ipaddress.ip_address(address)
        return v

    @property
    def service_account_email(self) -> str:
        return service_account_email(self.service_account_id, self.project_id)

    def require_credentials(self) -> None:
        """Fail before any cloud call if the credentials file is unusable.

        Raises:
            ConfigurationError: If ``credentials_file`` is set but missing.
        """
        if self.credentials_file is not None and not self.credentials_file.is_file():
            raise ConfigurationError(
                f"Service account json file not found: {self.credentials_file}"
            )


def load_config(path: Path, **overrides: Any) -> BootstrapConfig:
    """Load a configuration from a YAML file.

    Args:
        path: Path to the file, or a directory containing ``vaultinit.yaml``.
        overrides: Field values that take precedence over the file; ``None``
            values are ignored.

    Raises:
        ConfigurationError: If the file is missing or invalid.
    """
    if path.is_dir():
        path = path / CONFIG_FILENAME
    if not path.exists():
        raise ConfigurationError(f"Config not found: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Failed to parse config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must be a mapping")
    data.update({k: v for k, v in overrides.items() if v is not None})
    config = build_config(data)
    logger.info("Loaded config from %s", path)
    return config


def build_config(data: dict[str, Any]) -> BootstrapConfig:
    """Validate a mapping into a BootstrapConfig.

    Raises:
        ConfigurationError: If validation fails.
    """
    try:
        return BootstrapConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
