# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Resource providers for vaultinit.

Provides the abstract provider interfaces, an in-memory backend and the
Google Cloud backend, plus ``create_providers`` to wire a backend from a
BootstrapConfig.
"""

import logging
from dataclasses import dataclass

from vaultinit.config import BootstrapConfig
from vaultinit.exceptions import ConfigurationError

from .base import BucketProvider, KeyManagementProvider, PolicyProvider, ServiceAccountProvider
from .memory_provider import MemoryCloudProvider

logger = logging.getLogger(__name__)


@dataclass
class ProviderSet:
    """The capabilities a provisioning run consumes."""

    key_management: KeyManagementProvider
    buckets: BucketProvider
    service_accounts: ServiceAccountProvider
    key_policies: PolicyProvider
    bucket_policies: PolicyProvider

    @classmethod
    def from_memory(cls, cloud: MemoryCloudProvider) -> "ProviderSet":
        return cls(cloud, cloud, cloud, cloud, cloud)


def create_providers(config: BootstrapConfig) -> ProviderSet:
    """Build the providers selected by ``config.backend``.

    Raises:
        ConfigurationError: If credentials cannot be loaded.
    """
    if config.backend == "memory":
        logger.warning("Using the in-memory backend; nothing is provisioned in the cloud")
        return ProviderSet.from_memory(MemoryCloudProvider(project_id=config.project_id))
    if config.backend != "gcp":
        raise ConfigurationError(f"Unknown backend: {config.backend}")

    from google.cloud import iam_admin_v1, kms, storage

    from .gcp_provider import (
        GCPBucketPolicyProvider,
        GCPBucketProvider,
        GCPKeyManagementProvider,
        GCPKeyPolicyProvider,
        GCPServiceAccountProvider,
        load_credentials,
    )

    config.require_credentials()
    credentials = load_credentials(config.credentials_file)
    timeout = config.timeout_seconds

    kms_client = kms.KeyManagementServiceClient(credentials=credentials)
    storage_client = storage.Client(project=config.project_id, credentials=credentials)
    iam_client = iam_admin_v1.IAMClient(credentials=credentials)

    return ProviderSet(
        key_management=GCPKeyManagementProvider(kms_client, timeout),
        buckets=GCPBucketProvider(storage_client, config.project_id, timeout),
        service_accounts=GCPServiceAccountProvider(iam_client, timeout),
        key_policies=GCPKeyPolicyProvider(kms_client, timeout),
        bucket_policies=GCPBucketPolicyProvider(storage_client, timeout),
    )


__all__ = [
    "BucketProvider",
    "KeyManagementProvider",
    "MemoryCloudProvider",
    "PolicyProvider",
    "ProviderSet",
    "ServiceAccountProvider",
    "create_providers",
]
