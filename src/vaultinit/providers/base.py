# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Abstract Resource Provider Interfaces.

One narrow interface per capability so each can be swapped or mocked on its
own. Every backend (Google Cloud, in-memory) implements these contracts:

- Getters return ``None`` only when the service says the resource does not
  exist. Any other failure raises ``ProviderError``; timeouts and throttling
  raise ``ProviderTimeoutError``.
- Creators make exactly one attempt. A resource that already exists raises
  ``ResourceConflictError``.
- ``set_policy`` raises ``PolicyConflictError`` when the policy's etag is stale.
"""

from abc import ABC, abstractmethod
from typing import Optional

from vaultinit.identifiers import ResourceName
from vaultinit.policy import Policy
from vaultinit.resources import Bucket, CryptoKey, KeyRing, ServiceAccount


class KeyManagementProvider(ABC):
    """Key rings and crypto keys."""

    @abstractmethod
    def get_key_ring(self, name: ResourceName) -> Optional[KeyRing]:
        """Look up a key ring by its full name."""

    @abstractmethod
    def create_key_ring(self, name: ResourceName) -> KeyRing:
        """Create a key ring under ``name.parent`` (a location)."""

    @abstractmethod
    def get_crypto_key(self, name: ResourceName) -> Optional[CryptoKey]:
        """Look up a crypto key by its full name."""

    @abstractmethod
    def create_crypto_key(self, name: ResourceName, purpose: str) -> CryptoKey:
        """Create a crypto key under ``name.parent`` (a key ring)."""


class BucketProvider(ABC):
    """Object storage buckets."""

    @abstractmethod
    def get_bucket(self, name: ResourceName) -> Optional[Bucket]:
        """Look up a bucket."""

    @abstractmethod
    def create_bucket(self, name: ResourceName, location: Optional[str] = None) -> Bucket:
        """Create a bucket in the configured project."""


class ServiceAccountProvider(ABC):
    """IAM service accounts."""

    @abstractmethod
    def get_service_account(self, name: ResourceName) -> Optional[ServiceAccount]:
        """Look up a service account by ``projects/-/serviceAccounts/{email}``."""

    @abstractmethod
    def create_service_account(
        self,
        project: ResourceName,
        account_id: str,
        display_name: str,
    ) -> ServiceAccount:
        """Create a service account in ``project``."""


class PolicyProvider(ABC):
    """IAM policies of one resource type."""

    @abstractmethod
    def get_policy(self, resource: ResourceName) -> Policy:
        """Read the current policy, including its etag."""

    @abstractmethod
    def set_policy(self, resource: ResourceName, policy: Policy) -> Policy:
        """Replace the policy; ``policy.etag`` must be the one last read."""
