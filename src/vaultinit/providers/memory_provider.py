# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
In-Memory Resource Provider.

Simple in-memory implementation for development and testing.
"""

import logging
from typing import Optional

from vaultinit.exceptions import PolicyConflictError, ProviderError, ResourceConflictError
from vaultinit.identifiers import ResourceName, service_account_email, service_account_name
from vaultinit.policy import Policy
from vaultinit.resources import Bucket, CryptoKey, KeyRing, ServiceAccount

from .base import BucketProvider, KeyManagementProvider, PolicyProvider, ServiceAccountProvider

logger = logging.getLogger(__name__)


class MemoryCloudProvider(
    KeyManagementProvider,
    BucketProvider,
    ServiceAccountProvider,
    PolicyProvider,
):
    """
    In-memory cloud.

    Implements every provider interface over Python dictionaries and serves
    IAM policies for all resource kinds, enforcing etags on write like the
    real services. Data is lost on restart. Mutating calls are appended to
    ``operations`` as ``(operation, resource)`` pairs.
    """

    def __init__(self, project_id: str = "memory-project"):
        """Initialize an empty in-memory cloud."""
        self.project_id = project_id
        self._key_rings: dict[ResourceName, KeyRing] = {}
        self._crypto_keys: dict[ResourceName, CryptoKey] = {}
        self._buckets: dict[ResourceName, Bucket] = {}
        self._service_accounts: dict[ResourceName, ServiceAccount] = {}
        self._policies: dict[ResourceName, Policy] = {}
        self._etag_counter = 0
        self.operations: list[tuple[str, str]] = []

    def _record(self, operation: str, name: ResourceName) -> None:
        self.operations.append((operation, str(name)))

    def _new_etag(self) -> str:
        self._etag_counter += 1
        return f"etag-{self._etag_counter}"

    def _register(self, name: ResourceName) -> None:
        self._policies[name] = Policy(etag=self._new_etag())

    def _exists(self, name: ResourceName) -> bool:
        return (
            name in self._key_rings
            or name in self._crypto_keys
            or name in self._buckets
            or name in self._service_accounts
        )

    # Key management

    def get_key_ring(self, name: ResourceName) -> Optional[KeyRing]:
        """Look up a key ring."""
        return self._key_rings.get(name)

    def create_key_ring(self, name: ResourceName) -> KeyRing:
        """Create a key ring."""
        if name in self._key_rings:
            raise ResourceConflictError(f"Key ring {name} already exists")
        key_ring = KeyRing(name=name)
        self._key_rings[name] = key_ring
        self._register(name)
        self._record("create_key_ring", name)
        return key_ring

    def get_crypto_key(self, name: ResourceName) -> Optional[CryptoKey]:
        """Look up a crypto key."""
        return self._crypto_keys.get(name)

    def create_crypto_key(self, name: ResourceName, purpose: str) -> CryptoKey:
        """Create a crypto key inside an existing key ring."""
        if name.parent not in self._key_rings:
            raise ProviderError(f"Key ring {name.parent} not found")
        if name in self._crypto_keys:
            raise ResourceConflictError(f"Crypto key {name} already exists")
        key = CryptoKey(name=name, purpose=purpose)
        self._crypto_keys[name] = key
        self._register(name)
        self._record("create_crypto_key", name)
        return key

    # Buckets

    def get_bucket(self, name: ResourceName) -> Optional[Bucket]:
        """Look up a bucket."""
        return self._buckets.get(name)

    def create_bucket(self, name: ResourceName, location: Optional[str] = None) -> Bucket:
        """Create a bucket."""
        if name in self._buckets:
            raise ResourceConflictError(f"Bucket {name.resource_id} already exists")
        bucket = Bucket(name=name, location=location)
        self._buckets[name] = bucket
        self._register(name)
        self._record("create_bucket", name)
        return bucket

    # Service accounts

    def get_service_account(self, name: ResourceName) -> Optional[ServiceAccount]:
        """Look up a service account."""
        return self._service_accounts.get(name)

    def create_service_account(
        self,
        project: ResourceName,
        account_id: str,
        display_name: str,
    ) -> ServiceAccount:
        """Create a service account."""
        email = service_account_email(account_id, project.resource_id)
        name = service_account_name(email)
        if name in self._service_accounts:
            raise ResourceConflictError(f"Service account {email} already exists")
        account = ServiceAccount(
            name=name,
            email=email,
            display_name=display_name,
            unique_id=str(100000 + len(self._service_accounts)),
        )
        self._service_accounts[name] = account
        self._register(name)
        self._record("create_service_account", name)
        return account

    # Policies

    def get_policy(self, resource: ResourceName) -> Policy:
        """Return a copy of the stored policy."""
        if resource not in self._policies:
            raise ProviderError(f"Resource {resource} not found")
        return self._policies[resource].copy()

    def set_policy(self, resource: ResourceName, policy: Policy) -> Policy:
        """Store a policy if its etag matches the current one."""
        current = self._policies.get(resource)
        if current is None or not self._exists(resource):
            raise ProviderError(f"Resource {resource} not found")
        if policy.etag is not None and policy.etag != current.etag:
            raise PolicyConflictError(
                f"Stale etag {policy.etag!r} for {resource} (current {current.etag!r})"
            )
        stored = policy.copy()
        stored.etag = self._new_etag()
        self._policies[resource] = stored
        self._record("set_policy", resource)
        logger.debug("Policy on %s now at %s", resource, stored.etag)
        return stored.copy()
