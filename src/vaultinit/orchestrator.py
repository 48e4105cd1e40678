# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Provisioning Orchestrator

Drives a provisioning run over the fixed resource topology:

    CA + server certificate
    key ring -> crypto key
    bucket
    service account
    grants: key (encrypter/decrypter), bucket (object admin + legacy reader)
    manifests

Each resource goes through ensure-or-create: look it up, create it only if
the provider reports it absent. Lookups that fail for any other reason abort
the run; transient failures are retried a bounded number of times first. A
create that loses a race against another run re-reads the resource and
reports it as found.

Runs are sequential and not resumable beyond what the lookups rediscover.
Nothing is rolled back on failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from vaultinit.authority import CertificateAuthority, CertificatePair, SubjectAltNames
from vaultinit.config import BootstrapConfig
from vaultinit.exceptions import (
    ProviderTimeoutError,
    ProvisioningError,
    ResourceConflictError,
)
from vaultinit.identifiers import (
    ResourceKind,
    ResourceName,
    bucket_name,
    crypto_key_name,
    key_ring_name,
    location_name,
    project_name,
    service_account_name,
)
from vaultinit.manifest import build_manifests
from vaultinit.policy import AccessPolicyBinder, PolicyGrant
from vaultinit.providers import ProviderSet
from vaultinit.resources import ENCRYPT_DECRYPT, Bucket, CryptoKey, KeyRing, Resource, ServiceAccount

logger = logging.getLogger(__name__)

KMS_ENCRYPTER_DECRYPTER_ROLE = "roles/cloudkms.cryptoKeyEncrypterDecrypter"
STORAGE_OBJECT_ADMIN_ROLE = "roles/storage.objectAdmin"
STORAGE_LEGACY_BUCKET_READER_ROLE = "roles/storage.legacyBucketReader"

KEY_ROLES = (KMS_ENCRYPTER_DECRYPTER_ROLE,)
BUCKET_ROLES = (STORAGE_OBJECT_ADMIN_ROLE, STORAGE_LEGACY_BUCKET_READER_ROLE)

T = TypeVar("T")


@dataclass(frozen=True)
class EnsureResult:
    """A resource and whether this run created it."""

    resource: Resource
    created: bool

    @property
    def kind(self) -> ResourceKind:
        return self.resource.kind

    @property
    def name(self) -> ResourceName:
        return self.resource.name


@dataclass
class ServerCertificates:
    """TLS material generated for the run."""

    ca_cert_pem: bytes
    server: CertificatePair

    @property
    def server_cert_pem(self) -> bytes:
        return self.server.cert_pem

    @property
    def server_key_pem(self) -> bytes:
        return self.server.key_pem


@dataclass
class ProvisioningResult:
    """Everything a run produced."""

    project_id: str
    key_ring: EnsureResult
    crypto_key: EnsureResult
    bucket: EnsureResult
    service_account: EnsureResult
    grants: list[PolicyGrant]
    certificates: ServerCertificates
    manifests: list[dict[str, Any]] = field(default_factory=list)

    @property
    def resources(self) -> list[EnsureResult]:
        return [self.key_ring, self.crypto_key, self.bucket, self.service_account]

    @property
    def created(self) -> list[EnsureResult]:
        return [r for r in self.resources if r.created]

    @property
    def kms_key_id(self) -> str:
        return str(self.crypto_key.name)

    @property
    def service_account_email(self) -> str:
        return self.service_account.resource.email

    @property
    def bucket_name(self) -> str:
        return self.bucket.resource.bucket_id

    def summary_lines(self) -> list[str]:
        return [
            f"Project ID: {self.project_id}",
            f"Storage Bucket Name: {self.bucket_name}",
            f"Service account email: {self.service_account_email}",
            f"KMS key ID: {self.kms_key_id}",
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "bucket_name": self.bucket_name,
            "service_account_email": self.service_account_email,
            "kms_key_id": self.kms_key_id,
            "resources": [
                {"kind": r.kind.value, "name": str(r.name), "created": r.created}
                for r in self.resources
            ],
            "grants": [
                {
                    "resource": str(g.resource),
                    "member": g.member,
                    "roles": list(g.roles),
                    "added": list(g.added),
                }
                for g in self.grants
            ],
        }


class ProvisioningOrchestrator:
    """
    Ensures the Vault auto-unseal resources exist and wires them together.

    Args:
        config: What to provision
        providers: Provider capabilities to provision with
        sleep: Called with the backoff delay between transient retries
    """

    def __init__(
        self,
        config: BootstrapConfig,
        providers: ProviderSet,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.providers = providers
        self._sleep = sleep
        self._ensured: dict[ResourceName, Resource] = {}
        self._lookups: dict[ResourceKind, Callable[[ResourceName], Optional[Resource]]] = {
            ResourceKind.KEY_RING: providers.key_management.get_key_ring,
            ResourceKind.CRYPTO_KEY: providers.key_management.get_crypto_key,
            ResourceKind.BUCKET: providers.buckets.get_bucket,
            ResourceKind.SERVICE_ACCOUNT: providers.service_accounts.get_service_account,
        }
        self._creators: dict[ResourceKind, Callable[[ResourceName], Resource]] = {
            ResourceKind.KEY_RING: providers.key_management.create_key_ring,
            ResourceKind.CRYPTO_KEY: self._create_crypto_key,
            ResourceKind.BUCKET: self._create_bucket,
            ResourceKind.SERVICE_ACCOUNT: self._create_service_account,
        }

    # Resource names

    @property
    def key_ring_name(self) -> ResourceName:
        location = location_name(self.config.project_id, self.config.location)
        return key_ring_name(location, self.config.key_ring_id)

    @property
    def bucket_name(self) -> ResourceName:
        return bucket_name(self.config.bucket_name)

    @property
    def service_account_name(self) -> ResourceName:
        return service_account_name(self.config.service_account_email)

    # Create adapters

    def _create_crypto_key(self, name: ResourceName) -> CryptoKey:
        return self.providers.key_management.create_crypto_key(name, ENCRYPT_DECRYPT)

    def _create_bucket(self, name: ResourceName) -> Bucket:
        return self.providers.buckets.create_bucket(name, self.config.bucket_location)

    def _create_service_account(self, name: ResourceName) -> ServiceAccount:
        if name != self.service_account_name:
            raise ProvisioningError(f"Unexpected service account {name}")
        return self.providers.service_accounts.create_service_account(
            project_name(self.config.project_id),
            self.config.service_account_id,
            self.config.service_account_name,
        )

    # Retries

    def _call(self, description: str, fn: Callable[..., T], *args: Any) -> T:
        """Call a provider, retrying transient failures with exponential backoff."""
        delay = self.config.retry_backoff_seconds
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                return fn(*args)
            except ProviderTimeoutError as exc:
                if attempt == self.config.max_attempts:
                    raise
                logger.warning(
                    "%s failed transiently (attempt %d/%d): %s",
                    description, attempt, self.config.max_attempts, exc,
                )
                self._sleep(delay)
                delay *= 2
        raise ProvisioningError(f"{description}: max_attempts must be >= 1")

    # Ensure-or-create

    def ensure_resource(self, kind: ResourceKind, name: ResourceName) -> EnsureResult:
        """
        Return the resource named ``name``, creating it if absent.

        Raises:
            ProvisioningError: If a crypto key is ensured before its key ring,
                or an existing crypto key is not an ENCRYPT_DECRYPT key
            ProviderError: If a lookup or create fails
        """
        if kind is ResourceKind.CRYPTO_KEY and name.parent not in self._ensured:
            raise ProvisioningError(
                f"Key ring {name.parent} must be ensured before crypto key {name.resource_id}"
            )

        lookup = self._lookups[kind]
        existing = self._call(f"Looking up {kind.value} {name}", lookup, name)
        if existing is not None:
            logger.info("%s %s already exists", kind.value, name)
            return self._remember(self._found(existing))

        try:
            created = self._creators[kind](name)
        except ResourceConflictError:
            # Another run created it after our lookup.
            existing = self._call(f"Looking up {kind.value} {name}", lookup, name)
            if existing is None:
                raise
            logger.info("%s %s was created concurrently", kind.value, name)
            return self._remember(self._found(existing))

        logger.info("%s %s created", kind.value, created.name)
        return self._remember(EnsureResult(created, created=True))

    def _found(self, existing: Resource) -> EnsureResult:
        if isinstance(existing, CryptoKey) and existing.purpose != ENCRYPT_DECRYPT:
            raise ProvisioningError(
                f"Crypto key {existing.name} has purpose {existing.purpose}, "
                f"expected {ENCRYPT_DECRYPT}"
            )
        return EnsureResult(existing, created=False)

    def _remember(self, result: EnsureResult) -> EnsureResult:
        self._ensured[result.name] = result.resource
        return result

    def ensure_key_ring(self) -> EnsureResult:
        return self.ensure_resource(ResourceKind.KEY_RING, self.key_ring_name)

    def ensure_crypto_key(self, key_ring: KeyRing) -> EnsureResult:
        return self.ensure_resource(
            ResourceKind.CRYPTO_KEY, crypto_key_name(key_ring.name, self.config.key_id)
        )

    def ensure_bucket(self) -> EnsureResult:
        return self.ensure_resource(ResourceKind.BUCKET, self.bucket_name)

    def ensure_service_account(self) -> EnsureResult:
        return self.ensure_resource(ResourceKind.SERVICE_ACCOUNT, self.service_account_name)

    # Access

    def grant_access(
        self,
        account: ServiceAccount,
        crypto_key: CryptoKey,
        bucket: Bucket,
    ) -> list[PolicyGrant]:
        """Let ``account`` use ``crypto_key`` and read/write ``bucket``."""
        attempts = self.config.max_attempts
        key_binder = AccessPolicyBinder(self.providers.key_policies, max_attempts=attempts)
        bucket_binder = AccessPolicyBinder(self.providers.bucket_policies, max_attempts=attempts)

        logger.info("Setting policy in crypto key for service account %s", account.email)
        key_grant = self._call(
            f"Granting roles on {crypto_key.name}",
            key_binder.grant_roles, crypto_key.name, account.member, KEY_ROLES,
        )
        logger.info("Setting policy in storage bucket for service account %s", account.email)
        bucket_grant = self._call(
            f"Granting roles on {bucket.name}",
            bucket_binder.grant_roles, bucket.name, account.member, BUCKET_ROLES,
        )
        return [key_grant, bucket_grant]

    # Certificates

    def generate_certificates(self) -> ServerCertificates:
        authority = CertificateAuthority.new()
        names = SubjectAltNames.from_strings(self.config.dns_names, self.config.ip_addresses)
        server = authority.issue_server_certificate(names)
        return ServerCertificates(ca_cert_pem=authority.ca_cert_pem, server=server)

    # Run

    def run(self) -> ProvisioningResult:
        """
        Execute a full provisioning run.

        Returns:
            The ensured resources, grants, certificates and manifests
        """
        logger.info("Provisioning Vault resources in project %s", self.config.project_id)
        certificates = self.generate_certificates()

        key_ring = self.ensure_key_ring()
        crypto_key = self.ensure_crypto_key(key_ring.resource)
        bucket = self.ensure_bucket()
        account = self.ensure_service_account()

        grants = self.grant_access(account.resource, crypto_key.resource, bucket.resource)

        manifests = build_manifests(
            ca_cert=certificates.ca_cert_pem,
            server_cert=certificates.server_cert_pem,
            server_key=certificates.server_key_pem,
            api_addr=self.config.api_addr,
            bucket_name=bucket.resource.bucket_id,
            key_id=str(crypto_key.name),
            name=self.config.manifest_name,
            namespace=self.config.manifest_namespace,
        )

        return ProvisioningResult(
            project_id=self.config.project_id,
            key_ring=key_ring,
            crypto_key=crypto_key,
            bucket=bucket,
            service_account=account,
            grants=grants,
            certificates=certificates,
            manifests=manifests,
        )
