# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Google Cloud Resource Providers.

Adapters from the provider interfaces onto Cloud KMS, Cloud Storage and IAM:

- ``GCPKeyManagementProvider`` / ``GCPKeyPolicyProvider``: google-cloud-kms
- ``GCPBucketProvider`` / ``GCPBucketPolicyProvider``: google-cloud-storage
- ``GCPServiceAccountProvider``: google-cloud-iam (IAM admin API)

Every call carries an explicit timeout. SDK exceptions are translated in one
place, ``translate_errors``: NotFound is handled by the getters, everything
else becomes a ``ProviderError`` subclass.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import google.auth
import requests
from google.api_core import exceptions as gexc
from google.api_core.iam import Policy as StoragePolicy
from google.auth import exceptions as auth_exceptions
from google.cloud import iam_admin_v1, kms, storage
from google.iam.v1 import policy_pb2
from google.oauth2 import service_account
from google.type import expr_pb2

from vaultinit.exceptions import (
    ConfigurationError,
    PolicyConflictError,
    ProviderError,
    ProviderTimeoutError,
    ResourceConflictError,
)
from vaultinit.identifiers import ResourceName, bucket_name, service_account_name
from vaultinit.policy import Binding, Policy
from vaultinit.resources import Bucket, CryptoKey, KeyRing, ServiceAccount

from .base import BucketProvider, KeyManagementProvider, PolicyProvider, ServiceAccountProvider

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

_TRANSIENT_ERRORS = (
    gexc.DeadlineExceeded,
    gexc.ServiceUnavailable,
    gexc.TooManyRequests,
    gexc.GatewayTimeout,
    gexc.RetryError,
    auth_exceptions.TransportError,
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
)


@contextmanager
def translate_errors(action: str, name: object) -> Iterator[None]:
    """Map Google SDK exceptions raised while performing ``action`` on ``name``."""
    try:
        yield
    except gexc.AlreadyExists as exc:
        raise ResourceConflictError(f"Cannot {action} {name}: already exists") from exc
    except _TRANSIENT_ERRORS as exc:
        raise ProviderTimeoutError(f"Timed out trying to {action} {name}: {exc}") from exc
    except gexc.GoogleAPICallError as exc:
        raise ProviderError(f"Unable to {action} {name}: {exc}") from exc


def load_credentials(credentials_file: Optional[Path] = None):
    """Load service account credentials, or application default credentials.

    Raises:
        ConfigurationError: If the file is missing or unreadable, or no
            default credentials are available.
    """
    if credentials_file is not None:
        try:
            return service_account.Credentials.from_service_account_file(
                str(credentials_file), scopes=[CLOUD_PLATFORM_SCOPE]
            )
        except (OSError, ValueError) as exc:
            raise ConfigurationError(
                f"Failed to load service account json file {credentials_file}: {exc}"
            ) from exc
    try:
        credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
    except auth_exceptions.DefaultCredentialsError as exc:
        raise ConfigurationError(f"No application default credentials: {exc}") from exc
    return credentials


# ============================================================
# Cloud KMS
# ============================================================


class GCPKeyManagementProvider(KeyManagementProvider):
    """Key rings and crypto keys in Cloud KMS."""

    def __init__(self, client: kms.KeyManagementServiceClient, timeout: float = 30.0):
        self._client = client
        self._timeout = timeout

    def get_key_ring(self, name: ResourceName) -> Optional[KeyRing]:
        with translate_errors("get key ring", name):
            try:
                ring = self._client.get_key_ring(
                    request={"name": str(name)}, timeout=self._timeout
                )
            except gexc.NotFound:
                return None
        return KeyRing(name=ResourceName.parse(ring.name))

    def create_key_ring(self, name: ResourceName) -> KeyRing:
        logger.info("Creating key ring %s", name)
        with translate_errors("create key ring", name):
            ring = self._client.create_key_ring(
                request={
                    "parent": str(name.parent),
                    "key_ring_id": name.resource_id,
                    "key_ring": {},
                },
                timeout=self._timeout,
            )
        logger.info("Key ring %s is created", ring.name)
        return KeyRing(name=ResourceName.parse(ring.name))

    def get_crypto_key(self, name: ResourceName) -> Optional[CryptoKey]:
        with translate_errors("get crypto key", name):
            try:
                key = self._client.get_crypto_key(
                    request={"name": str(name)}, timeout=self._timeout
                )
            except gexc.NotFound:
                return None
        return _crypto_key(key)

    def create_crypto_key(self, name: ResourceName, purpose: str) -> CryptoKey:
        logger.info("Creating crypto key %s", name)
        with translate_errors("create crypto key", name):
            key = self._client.create_crypto_key(
                request={
                    "parent": str(name.parent),
                    "crypto_key_id": name.resource_id,
                    "crypto_key": {"purpose": kms.CryptoKey.CryptoKeyPurpose[purpose]},
                },
                timeout=self._timeout,
            )
        logger.info("Crypto key %s is created", key.name)
        return _crypto_key(key)


def _crypto_key(key) -> CryptoKey:
    return CryptoKey(
        name=ResourceName.parse(key.name),
        purpose=kms.CryptoKey.CryptoKeyPurpose(key.purpose).name,
    )


class GCPKeyPolicyProvider(PolicyProvider):
    """IAM policies on Cloud KMS resources."""

    def __init__(self, client: kms.KeyManagementServiceClient, timeout: float = 30.0):
        self._client = client
        self._timeout = timeout

    def get_policy(self, resource: ResourceName) -> Policy:
        with translate_errors("get IAM policy of", resource):
            pb = self._client.get_iam_policy(
                request={
                    "resource": str(resource),
                    "options": {"requested_policy_version": 3},
                },
                timeout=self._timeout,
            )
        return policy_from_pb(pb)

    def set_policy(self, resource: ResourceName, policy: Policy) -> Policy:
        with translate_errors("set IAM policy of", resource):
            try:
                pb = self._client.set_iam_policy(
                    request={"resource": str(resource), "policy": policy_to_pb(policy)},
                    timeout=self._timeout,
                )
            except (gexc.Aborted, gexc.Conflict, gexc.PreconditionFailed) as exc:
                raise PolicyConflictError(f"Policy of {resource} changed concurrently") from exc
        return policy_from_pb(pb)


def policy_from_pb(pb: policy_pb2.Policy) -> Policy:
    bindings = []
    for b in pb.bindings:
        condition = None
        if b.HasField("condition"):
            condition = {
                "expression": b.condition.expression,
                "title": b.condition.title,
                "description": b.condition.description,
            }
        bindings.append(Binding(role=b.role, members=set(b.members), condition=condition))
    return Policy(bindings=bindings, etag=pb.etag or None, version=pb.version)


def policy_to_pb(policy: Policy) -> policy_pb2.Policy:
    bindings = []
    for b in policy.bindings:
        binding = policy_pb2.Binding(role=b.role, members=sorted(b.members))
        if b.condition:
            binding.condition.CopyFrom(expr_pb2.Expr(**b.condition))
        bindings.append(binding)
    return policy_pb2.Policy(
        version=policy.version,
        etag=policy.etag or b"",
        bindings=bindings,
    )


# ============================================================
# Cloud Storage
# ============================================================


class GCPBucketProvider(BucketProvider):
    """Buckets in Cloud Storage."""

    def __init__(self, client: storage.Client, project_id: str, timeout: float = 30.0):
        self._client = client
        self._project_id = project_id
        self._timeout = timeout

    def get_bucket(self, name: ResourceName) -> Optional[Bucket]:
        with translate_errors("get bucket", name.resource_id):
            try:
                bucket = self._client.get_bucket(name.resource_id, timeout=self._timeout)
            except gexc.NotFound:
                return None
        return Bucket(name=bucket_name(bucket.name), location=bucket.location)

    def create_bucket(self, name: ResourceName, location: Optional[str] = None) -> Bucket:
        logger.info("Creating bucket %s", name.resource_id)
        with translate_errors("create bucket", name.resource_id):
            try:
                bucket = self._client.create_bucket(
                    name.resource_id,
                    project=self._project_id,
                    location=location,
                    timeout=self._timeout,
                )
            except gexc.Conflict as exc:
                raise ResourceConflictError(f"Bucket {name.resource_id} already exists") from exc
        logger.info("Bucket %s is created", bucket.name)
        return Bucket(name=bucket_name(bucket.name), location=bucket.location)


class GCPBucketPolicyProvider(PolicyProvider):
    """IAM policies on Cloud Storage buckets."""

    def __init__(self, client: storage.Client, timeout: float = 30.0):
        self._client = client
        self._timeout = timeout

    def get_policy(self, resource: ResourceName) -> Policy:
        bucket = self._client.bucket(resource.resource_id)
        with translate_errors("get IAM policy of bucket", resource.resource_id):
            policy = bucket.get_iam_policy(requested_policy_version=3, timeout=self._timeout)
        return policy_from_api_repr(policy.to_api_repr())

    def set_policy(self, resource: ResourceName, policy: Policy) -> Policy:
        bucket = self._client.bucket(resource.resource_id)
        with translate_errors("set IAM policy of bucket", resource.resource_id):
            try:
                updated = bucket.set_iam_policy(
                    StoragePolicy.from_api_repr(policy_to_api_repr(policy)),
                    timeout=self._timeout,
                )
            except (gexc.Conflict, gexc.PreconditionFailed) as exc:
                raise PolicyConflictError(
                    f"Policy of bucket {resource.resource_id} changed concurrently"
                ) from exc
        return policy_from_api_repr(updated.to_api_repr())


def policy_from_api_repr(resource: dict) -> Policy:
    bindings = [
        Binding(
            role=b["role"],
            members=set(b.get("members", ())),
            condition=b.get("condition"),
        )
        for b in resource.get("bindings", ())
    ]
    return Policy(
        bindings=bindings,
        etag=resource.get("etag"),
        version=resource.get("version", 1),
    )


def policy_to_api_repr(policy: Policy) -> dict:
    bindings = []
    for b in policy.bindings:
        binding = {"role": b.role, "members": sorted(b.members)}
        if b.condition:
            binding["condition"] = dict(b.condition)
        bindings.append(binding)
    resource = {"version": policy.version, "bindings": bindings}
    if policy.etag is not None:
        resource["etag"] = policy.etag
    return resource


# ============================================================
# IAM service accounts
# ============================================================


class GCPServiceAccountProvider(ServiceAccountProvider):
    """Service accounts through the IAM admin API."""

    def __init__(self, client: iam_admin_v1.IAMClient, timeout: float = 30.0):
        self._client = client
        self._timeout = timeout

    def get_service_account(self, name: ResourceName) -> Optional[ServiceAccount]:
        with translate_errors("get service account", name.resource_id):
            try:
                account = self._client.get_service_account(
                    request={"name": str(name)}, timeout=self._timeout
                )
            except gexc.NotFound:
                return None
        return _service_account(account)

    def create_service_account(
        self,
        project: ResourceName,
        account_id: str,
        display_name: str,
    ) -> ServiceAccount:
        logger.info("Creating service account %s (%s)", account_id, display_name)
        with translate_errors("create service account", account_id):
            account = self._client.create_service_account(
                request={
                    "name": str(project),
                    "account_id": account_id,
                    "service_account": {"display_name": display_name},
                },
                timeout=self._timeout,
            )
        logger.info("Service account %s is created", account.email)
        return _service_account(account)


def _service_account(account) -> ServiceAccount:
    return ServiceAccount(
        name=service_account_name(account.email),
        email=account.email,
        display_name=account.display_name,
        unique_id=account.unique_id or None,
    )
