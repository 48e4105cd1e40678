# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""Descriptors for provisioned resources, as returned by providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from vaultinit.identifiers import ResourceKind, ResourceName

ENCRYPT_DECRYPT = "ENCRYPT_DECRYPT"


@dataclass(frozen=True)
class KeyRing:
    name: ResourceName

    kind = ResourceKind.KEY_RING


@dataclass(frozen=True)
class CryptoKey:
    """A KMS key. Immutable once created; only its IAM policy changes."""

    name: ResourceName
    purpose: str = ENCRYPT_DECRYPT

    kind = ResourceKind.CRYPTO_KEY

    @property
    def key_ring(self) -> ResourceName:
        return self.name.parent


@dataclass(frozen=True)
class Bucket:
    name: ResourceName
    location: Optional[str] = None

    kind = ResourceKind.BUCKET

    @property
    def bucket_id(self) -> str:
        return self.name.resource_id


@dataclass(frozen=True)
class ServiceAccount:
    name: ResourceName
    email: str
    display_name: str = ""
    unique_id: Optional[str] = None

    kind = ResourceKind.SERVICE_ACCOUNT

    @property
    def member(self) -> str:
        """IAM member string for policy bindings."""
        return f"serviceAccount:{self.email}"


Resource = Union[KeyRing, CryptoKey, Bucket, ServiceAccount]
