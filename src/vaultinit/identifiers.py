# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Resource Identifiers

Hierarchical, path-like names for the cloud resources vaultinit manages:

    projects/{project}/locations/{location}
    projects/{project}/locations/{location}/keyRings/{key_ring}
    projects/{project}/locations/{location}/keyRings/{key_ring}/cryptoKeys/{key}
    projects/_/buckets/{bucket}
    projects/-/serviceAccounts/{email}

Child names are always derived from their parent with ``child()``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

SERVICE_ACCOUNT_DOMAIN = "iam.gserviceaccount.com"


class ResourceKind(str, enum.Enum):
    """The four resource kinds in the provisioned topology."""

    KEY_RING = "key_ring"
    CRYPTO_KEY = "crypto_key"
    BUCKET = "bucket"
    SERVICE_ACCOUNT = "service_account"


@dataclass(frozen=True)
class ResourceName:
    """A fully-qualified resource name made of ``collection/id`` pairs."""

    segments: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.segments or len(self.segments) % 2:
            raise ValueError(
                f"Resource name needs collection/id pairs, got {'/'.join(self.segments)!r}"
            )
        for segment in self.segments:
            if not segment or "/" in segment:
                raise ValueError(f"Invalid resource name segment: {segment!r}")

    @classmethod
    def parse(cls, name: str) -> ResourceName:
        """Parse ``a/b/c/d`` into a ResourceName.

        Raises:
            ValueError: If the name is empty or not made of collection/id pairs.
        """
        return cls(tuple(name.strip("/").split("/")))

    def child(self, collection: str, resource_id: str) -> ResourceName:
        """Return the name of a resource nested under this one."""
        return ResourceName(self.segments + (collection, resource_id))

    @property
    def parent(self) -> ResourceName | None:
        if len(self.segments) == 2:
            return None
        return ResourceName(self.segments[:-2])

    @property
    def collection(self) -> str:
        return self.segments[-2]

    @property
    def resource_id(self) -> str:
        return self.segments[-1]

    def __str__(self) -> str:
        return "/".join(self.segments)


def project_name(project_id: str) -> ResourceName:
    return ResourceName(("projects", project_id))


def location_name(project_id: str, location: str) -> ResourceName:
    return project_name(project_id).child("locations", location)


def key_ring_name(location: ResourceName, key_ring_id: str) -> ResourceName:
    if location.collection != "locations":
        raise ValueError(f"Key rings live under a location, not {location}")
    return location.child("keyRings", key_ring_id)


def crypto_key_name(key_ring: ResourceName, key_id: str) -> ResourceName:
    if key_ring.collection != "keyRings":
        raise ValueError(f"Crypto keys live under a key ring, not {key_ring}")
    return key_ring.child("cryptoKeys", key_id)


def bucket_name(name: str) -> ResourceName:
    # Bucket names are global; "_" stands in for the project.
    return project_name("_").child("buckets", name)


def service_account_email(account_id: str, project_id: str) -> str:
    return f"{account_id}@{project_id}.{SERVICE_ACCOUNT_DOMAIN}"


def service_account_name(email: str) -> ResourceName:
    # "-" lets the IAM API infer the project from the email.
    return project_name("-").child("serviceAccounts", email)
