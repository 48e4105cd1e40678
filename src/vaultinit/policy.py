# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Access Policy Binder

Grants IAM roles to a member on a single resource using the
read-modify-write protocol of Cloud IAM:

1. read the current policy together with its etag,
2. merge the requested (role, member) pairs into the bindings as a set union,
3. write the policy back carrying the etag that was read.

The write is skipped when the merge adds nothing, so granting the same role
twice is a no-op. A write rejected for a stale etag is retried from step 1 a
bounded number of times.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from vaultinit.exceptions import PolicyConflictError
from vaultinit.identifiers import ResourceName

if TYPE_CHECKING:
    from vaultinit.providers.base import PolicyProvider

logger = logging.getLogger(__name__)


@dataclass
class Binding:
    """One role bound to a set of members, optionally under a condition."""

    role: str
    members: set[str] = field(default_factory=set)
    condition: Optional[dict[str, Any]] = None


@dataclass
class Policy:
    """An access policy document.

    Attributes:
        bindings: Ordered role bindings.
        etag: Opaque concurrency token; must be sent back on write.
        version: Policy schema version as reported by the service.
    """

    bindings: list[Binding] = field(default_factory=list)
    etag: Optional[Union[bytes, str]] = None
    version: int = 1

    def members_for(self, role: str) -> set[str]:
        """Members holding ``role`` unconditionally."""
        members: set[str] = set()
        for binding in self.bindings:
            if binding.role == role and binding.condition is None:
                members |= binding.members
        return members

    def has_member(self, role: str, member: str) -> bool:
        return member in self.members_for(role)

    def copy(self) -> Policy:
        return copy.deepcopy(self)


def merge_grants(policy: Policy, member: str, roles: Iterable[str]) -> tuple[Policy, list[str]]:
    """Union ``member`` into ``policy`` for each of ``roles``.

    The first unconditional binding of a role absorbs the member; a new
    binding is appended only for roles the policy does not mention yet.
    Conditional bindings are never touched.

    Returns:
        (merged copy of the policy, roles that were actually added)
    """
    merged = policy.copy()
    added: list[str] = []
    for role in dict.fromkeys(roles):
        if merged.has_member(role, member):
            continue
        target = next(
            (b for b in merged.bindings if b.role == role and b.condition is None),
            None,
        )
        if target is None:
            merged.bindings.append(Binding(role=role, members={member}))
        else:
            target.members.add(member)
        added.append(role)
    return merged, added


@dataclass(frozen=True)
class PolicyGrant:
    """Outcome of a grant on one resource."""

    resource: ResourceName
    member: str
    roles: tuple[str, ...]
    added: tuple[str, ...]
    attempts: int = 1

    @property
    def changed(self) -> bool:
        return bool(self.added)


class AccessPolicyBinder:
    """Grants roles on resources served by one PolicyProvider.

    Args:
        provider: Reads and writes policies for the resource type.
        max_attempts: Read-merge-write cycles tried before a stale-etag
            conflict is surfaced.
    """

    def __init__(self, provider: PolicyProvider, max_attempts: int = 3) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.provider = provider
        self.max_attempts = max_attempts

    def grant_role(self, resource: ResourceName, member: str, role: str) -> bool:
        """Grant a single role. Returns True if the policy was changed."""
        return self.grant_roles(resource, member, [role]).changed

    def grant_roles(
        self,
        resource: ResourceName,
        member: str,
        roles: Iterable[str],
    ) -> PolicyGrant:
        """Grant several roles to ``member`` in one read-modify-write cycle.

        Raises:
            PolicyConflictError: If every attempt hit a stale etag.
            ProviderError: If reading or writing the policy failed otherwise.
        """
        roles = tuple(roles)
        attempt = 0
        while True:
            attempt += 1
            current = self.provider.get_policy(resource)
            merged, added = merge_grants(current, member, roles)
            if not added:
                logger.info("%s already holds %s on %s", member, ", ".join(roles), resource)
                return PolicyGrant(resource, member, roles, (), attempt)
            try:
                self.provider.set_policy(resource, merged)
            except PolicyConflictError:
                logger.warning(
                    "Policy on %s changed concurrently (attempt %d/%d)",
                    resource, attempt, self.max_attempts,
                )
                if attempt >= self.max_attempts:
                    raise
                continue
            logger.info("Granted %s to %s on %s", ", ".join(added), member, resource)
            return PolicyGrant(resource, member, roles, tuple(added), attempt)
