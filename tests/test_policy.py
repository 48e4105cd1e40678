"""Tests for the access policy binder."""

import pytest

from vaultinit.exceptions import PolicyConflictError, ProviderError
from vaultinit.identifiers import crypto_key_name, key_ring_name, location_name
from vaultinit.policy import AccessPolicyBinder, Binding, Policy, merge_grants
from vaultinit.providers.memory_provider import MemoryCloudProvider

MEMBER = "serviceAccount:vault-server@p.iam.gserviceaccount.com"
ENCRYPTER = "roles/cloudkms.cryptoKeyEncrypterDecrypter"


class RacingCloud(MemoryCloudProvider):
    """Lets another writer update a policy between our read and our write."""

    def __init__(self, races: int, **kwargs):
        super().__init__(**kwargs)
        self.races = races

    def set_policy(self, resource, policy):
        if self.races > 0:
            self.races -= 1
            theirs = self.get_policy(resource)
            theirs.bindings.append(
                Binding(role="roles/viewer", members={f"user:other{self.races}@example.com"})
            )
            super().set_policy(resource, theirs)
        return super().set_policy(resource, policy)


def _make_key(cloud: MemoryCloudProvider):
    ring = key_ring_name(location_name("p", "global"), "r")
    cloud.create_key_ring(ring)
    return cloud.create_crypto_key(crypto_key_name(ring, "k"), "ENCRYPT_DECRYPT").name


@pytest.fixture
def cloud() -> MemoryCloudProvider:
    return MemoryCloudProvider(project_id="p")


@pytest.fixture
def key(cloud):
    return _make_key(cloud)


def _set_policy_count(cloud: MemoryCloudProvider) -> int:
    return sum(1 for op, _ in cloud.operations if op == "set_policy")


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestMergeGrants:
    def test_adds_new_binding(self):
        merged, added = merge_grants(Policy(), MEMBER, [ENCRYPTER])
        assert added == [ENCRYPTER]
        assert merged.bindings == [Binding(role=ENCRYPTER, members={MEMBER})]

    def test_does_not_mutate_input(self):
        policy = Policy()
        merge_grants(policy, MEMBER, [ENCRYPTER])
        assert policy.bindings == []

    def test_existing_binding_absorbs_member(self):
        policy = Policy(bindings=[Binding(role=ENCRYPTER, members={"user:a@example.com"})])
        merged, added = merge_grants(policy, MEMBER, [ENCRYPTER])
        assert added == [ENCRYPTER]
        assert len(merged.bindings) == 1
        assert merged.bindings[0].members == {"user:a@example.com", MEMBER}

    def test_already_present_adds_nothing(self):
        policy = Policy(bindings=[Binding(role=ENCRYPTER, members={MEMBER})])
        merged, added = merge_grants(policy, MEMBER, [ENCRYPTER])
        assert added == []
        assert merged.bindings == policy.bindings

    def test_duplicate_roles_collapse(self):
        merged, added = merge_grants(Policy(), MEMBER, [ENCRYPTER, ENCRYPTER])
        assert added == [ENCRYPTER]
        assert len(merged.bindings) == 1

    def test_conditional_binding_untouched(self):
        condition = {"expression": "request.time < timestamp('2030-01-01T00:00:00Z')", "title": "t"}
        policy = Policy(
            bindings=[Binding(role=ENCRYPTER, members={MEMBER}, condition=condition)],
            version=3,
        )
        merged, added = merge_grants(policy, MEMBER, [ENCRYPTER])
        assert added == [ENCRYPTER]
        assert merged.bindings[0].condition == condition
        assert merged.bindings[1] == Binding(role=ENCRYPTER, members={MEMBER})

    def test_preserves_unrelated_bindings(self):
        policy = Policy(bindings=[Binding(role="roles/owner", members={"user:o@example.com"})])
        merged, _ = merge_grants(policy, MEMBER, [ENCRYPTER])
        assert merged.members_for("roles/owner") == {"user:o@example.com"}
        assert merged.has_member(ENCRYPTER, MEMBER)


# ---------------------------------------------------------------------------
# Binder
# ---------------------------------------------------------------------------


class TestAccessPolicyBinder:
    def test_grant_role(self, cloud, key):
        binder = AccessPolicyBinder(cloud)
        assert binder.grant_role(key, MEMBER, ENCRYPTER) is True
        assert cloud.get_policy(key).has_member(ENCRYPTER, MEMBER)

    def test_grant_twice_is_idempotent(self, cloud, key):
        binder = AccessPolicyBinder(cloud)
        binder.grant_role(key, MEMBER, ENCRYPTER)
        writes = _set_policy_count(cloud)

        assert binder.grant_role(key, MEMBER, ENCRYPTER) is False
        assert _set_policy_count(cloud) == writes

        bindings = [b for b in cloud.get_policy(key).bindings if b.role == ENCRYPTER]
        assert len(bindings) == 1
        assert bindings[0].members == {MEMBER}

    def test_grant_roles_result(self, cloud, key):
        roles = ["roles/storage.objectAdmin", "roles/storage.legacyBucketReader"]
        grant = AccessPolicyBinder(cloud).grant_roles(key, MEMBER, roles)
        assert grant.resource == key
        assert grant.roles == tuple(roles)
        assert grant.added == tuple(roles)
        assert grant.changed
        assert grant.attempts == 1
        assert _set_policy_count(cloud) == 1

    def test_partial_grant_adds_only_missing(self, cloud, key):
        binder = AccessPolicyBinder(cloud)
        binder.grant_role(key, MEMBER, "roles/storage.objectAdmin")
        grant = binder.grant_roles(
            key, MEMBER, ["roles/storage.objectAdmin", "roles/storage.legacyBucketReader"]
        )
        assert grant.added == ("roles/storage.legacyBucketReader",)

    def test_unknown_resource_propagates(self, cloud):
        ring = key_ring_name(location_name("p", "global"), "missing")
        with pytest.raises(ProviderError):
            AccessPolicyBinder(cloud).grant_role(ring, MEMBER, ENCRYPTER)

    def test_invalid_max_attempts(self, cloud):
        with pytest.raises(ValueError):
            AccessPolicyBinder(cloud, max_attempts=0)


class TestConcurrentWriters:
    def test_retries_after_stale_etag(self):
        cloud = RacingCloud(races=1, project_id="p")
        key = _make_key(cloud)

        grant = AccessPolicyBinder(cloud, max_attempts=3).grant_roles(key, MEMBER, [ENCRYPTER])

        assert grant.attempts == 2
        policy = cloud.get_policy(key)
        assert policy.has_member(ENCRYPTER, MEMBER)
        assert policy.has_member("roles/viewer", "user:other0@example.com")

    def test_gives_up_after_max_attempts(self):
        cloud = RacingCloud(races=10, project_id="p")
        key = _make_key(cloud)

        with pytest.raises(PolicyConflictError):
            AccessPolicyBinder(cloud, max_attempts=3).grant_roles(key, MEMBER, [ENCRYPTER])

        assert cloud.races == 7
        assert not cloud.get_policy(key).has_member(ENCRYPTER, MEMBER)
