# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""Centralized exception hierarchy for vaultinit.

All vaultinit exceptions inherit from VaultInitError so the CLI can report
any failure of a provisioning run uniformly. Every one of them is fatal to
the run that raised it; nothing already created is rolled back.
"""


class VaultInitError(Exception):
    """Base exception for all vaultinit errors."""


class ConfigurationError(VaultInitError):
    """Invalid or missing configuration input (config file, credentials)."""


class ProviderError(VaultInitError):
    """A cloud provider call failed for a reason other than NotFound."""


class ProviderTimeoutError(ProviderError):
    """A provider call timed out or the service was temporarily unavailable.

    Transient: callers may retry. Never to be read as "resource absent".
    """


class ResourceConflictError(ProviderError):
    """A create call found the resource already exists."""


class PolicyConflictError(ProviderError):
    """An access policy write carried a stale etag."""


class CertificateError(VaultInitError):
    """Key generation, signing or certificate parsing failed."""


class ProvisioningError(VaultInitError):
    """The provisioning workflow was driven out of order or cannot continue."""


class ManifestError(VaultInitError):
    """Manifest documents could not be built, written or read."""


__all__ = [
    "VaultInitError",
    "ConfigurationError",
    "ProviderError",
    "ProviderTimeoutError",
    "ResourceConflictError",
    "PolicyConflictError",
    "CertificateError",
    "ProvisioningError",
    "ManifestError",
]
