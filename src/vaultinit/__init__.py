# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
vaultinit - Google Cloud KMS auto-unseal bootstrap for Vault

Provisions a KMS key ring and crypto key, a GCS bucket and a service
account allowed to use both, issues a CA and TLS server certificate, and
writes the Kubernetes Secret and ConfigMap a Vault deployment needs.
"""

__version__ = "0.1.0"

from .authority import CertificateAuthority, CertificatePair, SubjectAltNames
from .config import BootstrapConfig, load_config
from .exceptions import (
    CertificateError,
    ConfigurationError,
    ManifestError,
    PolicyConflictError,
    ProviderError,
    ProviderTimeoutError,
    ProvisioningError,
    ResourceConflictError,
    VaultInitError,
)
from .identifiers import ResourceKind, ResourceName
from .manifest import build_manifests, dump_manifests, write_manifests
from .orchestrator import EnsureResult, ProvisioningOrchestrator, ProvisioningResult
from .policy import AccessPolicyBinder, Binding, Policy, PolicyGrant

__all__ = [
    "__version__",
    # Certificates
    "CertificateAuthority",
    "CertificatePair",
    "SubjectAltNames",
    # Configuration
    "BootstrapConfig",
    "load_config",
    # Resources
    "ResourceKind",
    "ResourceName",
    # Provisioning
    "EnsureResult",
    "ProvisioningOrchestrator",
    "ProvisioningResult",
    # Policies
    "AccessPolicyBinder",
    "Binding",
    "Policy",
    "PolicyGrant",
    # Manifests
    "build_manifests",
    "dump_manifests",
    "write_manifests",
    # Exceptions
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
