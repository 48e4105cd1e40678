# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Certificate Authority

Creates a self-signed CA and issues the Vault server certificate from it.

The CA lives only for the duration of a provisioning run: its certificate is
shipped in the manifest as ``ca.crt`` so clients can verify the server, and
its private key is discarded with the process. Every run generates fresh key
material; nothing is reused across runs.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from vaultinit.exceptions import CertificateError

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

DEFAULT_KEY_SIZE = 2048
CA_VALIDITY_DAYS = 3650
SERVER_VALIDITY_DAYS = 365


@dataclass(frozen=True)
class SubjectAltNames:
    """DNS names and IP addresses a certificate is valid for."""

    dns_names: frozenset[str] = field(default_factory=frozenset)
    ip_addresses: frozenset[IPAddress] = field(default_factory=frozenset)

    @classmethod
    def from_strings(cls, dns_names: Iterable[str], ip_addresses: Iterable[str] = ()) -> SubjectAltNames:
        """Build from plain strings, parsing the IP addresses.

        Raises:
            ValueError: If an IP address does not parse.
        """
        return cls(
            dns_names=frozenset(dns_names),
            ip_addresses=frozenset(ipaddress.ip_address(ip) for ip in ip_addresses),
        )

    def to_extension(self) -> x509.SubjectAlternativeName:
        general_names: list[x509.GeneralName] = [
            x509.DNSName(name) for name in sorted(self.dns_names)
        ]
        general_names += [
            x509.IPAddress(ip) for ip in sorted(self.ip_addresses, key=lambda ip: (ip.version, int(ip)))
        ]
        return x509.SubjectAlternativeName(general_names)

    def __bool__(self) -> bool:
        return bool(self.dns_names or self.ip_addresses)


@dataclass(frozen=True)
class CertificatePair:
    """A certificate and the private key it certifies."""

    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey

    @property
    def cert_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    @property
    def key_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )


class CertificateAuthority:
    """
    Self-signed certificate authority for one provisioning run.

    Issues server certificates whose Subject Alternative Names are exactly
    the names requested.
    """

    def __init__(
        self,
        ca: CertificatePair,
        key_size: int = DEFAULT_KEY_SIZE,
        server_validity_days: int = SERVER_VALIDITY_DAYS,
    ):
        """
        Wrap an existing CA pair. Use ``CertificateAuthority.new()`` to create one.

        Args:
            ca: The CA certificate and its private key
            key_size: RSA key size for issued certificates
            server_validity_days: Validity of issued server certificates
        """
        self.ca = ca
        self.key_size = key_size
        self.server_validity_days = server_validity_days

    @classmethod
    def new(
        cls,
        common_name: str = "ca",
        key_size: int = DEFAULT_KEY_SIZE,
        validity_days: int = CA_VALIDITY_DAYS,
        server_validity_days: int = SERVER_VALIDITY_DAYS,
    ) -> CertificateAuthority:
        """Generate a fresh CA key and self-signed CA certificate.

        Raises:
            CertificateError: If key generation or signing fails.
        """
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
            subject = issuer = x509.Name([
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            ])
            now = datetime.now(timezone.utc)
            cert = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(issuer)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + timedelta(days=validity_days))
                .add_extension(
                    x509.BasicConstraints(ca=True, path_length=None),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        key_cert_sign=True,
                        crl_sign=True,
                        key_encipherment=True,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                    critical=False,
                )
                .sign(key, hashes.SHA256())
            )
        except (ValueError, TypeError) as exc:
            raise CertificateError(f"Failed to create certificate authority: {exc}") from exc

        logger.info("Created certificate authority %s", common_name)
        return cls(
            CertificatePair(certificate=cert, private_key=key),
            key_size=key_size,
            server_validity_days=server_validity_days,
        )

    @property
    def ca_cert_pem(self) -> bytes:
        return self.ca.cert_pem

    @property
    def ca_key_pem(self) -> bytes:
        return self.ca.key_pem

    def issue_server_certificate(
        self,
        names: SubjectAltNames,
        common_name: str = "server",
    ) -> CertificatePair:
        """
        Issue a TLS server certificate signed by this CA.

        Args:
            names: The exact SAN set of the certificate
            common_name: Subject common name

        Returns:
            The new certificate and its freshly generated private key

        Raises:
            CertificateError: If no names are given, or signing fails
        """
        if not names:
            raise CertificateError("A server certificate needs at least one DNS name or IP address")

        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
            now = datetime.now(timezone.utc)
            ca_cert = self.ca.certificate
            cert = (
                x509.CertificateBuilder()
                .subject_name(x509.Name([
                    x509.NameAttribute(NameOID.COMMON_NAME, common_name),
                ]))
                .issuer_name(ca_cert.subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + timedelta(days=self.server_validity_days))
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        key_cert_sign=False,
                        crl_sign=False,
                        key_encipherment=True,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                    critical=False,
                )
                .add_extension(names.to_extension(), critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_cert.public_key()),
                    critical=False,
                )
                .sign(self.ca.private_key, hashes.SHA256())
            )
        except (ValueError, TypeError) as exc:
            raise CertificateError(f"Failed to issue server certificate: {exc}") from exc

        logger.info(
            "Issued server certificate %s for %s",
            common_name,
            ", ".join(sorted(names.dns_names) + sorted(str(ip) for ip in names.ip_addresses)),
        )
        return CertificatePair(certificate=cert, private_key=key)


def load_certificate(cert_pem: bytes) -> x509.Certificate:
    """Parse a PEM certificate.

    Raises:
        CertificateError: If ``cert_pem`` is not a PEM certificate.
    """
    try:
        return x509.load_pem_x509_certificate(cert_pem)
    except ValueError as exc:
        raise CertificateError(f"Invalid certificate: {exc}") from exc


def read_subject_alt_names(cert_pem: bytes) -> SubjectAltNames:
    """Return the SAN set embedded in a PEM certificate."""
    cert = load_certificate(cert_pem)
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return SubjectAltNames()
    return SubjectAltNames(
        dns_names=frozenset(san.get_values_for_type(x509.DNSName)),
        ip_addresses=frozenset(san.get_values_for_type(x509.IPAddress)),
    )


def verify_issued_by(cert_pem: bytes, ca_pem: bytes) -> bool:
    """Check that ``cert_pem`` was signed by the CA in ``ca_pem``.

    Verifies the issuer name, the signature and that the CA was valid at the
    time of the call.
    """
    cert = load_certificate(cert_pem)
    ca = load_certificate(ca_pem)
    now = datetime.now(timezone.utc)
    if not (ca.not_valid_before_utc <= now <= ca.not_valid_after_utc):
        return False
    if not (cert.not_valid_before_utc <= now <= cert.not_valid_after_utc):
        return False
    try:
        cert.verify_directly_issued_by(ca)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True
