from __future__ import annotations

from datetime import datetime
from typing import Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from vanplane.services.secrets.store import Secret


# Key material layout shared with the orchestration platform's TLS secrets.
TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY = "tls.key"
CA_CERT_KEY = "ca.crt"


class CertificateSigner(Protocol):
    def sign(
        self,
        *,
        common_name: str,
        is_ca: bool,
        not_before: datetime,
        not_after: datetime,
        issuer: Secret | None,
    ) -> dict[str, str]:
        ...


def _pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


class X509Signer:
    """Generate an EC P-256 key pair and a certificate signed by ``issuer``.

    ``issuer=None`` produces a self-signed certificate. The returned mapping
    holds the PEM certificate, the PKCS#8 private key and the issuing CA
    certificate.
    """

    def sign(
        self,
        *,
        common_name: str,
        is_ca: bool,
        not_before: datetime,
        not_after: datetime,
        issuer: Secret | None,
    ) -> dict[str, str]:
        key = ec.generate_private_key(ec.SECP256R1())
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        if issuer is None:
            signing_key = key
            issuer_name = subject
            issuer_cert = None
        else:
            issuer_cert = x509.load_pem_x509_certificate(issuer.key_material[TLS_CERT_KEY].encode("ascii"))
            signing_key = serialization.load_pem_private_key(
                issuer.key_material[TLS_PRIVATE_KEY].encode("ascii"), password=None
            )
            issuer_name = issuer_cert.subject

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer_name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(signing_key.public_key()),
                critical=False,
            )
        )
        if is_ca:
            builder = builder.add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
        else:
            builder = builder.add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
                critical=False,
            ).add_extension(
                x509.SubjectAlternativeName([x509.DNSName(common_name)]),
                critical=False,
            )
        cert = builder.sign(signing_key, hashes.SHA256())
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        return {
            TLS_CERT_KEY: _pem(cert),
            TLS_PRIVATE_KEY: key_pem,
            CA_CERT_KEY: _pem(issuer_cert) if issuer_cert is not None else _pem(cert),
        }
