from __future__ import annotations

import base64
import binascii
import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)
from cryptography.x509 import Certificate

from nfse_sp.services.exceptions import CertificateError


@dataclass(frozen=True)
class CertificateMaterial:
    """Key, certificate and TLS client context extracted from an A1 (.pfx) certificate."""

    key_pem: bytes = field(repr=False)
    cert_pem: bytes
    passphrase: str = field(repr=False)
    ssl_context: ssl.SSLContext = field(repr=False, compare=False)


def _decode_container(container: bytes | str) -> bytes:
    if isinstance(container, str):
        cleaned = "".join(container.split())
        try:
            return base64.b64decode(cleaned, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CertificateError(f"Falha ao converter base64 do certificado: {e}") from e
    if isinstance(container, (bytes, bytearray)):
        return bytes(container)
    raise CertificateError("Certificado deve ser bytes ou texto base64")


def build_ssl_context(private_key, certificate: Certificate, passphrase: str) -> ssl.SSLContext:
    """Create a TLS >= 1.2 client context presenting *certificate* and validating the server.

    ``ssl`` only loads client credentials from files, so the pair is written to a
    private temp dir with the key encrypted under *passphrase* and removed afterwards.
    """
    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    encrypted_key = private_key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=BestAvailableEncryption(passphrase.encode()),
    )
    with tempfile.TemporaryDirectory(prefix="nfse-sp-") as tmp:
        chain_path = Path(tmp) / "client.pem"
        chain_path.write_bytes(certificate.public_bytes(Encoding.PEM) + encrypted_key)
        try:
            context.load_cert_chain(chain_path, password=passphrase)
        except ssl.SSLError as e:
            raise CertificateError(f"Falha ao configurar contexto TLS: {e}") from e
    return context


def load_certificate(container: bytes | str, password: str) -> CertificateMaterial:
    """Extract key and leaf certificate from a PKCS#12 container and build the TLS context.

    *container* is the raw .pfx content or its base64 text. Only the certificate
    paired with the key (or, failing that, the first one in the container) is used;
    no chain of trust is assembled.

    Raises:
        CertificateError: empty input, wrong password or corrupt data, missing key
            or missing certificate.
    """
    if not container:
        raise CertificateError("Certificado .pfx não informado")
    if not password:
        raise CertificateError("Senha do certificado é obrigatória")

    pfx_data = _decode_container(container)
    try:
        private_key, certificate, chain = pkcs12.load_key_and_certificates(
            pfx_data, password.encode()
        )
    except ValueError as e:
        # Wrong password and corrupt data are indistinguishable here
        raise CertificateError(
            "Falha ao decifrar/ler o certificado PKCS#12 (senha incorreta ou arquivo corrompido)"
        ) from e

    if private_key is None:
        raise CertificateError("Chave privada não encontrada no arquivo .pfx")
    if certificate is None and chain:
        certificate = chain[0]
    if certificate is None:
        raise CertificateError("Certificado não encontrado no arquivo .pfx")

    key_pem = private_key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=NoEncryption(),
    )
    cert_pem = certificate.public_bytes(Encoding.PEM)

    return CertificateMaterial(
        key_pem=key_pem,
        cert_pem=cert_pem,
        passphrase=password,
        ssl_context=build_ssl_context(private_key, certificate, password),
    )


def load_pfx(pfx_path: str | Path, password: str) -> CertificateMaterial:
    """Read a .pfx/.p12 file and return its CertificateMaterial."""
    return load_certificate(Path(pfx_path).read_bytes(), password)


def validate_certificate(pfx_path: str | Path, password: str) -> dict:
    """Validate certificate and return info."""
    from datetime import UTC, datetime

    pfx_data = Path(pfx_path).read_bytes()
    try:
        _, certificate, _ = pkcs12.load_key_and_certificates(pfx_data, password.encode())
    except ValueError as e:
        raise CertificateError("Falha ao decifrar/ler o certificado PKCS#12") from e

    if certificate is None:
        raise CertificateError("Certificado não encontrado no arquivo .pfx")

    now = datetime.now(UTC)
    return {
        "subject": certificate.subject.rfc4514_string(),
        "issuer": certificate.issuer.rfc4514_string(),
        "not_before": certificate.not_valid_before_utc,
        "not_after": certificate.not_valid_after_utc,
        "valid": certificate.not_valid_before_utc <= now <= certificate.not_valid_after_utc,
        "serial": certificate.serial_number,
    }
