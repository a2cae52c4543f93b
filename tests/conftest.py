from __future__ import annotations

import base64
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from lxml import etree

from nfse_sp.services.soap_client import SoapConnection

PFX_PASSWORD = "testpass"


def xml_text(el: etree._Element, xpath: str) -> str | None:
    """Extract text from an XML element by xpath."""
    found = el.find(xpath)
    return found.text if found is not None else None


def soap_envelope(body: str) -> str:
    return (
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
        f"<soap:Body>{body}</soap:Body>"
        "</soap:Envelope>"
    )


def fake_connection(**operations) -> SoapConnection:
    """SoapConnection whose service exposes *operations* as plain callables."""
    return SoapConnection(client=SimpleNamespace(), service=SimpleNamespace(**operations))


class SleepRecorder:
    """Async sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# --- RPS fixtures ---


@pytest.fixture
def endereco_dict() -> dict:
    return {
        "logradouro": "AV PAULISTA",
        "numero": "1000",
        "bairro": "BELA VISTA",
        "codigo_municipio": "3550308",
        "uf": "SP",
        "cep": "01310-100",
    }


@pytest.fixture
def rps_dict(endereco_dict: dict) -> dict:
    return {
        "numero_rps": "123",
        "serie": "A",
        "data_emissao": "2025-03-10T10:00:00-03:00",
        "valor_servicos": "1500.5",
        "codigo_servico": "02660",
        "discriminacao": "Desenvolvimento de software sob encomenda",
        "aliquota_servicos": "0.05",
        "tomador": {
            "cnpj": "11.222.333/0001-81",
            "razao_social": "CLIENTE EXEMPLO LTDA",
            "email": "financeiro@cliente.com.br",
            "endereco": endereco_dict,
        },
    }


# --- Certificate / PFX fixtures ---


@pytest.fixture(scope="session")
def test_key_and_cert():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, "Test Certificate"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Org"),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.now(UTC) - timedelta(days=1))
        .not_valid_after(datetime.now(UTC) + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture(scope="session")
def pfx_bytes(test_key_and_cert) -> bytes:
    key, cert = test_key_and_cert
    return pkcs12.serialize_key_and_certificates(
        name=b"test",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(PFX_PASSWORD.encode()),
    )


@pytest.fixture(scope="session")
def pfx_base64(pfx_bytes: bytes) -> str:
    return base64.b64encode(pfx_bytes).decode("ascii")


@pytest.fixture
def test_pfx(tmp_path, pfx_bytes):
    pfx_path = tmp_path / "test.pfx"
    pfx_path.write_bytes(pfx_bytes)
    return str(pfx_path), PFX_PASSWORD


@pytest.fixture(scope="session")
def material(pfx_bytes):
    from nfse_sp.utils.certificate import load_certificate

    return load_certificate(pfx_bytes, PFX_PASSWORD)
