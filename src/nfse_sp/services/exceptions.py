from __future__ import annotations


class NfseError(Exception):
    """Base class for errors raised by the NFS-e SP client."""


class CertificateError(NfseError):
    """The PKCS#12 container is missing, undecryptable, or lacks a key or certificate."""


class InvalidOperationError(NfseError):
    """No operation name was given, or the webservice does not expose it."""


class RemoteCallError(NfseError):
    """Every attempt of a SOAP call failed; wraps the last underlying error."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"Erro na chamada SOAP '{operation}': {cause}")
        self.operation = operation
        self.cause = cause


class ParseError(NfseError):
    """The SOAP response is not well-formed XML."""


class RegistrationNotFoundError(NfseError):
    """consultarCnpj answered without an inscrição municipal."""

    def __init__(self, message: str, response: dict | None = None) -> None:
        super().__init__(message)
        self.response = response or {}
