from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from nfse_sp.config import (
    COD_CIDADE_SP,
    SOAP_MAX_RETRIES,
    SOAP_RETRY_INTERVAL,
    SOAP_TIMEOUT,
    USER_AGENT,
    normalize_env,
    wsdl_urls,
)
from nfse_sp.models.rps import Rps
from nfse_sp.services.exceptions import RegistrationNotFoundError
from nfse_sp.services.response_handler import normalize_response, parse_envelope
from nfse_sp.services.rps_builder import build_cancel_xml, build_rps_xml
from nfse_sp.services.soap_client import SoapClient
from nfse_sp.utils.certificate import CertificateMaterial, load_certificate, load_pfx
from nfse_sp.utils.hash import sha1_upper
from nfse_sp.utils.validators import validate_cnpj, validate_cpf

logger = logging.getLogger(__name__)


def _load_material(certificado: str | Path | bytes, senha: str) -> CertificateMaterial:
    """Accept a .pfx path, raw bytes, or base64 text (a str that is not a file path)."""
    if isinstance(certificado, Path):
        return load_pfx(certificado, senha)
    if isinstance(certificado, str):
        path = Path(certificado).expanduser()
        if path.suffix.lower() in (".pfx", ".p12") or os.path.isfile(path):
            return load_pfx(path, senha)
    return load_certificate(certificado, senha)


class NotaFiscalSP:
    """Issue, query and cancel NFS-e on the São Paulo municipal webservice.

    One certificate is loaded per instance and shared by the three service
    clients (entrada, saída, util). The inscrição municipal is looked up on
    the first operation that needs it and remembered afterwards.
    """

    def __init__(
        self,
        cnpj: str,
        certificado: str | Path | bytes,
        senha_certificado: str,
        ambiente: str = "producao",
        usuario: str = "",
        senha_usuario: str = "",
        *,
        timeout: float = SOAP_TIMEOUT,
        max_retries: int = SOAP_MAX_RETRIES,
        retry_interval: float = SOAP_RETRY_INTERVAL,
        user_agent: str = USER_AGENT,
        sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if not cnpj:
            raise ValueError("CNPJ obrigatório na inicialização")
        if not certificado:
            raise ValueError("Certificado digital (.pfx) é obrigatório")
        if not senha_certificado:
            raise ValueError("Senha do certificado é obrigatória")

        self.cnpj = validate_cnpj(cnpj)
        self.ambiente = normalize_env(ambiente)
        self.usuario = validate_cpf(usuario) if usuario else ""
        self.senha_usuario = sha1_upper(senha_usuario) if senha_usuario else ""
        self.im: str | None = None
        self._im_lock = asyncio.Lock()

        self.material = _load_material(certificado, senha_certificado)

        urls = wsdl_urls(self.ambiente)
        options: dict[str, Any] = {
            "timeout": timeout,
            "max_retries": max_retries,
            "retry_interval": retry_interval,
            "user_agent": user_agent,
            "sleep_func": sleep_func,
        }
        self.soap_entrada = SoapClient(urls["entrada"], self.material, **options)
        self.soap_saida = SoapClient(urls["saida"], self.material, **options)
        self.soap_util = SoapClient(urls["util"], self.material, **options)

    @property
    def ready(self) -> bool:
        """True once the inscrição municipal has been resolved."""
        return self.im is not None

    def _credentials(self) -> dict[str, str]:
        return {"cpfUsuario": self.usuario, "senha": self.senha_usuario}

    async def _call(
        self,
        client: SoapClient,
        operation: str,
        params: dict,
        normalize: bool,
    ) -> Any:
        if not normalize:
            return await client.call(operation, params)
        xml = await client.call(operation, params, raw=True)
        return normalize_response(parse_envelope(xml), f"{operation}Return")

    async def lookup_registration(self, cnpj: str | None = None) -> dict:
        """Query consultarCnpj for *cnpj* (default: own CNPJ).

        The inscrição municipal is remembered only when the own CNPJ is queried.
        Raises RegistrationNotFoundError when the answer has no inscricaomunicipal.
        """
        alvo = validate_cnpj(cnpj) if cnpj else self.cnpj
        params = {"cnpj": alvo, **self._credentials()}

        response = await self.soap_util.call("consultarCnpj", params)
        im = response.get("inscricaomunicipal") if isinstance(response, dict) else None
        if not im:
            raise RegistrationNotFoundError(
                "Não foi possível obter inscrição municipal para o CNPJ informado.",
                response=response if isinstance(response, dict) else None,
            )
        if alvo == self.cnpj:
            self.im = str(im)
            logger.info("Inscrição municipal resolvida para CNPJ %s", self.cnpj)
        return response

    async def ensure_registration(self) -> str:
        """Resolve the inscrição municipal once; concurrent callers share the lookup."""
        async with self._im_lock:
            if self.im is None:
                await self.lookup_registration()
        return self.im  # type: ignore[return-value]

    async def issue(self, rps: Rps | dict, *, normalize: bool = False) -> Any:
        """Send an RPS through nfdEntrada and return the webservice receipt."""
        if not rps:
            raise ValueError("Payload para envio da nota é obrigatório")
        if isinstance(rps, dict):
            rps = Rps.from_dict(rps)
        im = await self.ensure_registration()

        params = {
            **self._credentials(),
            "codCidade": COD_CIDADE_SP,
            "xml": build_rps_xml(rps, im),
        }
        return await self._call(self.soap_entrada, "nfdEntrada", params, normalize)

    async def query(self, recibo: str, *, normalize: bool = False) -> Any:
        """Query an issued note by the receipt (protocol) returned by issue()."""
        if not recibo:
            raise ValueError("Número do recibo é obrigatório para consulta")
        im = await self.ensure_registration()

        params = {**self._credentials(), "im": im, "xmlRecibo": recibo}
        return await self._call(self.soap_saida, "nfdSaida", params, normalize)

    async def cancel(
        self,
        numero_nfse: str | int,
        motivo: str,
        *,
        serie: str = "RPS",
        data_emissao: str | None = None,
        normalize: bool = False,
    ) -> Any:
        """Cancel an issued note through nfdEntradaCancelar."""
        if not numero_nfse:
            raise ValueError("Número da NFS-e a cancelar é obrigatório")
        if not motivo:
            raise ValueError("Motivo do cancelamento é obrigatório")
        if not self.usuario:
            raise ValueError("CPF do usuário deve estar configurado para cancelamento")
        im = await self.ensure_registration()

        xml = build_cancel_xml(im, numero_nfse, serie, motivo, data_emissao)
        params = {**self._credentials(), "xml": xml}
        return await self._call(self.soap_entrada, "nfdEntradaCancelar", params, normalize)

    async def query_batch(self, numero_lote: str | int, *, normalize: bool = False) -> Any:
        """Query the status of a batch (lote) of notes."""
        if not numero_lote:
            raise ValueError("Número do lote é obrigatório para consulta")
        im = await self.ensure_registration()

        params = {**self._credentials(), "im": im, "numeroLote": numero_lote}
        return await self._call(self.soap_saida, "nfdConsultaLote", params, normalize)
