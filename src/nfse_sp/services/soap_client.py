from __future__ import annotations

import asyncio
import logging
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from zeep import Client, Settings
from zeep.helpers import serialize_object
from zeep.transports import Transport

from nfse_sp.config import SOAP_MAX_RETRIES, SOAP_RETRY_INTERVAL, SOAP_TIMEOUT, USER_AGENT
from nfse_sp.services.exceptions import InvalidOperationError, ParseError, RemoteCallError
from nfse_sp.services.http_retry import RetryPolicy, retry_call
from nfse_sp.services.response_handler import parse_envelope
from nfse_sp.utils.certificate import CertificateMaterial

logger = logging.getLogger(__name__)


class ClientCertAdapter(HTTPAdapter):
    """HTTPAdapter that opens every HTTPS pool with a fixed client-auth SSLContext."""

    def __init__(self, ssl_context: ssl.SSLContext, **kwargs: Any) -> None:
        self._ssl_context = ssl_context
        super().__init__(**kwargs)

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> Any:
        kwargs["ssl_context"] = self._ssl_context
        return super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args: Any, **kwargs: Any) -> Any:
        kwargs["ssl_context"] = self._ssl_context
        return super().proxy_manager_for(*args, **kwargs)


@dataclass(frozen=True)
class SoapConnection:
    """A loaded zeep client and its service proxy bound to the forced endpoint."""

    client: Any
    service: Any


def _is_envelope(text: str) -> bool:
    try:
        return "Envelope" in parse_envelope(text)
    except ParseError:
        return False


def endpoint_from_wsdl(wsdl_url: str) -> str:
    """Strip the ``?wsdl`` query from a WSDL URL to get the SOAP endpoint."""
    base, sep, query = wsdl_url.partition("?")
    if sep and query.lower() == "wsdl":
        return base
    return wsdl_url


class SoapClient:
    """Cached zeep client for one WSDL, authenticated with an A1 certificate.

    The connection (WSDL download + parsing) is created lazily on the first
    call and reused afterwards. Concurrent first calls share a single creation
    task. The connection is never refreshed; discard the SoapClient to rebuild it.
    """

    def __init__(
        self,
        wsdl_url: str,
        material: CertificateMaterial,
        *,
        timeout: float = SOAP_TIMEOUT,
        max_retries: int = SOAP_MAX_RETRIES,
        retry_interval: float = SOAP_RETRY_INTERVAL,
        user_agent: str = USER_AGENT,
        sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if not wsdl_url:
            raise ValueError("Parâmetro wsdl_url obrigatório")
        if material is None:
            raise ValueError("Material do certificado é obrigatório")

        self.wsdl_url = wsdl_url
        self.endpoint = endpoint_from_wsdl(wsdl_url)
        self.material = material
        self.timeout = timeout
        self.user_agent = user_agent
        self.retry_policy = RetryPolicy.from_retries(
            max_retries, retry_interval, giveup_exceptions=(InvalidOperationError,)
        )
        self._sleep = sleep_func
        self._connection: SoapConnection | None = None
        self._connecting: asyncio.Task[SoapConnection] | None = None

    def __repr__(self) -> str:
        return f"SoapClient({self.endpoint!r})"

    def _build_session(self) -> requests.Session:
        session = requests.Session()
        session.mount("https://", ClientCertAdapter(self.material.ssl_context))
        session.headers["User-Agent"] = self.user_agent
        return session

    def _build_client(self) -> SoapConnection:
        """Download the WSDL and bind its first port's binding to ``self.endpoint``.

        Blocking; runs in a worker thread. The address declared inside the WSDL
        is ignored so the service cannot be redirected elsewhere.
        """
        logger.info("Carregando WSDL %s", self.wsdl_url)
        transport = Transport(
            session=self._build_session(),
            timeout=self.timeout,
            operation_timeout=self.timeout,
        )
        client = Client(
            self.wsdl_url,
            transport=transport,
            settings=Settings(strict=False, xml_huge_tree=True),
        )
        binding_name = None
        for service in client.wsdl.services.values():
            for port in service.ports.values():
                binding_name = port.binding.name.text
                break
            if binding_name:
                break
        if binding_name is None:
            raise RuntimeError(f"WSDL sem binding SOAP: {self.wsdl_url}")
        return SoapConnection(client=client, service=client.create_service(binding_name, self.endpoint))

    async def _get_connection(self) -> SoapConnection:
        if self._connection is not None:
            return self._connection
        if self._connecting is None:
            self._connecting = asyncio.get_running_loop().create_task(
                asyncio.to_thread(self._build_client)
            )
        task = self._connecting
        try:
            # shield: one caller giving up must not cancel creation for the others
            connection = await asyncio.shield(task)
        except Exception:
            if self._connecting is task:
                self._connecting = None
            raise
        self._connection = connection
        return connection

    @staticmethod
    def _invoke(connection: SoapConnection, method: Callable[..., Any], args: dict, raw: bool) -> Any:
        if raw:
            with connection.client.settings(raw_response=True):
                response = method(**args)
            # a 500 carrying a SOAP Fault is an answer; a gateway error page is not
            if response.status_code >= 400 and not _is_envelope(response.text):
                raise requests.HTTPError(
                    f"HTTP {response.status_code} sem envelope SOAP", response=response
                )
            return response.text
        return serialize_object(method(**args), dict)

    async def call(self, operation: str, args: dict | None = None, *, raw: bool = False) -> Any:
        """Invoke *operation* with *args*, retrying every failure at a fixed interval.

        Returns the result converted to plain dicts/lists, or the response
        envelope text when *raw* is true.

        Raises:
            InvalidOperationError: empty operation name, or not exposed by the service.
            RemoteCallError: all ``max_retries + 1`` attempts failed.
        """
        if not operation:
            raise InvalidOperationError("Nome do método SOAP é obrigatório")
        call_args = dict(args or {})

        async def _attempt() -> Any:
            connection = await self._get_connection()
            try:
                method = getattr(connection.service, operation)
            except (AttributeError, ValueError):
                raise InvalidOperationError(
                    f"Método SOAP '{operation}' não encontrado em {self.endpoint}"
                ) from None
            logger.debug("Chamando %s em %s", operation, self.endpoint)
            return await asyncio.to_thread(self._invoke, connection, method, call_args, raw)

        try:
            return await retry_call(_attempt, self.retry_policy, sleep_func=self._sleep)
        except InvalidOperationError:
            raise
        except Exception as e:
            logger.error(
                "Chamada SOAP '%s' falhou após %d tentativas",
                operation,
                self.retry_policy.max_attempts,
            )
            raise RemoteCallError(operation, e) from e
