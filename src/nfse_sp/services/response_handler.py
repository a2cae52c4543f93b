from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from typing import Any

from lxml import etree

from nfse_sp.services.exceptions import ParseError

# The webservice answers with no stable schema: the same concept shows up
# under different field names depending on the operation. Lookups try each
# candidate in order and take the first non-empty value.
STATUS_FIELDS = ("status", "situacao", "Status")
ERROR_FIELDS = ("mensagem", "MsgErro", "erro")
FAULT_CODE_FIELDS = ("faultcode", "faultCode")
FAULT_STRING_FIELDS = ("faultstring", "faultString")

_PROCESSADO = re.compile("processado", re.IGNORECASE)

_PARSER = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    remove_blank_text=True,
    huge_tree=True,
)


@dataclass(frozen=True)
class NormalizedResult:
    success: bool
    data: Any = None
    error: str | None = None

    def as_dict(self) -> dict:
        return asdict(self)


def _element_to_value(el: etree._Element) -> Any:
    """Convert an element to str (leaf) or dict keyed by local names."""
    node: dict[str, Any] = {}
    for name, value in el.attrib.items():
        node[f"@_{etree.QName(name).localname}"] = value

    for child in el:
        if not isinstance(child.tag, str):
            continue  # comments, processing instructions
        key = etree.QName(child).localname
        value = _element_to_value(child)
        if key in node:
            existing = node[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                node[key] = [existing, value]
        else:
            node[key] = value

    text = (el.text or "").strip()
    if not node:
        return text
    if text:
        node["#text"] = text
    return node


def parse_envelope(xml: str | bytes) -> dict:
    """Parse a SOAP response into nested dicts, dropping namespace prefixes.

    Attributes become ``@_name`` keys, repeated siblings become lists and leaf
    text is returned trimmed as ``str``.

    Raises:
        ParseError: *xml* is not a non-empty string or is not well-formed.
    """
    if not isinstance(xml, (str, bytes)) or not xml.strip():
        raise ParseError("XML inválido ou vazio")
    data = xml.encode("utf-8") if isinstance(xml, str) else xml
    try:
        root = etree.fromstring(data, parser=_PARSER)
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Falha ao parsear XML: {e}") from e
    return {etree.QName(root).localname: _element_to_value(root)}


def _first(node: dict, keys: tuple[str, ...], default: Any = None) -> Any:
    for key in keys:
        value = node.get(key)
        if value:
            return value
    return default


def _body(envelope: Any) -> Any:
    if not isinstance(envelope, dict):
        return None
    env = envelope.get("Envelope")
    if not isinstance(env, dict):
        return None
    return env.get("Body")


def _fault(envelope: Any) -> Any:
    body = _body(envelope)
    if not isinstance(body, dict):
        return None
    return body.get("Fault")


def has_fault(response: dict | str | bytes) -> bool:
    """Whether *response* (parsed envelope or raw XML) carries a SOAP Fault."""
    if isinstance(response, (str, bytes)):
        response = parse_envelope(response)
    return _fault(response) is not None


def get_fault_message(envelope: dict) -> str | None:
    """Compose ``[code] message - Detalhe: detail`` from a Fault, or None without one."""
    fault = _fault(envelope)
    if fault is None:
        return None
    if not isinstance(fault, dict):
        return str(fault)

    code = _first(fault, FAULT_CODE_FIELDS, "")
    message = str(_first(fault, FAULT_STRING_FIELDS, ""))
    detail = fault.get("detail") or ""

    if code:
        message = f"[{code}] {message}"
    if detail:
        if not isinstance(detail, str):
            detail = json.dumps(detail, ensure_ascii=False)
        message += f" - Detalhe: {detail}"
    return message.strip()


def _is_success_status(value: Any) -> bool:
    text = str(value)
    return text == "1" or bool(_PROCESSADO.search(text))


def _result_node(body: dict, key: str) -> tuple[bool, Any]:
    """Find *key* in the body, or one level down inside the operation wrapper."""
    if key in body:
        return True, body[key]
    for wrapper in body.values():
        if isinstance(wrapper, dict) and key in wrapper:
            return True, wrapper[key]
    return False, None


def normalize_response(envelope: dict | None, expected_key: str | None = None) -> NormalizedResult:
    """Reduce a parsed envelope to ``NormalizedResult(success, data, error)``.

    *expected_key* is looked up in the body, then inside the ``...Response``
    wrapper (Axis replies nest ``nfdEntradaReturn`` in ``nfdEntradaResponse``).
    Without it, or when it is not found, the whole body is returned as a
    success for the caller to interpret. A mapping result is classified by
    its status field; a scalar result is always a success.
    """
    if not envelope:
        return NormalizedResult(success=False, error="Resposta vazia")

    body = _body(envelope)
    if body is None or body == "":
        return NormalizedResult(success=False, error="Resposta sem corpo (Body)")

    if isinstance(body, dict) and body.get("Fault") is not None:
        return NormalizedResult(success=False, error=get_fault_message(envelope))

    found, result = False, None
    if expected_key and isinstance(body, dict):
        found, result = _result_node(body, expected_key)
    if not found:
        return NormalizedResult(success=True, data=body)

    if not isinstance(result, dict):
        return NormalizedResult(success=True, data=result)

    status = _first(result, STATUS_FIELDS, "")
    if _is_success_status(status):
        return NormalizedResult(success=True, data=result)

    error = _first(result, ERROR_FIELDS)
    if error is None:
        error = json.dumps(result, ensure_ascii=False)
    elif not isinstance(error, str):
        error = json.dumps(error, ensure_ascii=False)
    return NormalizedResult(success=False, error=error)
