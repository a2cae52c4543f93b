from __future__ import annotations

from lxml import etree

from nfse_sp.models.rps import Rps
from nfse_sp.utils.validators import validate_motivo


def _sub(parent: etree._Element, tag: str, text: str | None = None) -> etree._Element:
    el = etree.SubElement(parent, tag)
    if text is not None:
        el.text = text
    return el


def _nfd_root(im: str) -> etree._Element:
    if not im:
        raise ValueError('Inscrição municipal "im" é obrigatória')
    nfd = etree.Element("nfd")
    prestador = _sub(nfd, "prestador")
    _sub(prestador, "inscricao", str(im))
    return nfd


def _tostring(root: etree._Element) -> str:
    return etree.tostring(
        root,
        xml_declaration=True,
        encoding="UTF-8",
        pretty_print=True,
    ).decode("utf-8")


def build_rps_xml(rps: Rps, im: str) -> str:
    """Build the RPS XML embedded in nfdEntrada.

    Returns the document as text with an XML declaration.
    """
    if rps is None:
        raise ValueError("Dados do RPS são obrigatórios para construção do XML")

    nfd = _nfd_root(im)
    lista = _sub(nfd, "listaNfse")
    nfs = _sub(lista, "nfs")
    rps_el = _sub(nfs, "rps")

    _sub(rps_el, "numero", rps.numero_rps)
    _sub(rps_el, "serie", rps.serie)
    _sub(rps_el, "dataEmissao", rps.data_emissao)
    _sub(rps_el, "tipo", str(rps.tipo))

    # servico
    servico = _sub(rps_el, "servico")
    _sub(servico, "valorServicos", rps.valor_servicos)
    _sub(servico, "codigoServico", rps.codigo_servico)
    _sub(servico, "issRetido", str(rps.iss_retido))
    if rps.aliquota_servicos is not None:
        _sub(servico, "aliquotaServicos", rps.aliquota_servicos)
    _sub(servico, "discriminacao", rps.discriminacao)

    # tomador
    tomador = rps.tomador
    toma = _sub(rps_el, "tomador")
    if tomador.cpf:
        _sub(toma, "cpf", tomador.cpf)
    elif tomador.cnpj:
        _sub(toma, "cnpj", tomador.cnpj)
    _sub(toma, "razaoSocial", tomador.razao_social)

    endereco = tomador.endereco
    end = _sub(toma, "endereco")
    _sub(end, "logradouro", endereco.logradouro)
    _sub(end, "numero", endereco.numero)
    if endereco.complemento:
        _sub(end, "complemento", endereco.complemento)
    _sub(end, "bairro", endereco.bairro)
    _sub(end, "codigoMunicipio", endereco.codigo_municipio)
    _sub(end, "uf", endereco.uf)
    _sub(end, "cep", endereco.cep)

    if tomador.email:
        _sub(toma, "email", tomador.email)

    return _tostring(nfd)


def build_cancel_xml(
    im: str,
    numero_nfse: str | int,
    serie: str,
    motivo: str,
    data_emissao: str | None = None,
) -> str:
    """Build the cancellation XML embedded in nfdEntradaCancelar."""
    if not numero_nfse:
        raise ValueError("Número da NFS-e para cancelamento é obrigatório")
    if not serie:
        raise ValueError("Série da NFS-e para cancelamento é obrigatória")
    validate_motivo(motivo)

    nfd = _nfd_root(im)
    cancelar = _sub(nfd, "cancelar")
    nfs = _sub(cancelar, "nfs")
    _sub(nfs, "numero", str(numero_nfse))
    _sub(nfs, "serie", serie)
    if data_emissao:
        _sub(nfs, "dataEmissao", data_emissao)
    _sub(cancelar, "motivo", motivo)

    return _tostring(nfd)
