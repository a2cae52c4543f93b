from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from nfse_sp.utils.validators import (
    only_digits,
    validate_aliquota,
    validate_choice,
    validate_datetime,
    validate_monetary,
)


def _required_value(d: dict, key: str, label: str) -> object:
    value = d.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"{label} é obrigatório")
    return value


def _iso(value: object) -> str:
    # PyYAML turns unquoted timestamps into date/datetime objects
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _required(d: dict, key: str, label: str) -> str:
    return str(_required_value(d, key, label))


@dataclass(frozen=True)
class Endereco:
    logradouro: str
    numero: str
    bairro: str
    codigo_municipio: str  # código IBGE, ex.: 3550308 para São Paulo
    uf: str
    cep: str
    complemento: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> Endereco:
        return cls(
            logradouro=_required(d, "logradouro", "Logradouro"),
            numero=_required(d, "numero", "Número do endereço"),
            bairro=_required(d, "bairro", "Bairro"),
            codigo_municipio=_required(d, "codigo_municipio", "Código do município"),
            uf=_required(d, "uf", "UF"),
            cep=only_digits(_required(d, "cep", "CEP")),
            complemento=d.get("complemento") or None,
        )


@dataclass(frozen=True)
class Tomador:
    """Service taker: pessoa física (cpf) or jurídica (cnpj)."""

    razao_social: str
    endereco: Endereco
    cpf: str | None = None
    cnpj: str | None = None
    email: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> Tomador:
        """Create a Tomador from a YAML-loaded dict. CPF wins when both documents are given."""
        cpf = only_digits(d.get("cpf")) or None
        cnpj = None if cpf else (only_digits(d.get("cnpj")) or None)
        if cpf is None and cnpj is None:
            raise ValueError("CPF ou CNPJ do tomador é obrigatório")
        razao_social = d.get("razao_social") or d.get("nome")
        if not razao_social:
            raise ValueError("Razão social (ou nome) do tomador é obrigatória")
        endereco = d.get("endereco")
        if not endereco:
            raise ValueError("Endereço do tomador é obrigatório")
        if not isinstance(endereco, dict):
            raise ValueError("Endereço do tomador deve ser um mapeamento")
        return cls(
            razao_social=razao_social,
            endereco=Endereco.from_dict(endereco),
            cpf=cpf,
            cnpj=cnpj,
            email=d.get("email") or None,
        )


@dataclass(frozen=True)
class Rps:
    """Recibo Provisório de Serviço submitted to request an NFS-e."""

    numero_rps: str
    data_emissao: str  # ISO 8601
    valor_servicos: str  # 2 casas decimais
    codigo_servico: str
    discriminacao: str
    tomador: Tomador
    serie: str = "RPS"
    tipo: int = 1  # 1 = normal, 2 = subsidiado
    iss_retido: int = 2  # 1 = retido, 2 = não retido
    aliquota_servicos: str | None = None  # 4 casas decimais, ex.: 0.0500

    @classmethod
    def from_dict(cls, d: dict) -> Rps:
        """Create an Rps from a YAML-loaded dict, validating and normalizing every field."""
        tomador = d.get("tomador")
        if not tomador:
            raise ValueError("Tomador é obrigatório")
        if not isinstance(tomador, dict):
            raise ValueError("Tomador deve ser um mapeamento")
        aliquota = d.get("aliquota_servicos")
        return cls(
            numero_rps=_required(d, "numero_rps", "Número do RPS"),
            data_emissao=validate_datetime(
                _iso(_required_value(d, "data_emissao", "Data de emissão"))
            ),
            valor_servicos=validate_monetary(_required(d, "valor_servicos", "Valor dos serviços")),
            codigo_servico=_required(d, "codigo_servico", "Código do serviço"),
            discriminacao=_required(d, "discriminacao", "Discriminação do serviço"),
            tomador=Tomador.from_dict(tomador),
            serie=str(d.get("serie") or "RPS"),
            tipo=validate_choice(d.get("tipo", 1), (1, 2), "Tipo do RPS"),
            iss_retido=validate_choice(d.get("iss_retido", 2), (1, 2), "ISS retido"),
            aliquota_servicos=validate_aliquota(aliquota) if aliquota is not None else None,
        )
