from __future__ import annotations

import os
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "nfse-sp"
KEYRING_SERVICE = "nfse-sp"
KEYRING_USERNAME = "cert-pfx-password"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve config dir for .env loading without depending on env vars from .env itself.

    Returns None if only platformdirs would resolve and that dir does not exist yet.
    """
    from_env = os.environ.get("NFSE_SP_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# Load .env: cwd first (highest priority), then config dir (won't override)
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def get_config_dir() -> Path:
    """Resolve the config directory. Re-evaluated on each call to pick up env changes.

    Priority: 1) NFSE_SP_CONFIG_DIR, 2) dev repo layout, 3) platformdirs user directory.
    """
    from_env = os.environ.get("NFSE_SP_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    # Development layout: src/nfse_sp/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    return Path(platformdirs.user_config_dir(APP_NAME))


# --- Webservice endpoints ---

BASE_URLS = {
    "producao": "https://nfe.prefeitura.sp.gov.br/ws",
    "homologacao": "https://homologacao.nfe.prefeitura.sp.gov.br/ws",
}

SERVICES = {
    "entrada": "WSEntrada.e",
    "saida": "WSSaida.e",
    "util": "WSUtil.e",
}

_ENV_ALIASES = {
    "producao": "producao",
    "prod": "producao",
    "homologacao": "homologacao",
    "hml": "homologacao",
}

SOAP_TIMEOUT = 15
SOAP_MAX_RETRIES = 2
SOAP_RETRY_INTERVAL = 1.0
USER_AGENT = "NotaFiscalSP-Client/1.0"

# codCidade fixo do município de São Paulo no nfdEntrada
COD_CIDADE_SP = 1


def normalize_env(ambiente: str | None) -> str:
    """Map an environment name or alias to ``producao`` / ``homologacao``.

    None or empty means production. Unknown names raise ValueError.
    """
    key = (ambiente or "producao").strip().lower()
    try:
        return _ENV_ALIASES[key]
    except KeyError:
        raise ValueError(
            f"Ambiente inválido: '{ambiente}'. Use 'producao' ou 'homologacao'."
        ) from None


def wsdl_urls(ambiente: str | None = "producao") -> dict[str, str]:
    """Return the WSDL URL of each service group (entrada, saida, util) for *ambiente*."""
    base = BASE_URLS[normalize_env(ambiente)]
    return {name: f"{base}/{path}?wsdl" for name, path in SERVICES.items()}


# --- Keyring helpers ---


def _get_keyring_password() -> str | None:
    """Try to get the certificate password from the OS keyring.

    Returns None on any failure (no backend, not stored, dbus errors, etc.).
    """
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except Exception:
        return None


def _set_keyring_password(password: str) -> bool:
    """Store the certificate password in the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, password)
        return True
    except Exception:
        return False


def _delete_keyring_password() -> bool:
    """Remove the certificate password from the OS keyring. Returns True on success."""
    try:
        import keyring

        keyring.delete_password(KEYRING_SERVICE, KEYRING_USERNAME)
        return True
    except Exception:
        return False


# --- Certificate access ---


def get_cert_source() -> str | bytes:
    """Return the certificate as a file path (CERT_PFX_PATH) or base64 text (CERT_PFX_BASE64).

    Raises KeyError if neither variable is set.
    """
    path = os.environ.get("CERT_PFX_PATH")
    if path:
        return path
    b64 = os.environ.get("CERT_PFX_BASE64")
    if b64:
        return b64
    raise KeyError("CERT_PFX_PATH")


def get_cert_password() -> str:
    """Return the certificate password.

    Priority: 1) CERT_PFX_PASSWORD env var, 2) OS keyring.
    Raises KeyError if neither source has the password.
    """
    pwd = os.environ.get("CERT_PFX_PASSWORD")
    if pwd is not None:
        return pwd
    pwd = _get_keyring_password()
    if pwd is not None:
        return pwd
    raise KeyError("CERT_PFX_PASSWORD")


def get_settings() -> dict:
    """Collect the NotaFiscalSP constructor arguments from the environment.

    Raises KeyError when NFSE_CNPJ or the certificate settings are missing.
    """
    return {
        "cnpj": os.environ["NFSE_CNPJ"],
        "certificado": get_cert_source(),
        "senha_certificado": get_cert_password(),
        "ambiente": os.environ.get("NFSE_AMBIENTE", "producao"),
        "usuario": os.environ.get("NFSE_CPF_USUARIO", ""),
        "senha_usuario": os.environ.get("NFSE_SENHA_USUARIO", ""),
    }


# --- YAML ---


def load_yaml(path: Path) -> dict:
    """Load and parse a YAML file, returning the top-level dict."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: conteúdo YAML deve ser um mapeamento")
    return data
