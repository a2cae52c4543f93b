from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import sys
from pathlib import Path

from nfse_sp.services.exceptions import CertificateError, NfseError
from nfse_sp.services.response_handler import NormalizedResult


def _check_keyring_available() -> bool:
    """Check if keyring is installed with a usable backend."""
    try:
        import keyring
        from keyring.backends.fail import Keyring as FailKeyring

        return not isinstance(keyring.get_keyring(), FailKeyring)
    except Exception:
        return False


def _write_env(env_file: Path, **values: str | None) -> None:
    """Set keys in an owner-only .env file, removing those given as None."""
    from dotenv import set_key, unset_key

    env_file.parent.mkdir(parents=True, exist_ok=True)
    env_file.touch(exist_ok=True)
    for key, value in values.items():
        if value is None:
            unset_key(str(env_file), key)
        else:
            set_key(str(env_file), key, value)
    env_file.chmod(0o600)


def _store_password(env_file: Path, password: str) -> str:
    """Keep the password in the system keychain, or in .env when there is none."""
    from nfse_sp.config import _delete_keyring_password, _set_keyring_password

    if _check_keyring_available() and _set_keyring_password(password):
        _write_env(env_file, CERT_PFX_PASSWORD=None)
        return "keychain do sistema"
    _write_env(env_file, CERT_PFX_PASSWORD=password)
    _delete_keyring_password()
    return str(env_file)


def _setup_certificate(config_dir: Path) -> bool:
    """Interactive certificate setup. Returns True if cert was configured."""
    from nfse_sp.utils.certificate import validate_certificate

    while True:
        pfx_path = input("Caminho do certificado .pfx/.p12 (vazio para pular): ").strip()
        if not pfx_path:
            print("  Configuração de certificado pulada.")
            return False
        if Path(pfx_path).is_file():
            break
        print(f"  Arquivo não encontrado: {pfx_path}")

    pfx_password = getpass.getpass("Senha do certificado: ")
    try:
        info = validate_certificate(pfx_path, pfx_password)
    except (CertificateError, OSError) as e:
        print(f"  ERRO: {e}")
        return False

    status = "válido" if info["valid"] else "EXPIRADO"
    print(f"  {info['subject']} ({status} até {info['not_after']:%Y-%m-%d})")

    env_file = config_dir / ".env"
    _write_env(env_file, CERT_PFX_PATH=pfx_path, CERT_PFX_BASE64=None)
    print(f"  Senha armazenada em: {_store_password(env_file, pfx_password)}")
    return True


def _init_config() -> None:
    """Create the config dir and run the interactive certificate setup."""
    from nfse_sp.config import get_config_dir

    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    print(f"Configuração: {config_dir}")

    try:
        _setup_certificate(config_dir)
    except (EOFError, KeyboardInterrupt):
        print()
        return

    print()
    print("Próximos passos:")
    print(f"  Defina NFSE_CNPJ, NFSE_CPF_USUARIO e NFSE_SENHA_USUARIO em {config_dir / '.env'}")
    print("  Execute: nfse-sp inscricao")


def _show_certificate() -> dict:
    from nfse_sp.config import get_cert_password, get_cert_source
    from nfse_sp.utils.certificate import validate_certificate

    source = get_cert_source()
    if not os.path.isfile(source):
        raise ValueError("'certificado' requer CERT_PFX_PATH apontando para um arquivo .pfx")
    return validate_certificate(source, get_cert_password())


def _build_client(args: argparse.Namespace):
    from nfse_sp.config import get_settings
    from nfse_sp.services.nota_fiscal import NotaFiscalSP

    settings = get_settings()
    if args.homologacao:
        settings["ambiente"] = "homologacao"
    return NotaFiscalSP(**settings)


async def _run(args: argparse.Namespace) -> object:
    nfsp = _build_client(args)
    if args.command == "inscricao":
        return await nfsp.lookup_registration(args.cnpj)
    if args.command == "emitir":
        from nfse_sp.config import load_yaml

        return await nfsp.issue(load_yaml(Path(args.rps)), normalize=args.normalizar)
    if args.command == "consultar":
        return await nfsp.query(args.recibo, normalize=args.normalizar)
    if args.command == "cancelar":
        return await nfsp.cancel(
            args.numero,
            args.motivo,
            serie=args.serie,
            data_emissao=args.data_emissao,
            normalize=args.normalizar,
        )
    if args.command == "lote":
        return await nfsp.query_batch(args.numero, normalize=args.normalizar)
    raise ValueError(f"Comando desconhecido: {args.command}")


def _print_result(result: object) -> None:
    if isinstance(result, NormalizedResult):
        result = result.as_dict()
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nfse-sp",
        description="Emissão, consulta e cancelamento de NFS-e na Prefeitura de São Paulo.",
    )
    parser.add_argument(
        "--homologacao", action="store_true", help="usar o ambiente de homologação"
    )
    parser.add_argument(
        "--normalizar",
        action="store_true",
        help="retornar {success, data, error} em vez da resposta bruta",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log detalhado (DEBUG)")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init", help="configurar certificado digital")
    sub.add_parser("certificado", help="exibir dados do certificado configurado")

    p = sub.add_parser("inscricao", help="consultar inscrição municipal")
    p.add_argument("--cnpj", help="CNPJ a consultar (padrão: NFSE_CNPJ)")

    p = sub.add_parser("emitir", help="emitir NFS-e a partir de um RPS em YAML")
    p.add_argument("rps", help="arquivo YAML com os dados do RPS")

    p = sub.add_parser("consultar", help="consultar NFS-e pelo número do recibo")
    p.add_argument("recibo")

    p = sub.add_parser("cancelar", help="cancelar NFS-e")
    p.add_argument("numero", help="número da NFS-e")
    p.add_argument("--motivo", required=True)
    p.add_argument("--serie", default="RPS")
    p.add_argument("--data-emissao", dest="data_emissao")

    p = sub.add_parser("lote", help="consultar lote de notas")
    p.add_argument("numero", help="número do lote")

    return parser


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else os.environ.get("LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the nfse-sp CLI."""
    args = _build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "init":
        _init_config()
        return

    try:
        if args.command == "certificado":
            result: object = _show_certificate()
        else:
            result = asyncio.run(_run(args))
    except KeyError as e:
        print(f"Erro: configuração ausente: {e.args[0]}", file=sys.stderr)
        sys.exit(1)
    except (NfseError, ValueError, OSError) as e:
        print(f"Erro: {e}", file=sys.stderr)
        sys.exit(1)

    _print_result(result)


if __name__ == "__main__":
    main()
