from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import yaml

import nfse_sp.config as config_mod


class TestConfigDir:
    def test_from_env_var(self, monkeypatch, tmp_path):
        monkeypatch.setenv("NFSE_SP_CONFIG_DIR", str(tmp_path))
        assert config_mod.get_config_dir() == tmp_path

    def test_project_root_fallback(self, monkeypatch, tmp_path):
        monkeypatch.delenv("NFSE_SP_CONFIG_DIR", raising=False)
        fake_root = tmp_path / "src" / "nfse_sp"
        fake_root.mkdir(parents=True)
        config_dir = tmp_path / "config"
        config_dir.mkdir()

        # Patch __file__ so project_root resolves to tmp_path
        monkeypatch.setattr(config_mod, "__file__", str(fake_root / "config.py"))
        assert config_mod.get_config_dir() == config_dir

    def test_platformdirs_fallback(self, monkeypatch, tmp_path):
        monkeypatch.delenv("NFSE_SP_CONFIG_DIR", raising=False)
        fake = tmp_path / "nowhere" / "src" / "nfse_sp"
        fake.mkdir(parents=True)
        monkeypatch.setattr(config_mod, "__file__", str(fake / "config.py"))
        assert "nfse-sp" in str(config_mod.get_config_dir())

    def test_resolve_for_dotenv_env_var(self, monkeypatch, tmp_path):
        monkeypatch.setenv("NFSE_SP_CONFIG_DIR", str(tmp_path))
        assert config_mod._resolve_config_dir_for_dotenv() == tmp_path

    def test_resolve_for_dotenv_none_when_missing(self, monkeypatch, tmp_path):
        monkeypatch.delenv("NFSE_SP_CONFIG_DIR", raising=False)
        fake = tmp_path / "nowhere" / "src" / "nfse_sp"
        fake.mkdir(parents=True)
        monkeypatch.setattr(config_mod, "__file__", str(fake / "config.py"))
        # platformdirs dir won't exist, so returns None
        with patch("nfse_sp.config.platformdirs.user_config_dir", return_value=str(fake / "pd")):
            assert config_mod._resolve_config_dir_for_dotenv() is None


class TestEnvironments:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "producao"),
            ("", "producao"),
            ("producao", "producao"),
            ("PROD", "producao"),
            ("homologacao", "homologacao"),
            (" hml ", "homologacao"),
        ],
    )
    def test_normalize_env(self, value, expected):
        assert config_mod.normalize_env(value) == expected

    def test_unknown_env(self):
        with pytest.raises(ValueError, match="Ambiente inválido"):
            config_mod.normalize_env("staging")

    def test_wsdl_urls_producao(self):
        urls = config_mod.wsdl_urls("producao")
        assert urls == {
            "entrada": "https://nfe.prefeitura.sp.gov.br/ws/WSEntrada.e?wsdl",
            "saida": "https://nfe.prefeitura.sp.gov.br/ws/WSSaida.e?wsdl",
            "util": "https://nfe.prefeitura.sp.gov.br/ws/WSUtil.e?wsdl",
        }

    def test_wsdl_urls_homologacao(self):
        urls = config_mod.wsdl_urls("hml")
        assert all(u.startswith("https://homologacao.nfe.prefeitura.sp.gov.br/ws/") for u in urls.values())


class TestCertEnv:
    def test_cert_source_path(self, monkeypatch):
        monkeypatch.setenv("CERT_PFX_PATH", "/some/path.pfx")
        monkeypatch.setenv("CERT_PFX_BASE64", "QUJD")
        assert config_mod.get_cert_source() == "/some/path.pfx"

    def test_cert_source_base64(self, monkeypatch):
        monkeypatch.delenv("CERT_PFX_PATH", raising=False)
        monkeypatch.setenv("CERT_PFX_BASE64", "QUJD")
        assert config_mod.get_cert_source() == "QUJD"

    def test_cert_source_missing(self, monkeypatch):
        monkeypatch.delenv("CERT_PFX_PATH", raising=False)
        monkeypatch.delenv("CERT_PFX_BASE64", raising=False)
        with pytest.raises(KeyError):
            config_mod.get_cert_source()

    def test_get_cert_password_returns_env(self, monkeypatch):
        monkeypatch.setenv("CERT_PFX_PASSWORD", "secret")
        assert config_mod.get_cert_password() == "secret"

    def test_get_cert_password_raises_missing(self, monkeypatch):
        monkeypatch.delenv("CERT_PFX_PASSWORD", raising=False)
        with (
            patch.object(config_mod, "_get_keyring_password", return_value=None),
            pytest.raises(KeyError),
        ):
            config_mod.get_cert_password()

    def test_get_cert_password_keyring_fallback(self, monkeypatch):
        monkeypatch.delenv("CERT_PFX_PASSWORD", raising=False)
        with patch.object(config_mod, "_get_keyring_password", return_value="from-keyring"):
            assert config_mod.get_cert_password() == "from-keyring"

    def test_get_cert_password_env_takes_priority(self, monkeypatch):
        monkeypatch.setenv("CERT_PFX_PASSWORD", "from-env")
        with patch.object(config_mod, "_get_keyring_password", return_value="from-keyring"):
            assert config_mod.get_cert_password() == "from-env"


class TestSettings:
    def test_collects_env(self, monkeypatch):
        monkeypatch.setenv("NFSE_CNPJ", "11222333000181")
        monkeypatch.setenv("CERT_PFX_PATH", "/cert.pfx")
        monkeypatch.setenv("CERT_PFX_PASSWORD", "pw")
        monkeypatch.setenv("NFSE_AMBIENTE", "homologacao")
        monkeypatch.setenv("NFSE_CPF_USUARIO", "12345678909")
        monkeypatch.setenv("NFSE_SENHA_USUARIO", "s3nha")
        assert config_mod.get_settings() == {
            "cnpj": "11222333000181",
            "certificado": "/cert.pfx",
            "senha_certificado": "pw",
            "ambiente": "homologacao",
            "usuario": "12345678909",
            "senha_usuario": "s3nha",
        }

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("NFSE_CNPJ", "11222333000181")
        monkeypatch.setenv("CERT_PFX_PATH", "/cert.pfx")
        monkeypatch.setenv("CERT_PFX_PASSWORD", "pw")
        for var in ("NFSE_AMBIENTE", "NFSE_CPF_USUARIO", "NFSE_SENHA_USUARIO"):
            monkeypatch.delenv(var, raising=False)
        settings = config_mod.get_settings()
        assert settings["ambiente"] == "producao"
        assert settings["usuario"] == ""

    def test_missing_cnpj(self, monkeypatch):
        monkeypatch.delenv("NFSE_CNPJ", raising=False)
        with pytest.raises(KeyError, match="NFSE_CNPJ"):
            config_mod.get_settings()


class TestKeyringHelpers:
    def test_get_keyring_password_success(self):
        mock_kr = MagicMock()
        mock_kr.get_password.return_value = "stored-pw"
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            result = config_mod._get_keyring_password()
        assert result == "stored-pw"
        mock_kr.get_password.assert_called_once_with("nfse-sp", "cert-pfx-password")

    def test_get_keyring_password_exception(self):
        mock_kr = MagicMock()
        mock_kr.get_password.side_effect = RuntimeError("no backend")
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._get_keyring_password() is None

    def test_set_keyring_password_success(self):
        mock_kr = MagicMock()
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._set_keyring_password("pw123") is True
        mock_kr.set_password.assert_called_once_with(
            config_mod.KEYRING_SERVICE, config_mod.KEYRING_USERNAME, "pw123"
        )

    def test_set_keyring_password_failure(self):
        mock_kr = MagicMock()
        mock_kr.set_password.side_effect = RuntimeError("locked")
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._set_keyring_password("pw") is False

    def test_delete_keyring_password_failure(self):
        mock_kr = MagicMock()
        mock_kr.delete_password.side_effect = RuntimeError("not found")
        with patch.dict("sys.modules", {"keyring": mock_kr}):
            assert config_mod._delete_keyring_password() is False


class TestLoadYaml:
    def test_valid(self, tmp_path):
        f = tmp_path / "test.yaml"
        f.write_text(yaml.dump({"key": "value"}))
        assert config_mod.load_yaml(f) == {"key": "value"}

    def test_not_a_mapping(self, tmp_path):
        f = tmp_path / "list.yaml"
        f.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapeamento"):
            config_mod.load_yaml(f)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            config_mod.load_yaml(tmp_path / "missing.yaml")
