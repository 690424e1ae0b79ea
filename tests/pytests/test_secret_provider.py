from pathlib import Path

import pytest

from swarm_deploy.deploy_errors import SecretMissingError
from swarm_deploy.env_schema import EnvName, SecretsEnum
from swarm_deploy.secret_provider import (
    DotenvSecretProvider,
    SecretBundle,
    SecretKind,
    SecretProvider,
    load_secret_bundle,
)


def _write_secrets(root: Path, env: str, body: str) -> None:
    (root / f".env.deploy.{env}.secrets").write_text(body, encoding="utf-8")


def test_reads_secrets_from_dotenv_file(tmp_path: Path):
    _write_secrets(
        tmp_path,
        "dev",
        "SWARM_DEV_API_KEY=k1\nSWARM_DEV_HOST_ADDRESS=dev.example.com\nSWARM_DEV_HOST_CREDENTIAL=pw\n",
    )
    bundle = load_secret_bundle(DotenvSecretProvider(tmp_path), EnvName.DEV)
    assert (bundle.api_key, bundle.host_address, bundle.host_credential) == ("k1", "dev.example.com", "pw")


def test_env_var_takes_precedence_over_file(tmp_path: Path, monkeypatch):
    _write_secrets(tmp_path, "prod", "SWARM_PROD_API_KEY=from_file\n")
    monkeypatch.setenv("SWARM_PROD_API_KEY", "from_env")
    provider = DotenvSecretProvider(tmp_path)
    assert provider.get_secret("prod", SecretKind.API_KEY) == "from_env"


def test_missing_secret_is_fatal_and_names_the_variable(tmp_path: Path):
    _write_secrets(tmp_path, "dev", "SWARM_DEV_API_KEY=k1\nSWARM_DEV_HOST_ADDRESS=\n")
    with pytest.raises(SecretMissingError) as exc:
        load_secret_bundle(DotenvSecretProvider(tmp_path), EnvName.DEV)
    assert exc.value.kind == "host_address"
    assert "SWARM_DEV_HOST_ADDRESS" in str(exc.value)


def test_secrets_are_not_shared_across_environments(tmp_path: Path):
    _write_secrets(tmp_path, "dev", "SWARM_DEV_API_KEY=k1\n")
    with pytest.raises(SecretMissingError):
        DotenvSecretProvider(tmp_path).get_secret("prod", SecretKind.API_KEY)


def test_optional_git_token_is_empty_when_unset(tmp_path: Path):
    assert DotenvSecretProvider(tmp_path).get_optional("dev", SecretsEnum.GIT_TOKEN) == ""


def test_provider_satisfies_protocol(tmp_path: Path):
    assert isinstance(DotenvSecretProvider(tmp_path), SecretProvider)


def test_bundle_repr_hides_values(secrets):
    text = repr(secrets)
    assert "k1" not in text
    assert "pw" not in text


def test_bundle_scrub_drops_values(secrets):
    secrets.scrub()
    assert secrets.scrubbed
    assert secrets.api_key == ""


def test_fqdn_and_ssh_target():
    bundle = SecretBundle(api_key="k", host_address="deploy@host.example.com", host_credential="pw")
    assert bundle.fqdn == "host.example.com"
    assert bundle.ssh_target("other") == "deploy@host.example.com"

    plain = SecretBundle(api_key="k", host_address="host.example.com", host_credential="pw")
    assert plain.ssh_target("ubuntu") == "ubuntu@host.example.com"
    assert plain.ssh_target(None) == "host.example.com"
