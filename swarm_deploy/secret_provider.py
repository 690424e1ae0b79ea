"""Secret lookups for a deployment run.

Secrets are resolved per environment in this order:
1. Process env var (e.g. SWARM_PROD_API_KEY), which is how CI injects them.
2. `.env.deploy.{env}.secrets` dotenv file in the repo root.

The resulting SecretBundle is passed explicitly down the call chain and is
scrubbed by the caller once the run finishes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from swarm_deploy.deploy_errors import SecretMissingError
from swarm_deploy.env_schema import EnvName, SecretsEnum, read_dotenv_key, secret_env_var, secrets_dotenv_name
from swarm_deploy.remote_helpers import extract_ssh_hostname


class SecretKind(str, Enum):
    API_KEY = "api_key"
    HOST_ADDRESS = "host_address"
    HOST_CREDENTIAL = "host_credential"


_KIND_TO_KEY = {
    SecretKind.API_KEY: SecretsEnum.API_KEY,
    SecretKind.HOST_ADDRESS: SecretsEnum.HOST_ADDRESS,
    SecretKind.HOST_CREDENTIAL: SecretsEnum.HOST_CREDENTIAL,
}


@runtime_checkable
class SecretProvider(Protocol):
    def get_secret(self, env_id: str, kind: SecretKind) -> str: ...


@dataclass
class SecretBundle:
    api_key: str = field(repr=False)
    host_address: str = field(repr=False)
    host_credential: str = field(repr=False)

    @property
    def fqdn(self) -> str:
        return extract_ssh_hostname(self.host_address).strip()

    def ssh_target(self, remote_user: str | None = None) -> str:
        if "@" in self.host_address or not remote_user:
            return self.host_address
        return f"{remote_user}@{self.host_address}"

    def scrub(self) -> None:
        self.api_key = ""
        self.host_address = ""
        self.host_credential = ""

    @property
    def scrubbed(self) -> bool:
        return not (self.api_key or self.host_address or self.host_credential)


class DotenvSecretProvider:
    def __init__(self, repo_root: Path):
        self.repo_root = repo_root

    def get_optional(self, env_id: str, key: SecretsEnum) -> str:
        var_name = secret_env_var(env_id, key)
        value = str(os.getenv(var_name) or "").strip()
        if not value:
            value = read_dotenv_key(dotenv_path=self.repo_root / secrets_dotenv_name(env_id), key=var_name)
        return value

    def get_secret(self, env_id: str, kind: SecretKind) -> str:
        key = _KIND_TO_KEY[kind]
        value = self.get_optional(env_id, key)
        if not value:
            raise SecretMissingError(
                env=str(env_id),
                kind=kind.value,
                hint=f"set {secret_env_var(env_id, key)} or add it to {secrets_dotenv_name(env_id)}",
            )
        return value


def load_secret_bundle(provider: SecretProvider, env: EnvName) -> SecretBundle:
    return SecretBundle(
        api_key=provider.get_secret(env.value, SecretKind.API_KEY),
        host_address=provider.get_secret(env.value, SecretKind.HOST_ADDRESS),
        host_credential=provider.get_secret(env.value, SecretKind.HOST_CREDENTIAL),
    )
