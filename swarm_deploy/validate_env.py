#!/usr/bin/env python3
"""Validate environment parameter files (and optionally secrets) without deploying.

This is intended to run:
- locally (before deploy)
- in CI (before invoking swarm-deploy)

Strict by default:
- unknown keys => error
- missing mandatory keys => error
- port/path rules => error
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from swarm_deploy.deploy_errors import ConfigNotFound, SecretMissingError
from swarm_deploy.env_schema import EnvName, EnvValidationError, parse_dotenv_file, validate_deploy_vars
from swarm_deploy.environment import available_environments, resolve
from swarm_deploy.secret_provider import DotenvSecretProvider, SecretKind


def _validate_one(env_name: str, *, config_dir: Path, repo_root: Path, check_secrets: bool) -> list[str]:
    problems: list[str] = []
    try:
        resolve(env_name, config_dir=config_dir)
    except ConfigNotFound as e:
        return [str(e)]
    except EnvValidationError as e:
        return [e.format()]

    if check_secrets:
        provider = DotenvSecretProvider(repo_root)
        for kind in SecretKind:
            try:
                provider.get_secret(env_name, kind)
            except SecretMissingError as e:
                problems.append(str(e))
    return problems


def _validate_deploy_file(deploy_path: Path) -> list[str]:
    # `.env.deploy` is optional; CI usually sets the knobs as env vars.
    if not deploy_path.exists():
        return []
    try:
        validate_deploy_vars(parse_dotenv_file(deploy_path), context=f"deploy ({deploy_path.name})")
    except EnvValidationError as e:
        return [e.format()]
    return []


def main(argv: list[str] | None = None, repo_root_override: Path | None = None) -> int:
    ap = argparse.ArgumentParser(description="Validate swarm environment parameter files")
    ap.add_argument(
        "--env",
        action="append",
        choices=available_environments(),
        help="Environment to validate (repeatable; default: all)",
    )
    ap.add_argument("--config-dir", default=None, help="Directory holding {env}.yml files")
    ap.add_argument("--check-secrets", action="store_true", help="Also require all secrets to be resolvable")
    args = ap.parse_args(argv)

    repo_root = repo_root_override or Path(__file__).resolve().parents[1]
    config_dir = Path(args.config_dir) if args.config_dir else repo_root / "config" / "environments"
    envs = args.env or [e.value for e in EnvName]

    failed = False
    for problem in _validate_deploy_file(repo_root / ".env.deploy"):
        failed = True
        print(problem, file=sys.stderr)

    for env_name in envs:
        problems = _validate_one(env_name, config_dir=config_dir, repo_root=repo_root, check_secrets=args.check_secrets)
        if problems:
            failed = True
            for p in problems:
                print(p, file=sys.stderr)
        else:
            print(f"[env] {env_name}: ok")

    if failed:
        raise SystemExit(2)
    print("[env] ok")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
