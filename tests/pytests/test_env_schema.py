from pathlib import Path

import pytest

from swarm_deploy.env_schema import (
    PARAMS_SCHEMA,
    EnvName,
    EnvValidationError,
    ParamsEnum,
    SecretsEnum,
    apply_defaults,
    parse_boolish,
    parse_dotenv_file,
    read_dotenv_key,
    secret_env_var,
    secrets_dotenv_name,
    validate_cross_field_rules,
    validate_deploy_vars,
    validate_known_keys,
    validate_required,
)


def _valid_params(**overrides):
    params = apply_defaults(
        PARAMS_SCHEMA,
        {"controller_port": 3001, "proxy_port": 8443, "public_path": "/swarm"},
    )
    params.update(overrides)
    return params


def test_secret_env_var_names_are_scoped_by_environment():
    assert secret_env_var(EnvName.PROD, SecretsEnum.API_KEY) == "SWARM_PROD_API_KEY"
    assert secret_env_var("dev", SecretsEnum.HOST_CREDENTIAL) == "SWARM_DEV_HOST_CREDENTIAL"
    assert secrets_dotenv_name(EnvName.DEV) == ".env.deploy.dev.secrets"


def test_unknown_keys_are_rejected():
    with pytest.raises(EnvValidationError) as exc:
        validate_known_keys(PARAMS_SCHEMA, {"proxy_port": 1, "proxy_prot": 2}, context="test")
    assert "proxy_prot" in str(exc.value)
    assert exc.value.format().startswith("[env] validation failed: test")


def test_apply_defaults_fills_blank_values_and_copies_lists():
    out = apply_defaults(PARAMS_SCHEMA, {"app_id": "  "})
    assert out["app_id"] == "swarm"
    assert out["dynamic_port_range"] == [3002, 4000]
    out["dynamic_port_range"].append(1)
    spec = next(s for s in PARAMS_SCHEMA if s.key == ParamsEnum.DYNAMIC_PORT_RANGE)
    assert spec.default == [3002, 4000]


def test_validate_required_lists_all_missing_keys():
    with pytest.raises(EnvValidationError) as exc:
        validate_required(PARAMS_SCHEMA, apply_defaults(PARAMS_SCHEMA, {}), context="test")
    assert exc.value.problems == ["Missing mandatory key(s): controller_port, proxy_port, public_path"]


def test_cross_field_rules_accept_valid_params():
    validate_cross_field_rules(_valid_params(), context="test")


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"proxy_port": 0}, "proxy_port must be in range"),
        ({"controller_port": 70000}, "controller_port must be in range"),
        ({"proxy_port": "443"}, "proxy_port must be an integer"),
        ({"proxy_port": 3001}, "must differ"),
        ({"public_path": ""}, "public_path"),
        ({"public_path": "/"}, "public_path"),
        ({"public_path": "//"}, "public_path"),
        ({"public_path": "///"}, "public_path"),
        ({"public_path": "/my app"}, "whitespace"),
        ({"dynamic_port_range": [4000, 3002]}, "reversed"),
        ({"controller_port": 3500}, "overlaps dynamic_port_range"),
        ({"source_paths": "index.js"}, "source_paths"),
    ],
)
def test_cross_field_rules_reject_invalid_params(overrides, fragment):
    with pytest.raises(EnvValidationError) as exc:
        validate_cross_field_rules(_valid_params(**overrides), context="test")
    assert fragment in str(exc.value)


def test_parse_boolish_truthy_falsey_and_default():
    assert parse_boolish("true") is True
    assert parse_boolish("yes") is True
    assert parse_boolish(True) is True
    assert parse_boolish("0") is False
    assert parse_boolish("", default=True) is True
    assert parse_boolish("not-a-bool", default=False) is False


def test_parse_dotenv_file_keeps_empty_values(tmp_path: Path):
    path = tmp_path / ".env.deploy"
    path.write_text("# comment\nSWARM_ENV=prod\nSWARM_REMOTE_DIR=\n", encoding="utf-8")
    assert parse_dotenv_file(path) == {"SWARM_ENV": "prod", "SWARM_REMOTE_DIR": ""}


def test_read_dotenv_key_missing_file_returns_empty(tmp_path: Path):
    assert read_dotenv_key(dotenv_path=tmp_path / "missing.env", key="ANY_KEY") == ""


def test_validate_deploy_vars_accepts_example_file(repo_root: Path):
    validate_deploy_vars(parse_dotenv_file(repo_root / ".env.deploy.example"), context="example")


@pytest.mark.parametrize(
    "kv, fragment",
    [
        ({"SWARM_ENVIRONMENT": "prod"}, "Unknown key(s): SWARM_ENVIRONMENT"),
        ({"SWARM_COMMAND_TIMEOUT": "-5"}, "must be positive"),
        ({"SWARM_COMMAND_TIMEOUT": "soon"}, "must be a number"),
        ({"SWARM_PROBE_HTTPS": "maybe"}, "must be a boolean"),
    ],
)
def test_validate_deploy_vars_rejects_bad_values(kv, fragment):
    with pytest.raises(EnvValidationError) as exc:
        validate_deploy_vars(kv, context="deploy")
    assert fragment in str(exc.value)
