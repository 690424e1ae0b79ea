import shutil
from pathlib import Path

import pytest

from swarm_deploy.validate_env import main


@pytest.fixture
def tmp_repo(tmp_path: Path, config_dir: Path) -> Path:
    shutil.copytree(config_dir, tmp_path / "config" / "environments")
    return tmp_path


def _edit_prod(repo: Path, old: str, new: str) -> None:
    prod = repo / "config" / "environments" / "prod.yml"
    prod.write_text(prod.read_text(encoding="utf-8").replace(old, new), encoding="utf-8")


def test_validate_all_shipped_environments(tmp_repo, capsys):
    assert main([], repo_root_override=tmp_repo) == 0
    out = capsys.readouterr().out
    assert "[env] dev: ok" in out
    assert "[env] prod: ok" in out
    assert out.rstrip().endswith("[env] ok")


@pytest.mark.parametrize(
    "old, new, expected",
    [
        ("verbose: false\n", "verbose: false\nbogus: 1\n", "bogus"),
        ("controller_port: 3001\n", "controller_port: 443\n", "must differ"),
        ("public_path: /swarm\n", "public_path: /\n", "public_path"),
    ],
)
def test_validate_reports_schema_problems(tmp_repo, capsys, old, new, expected):
    _edit_prod(tmp_repo, old, new)
    with pytest.raises(SystemExit) as exc:
        main(["--env", "prod"], repo_root_override=tmp_repo)
    assert exc.value.code == 2
    assert expected in capsys.readouterr().err


def test_validate_missing_file(tmp_repo, capsys):
    (tmp_repo / "config" / "environments" / "dev.yml").unlink()
    with pytest.raises(SystemExit):
        main(["--env", "dev"], repo_root_override=tmp_repo)
    assert "No parameter file" in capsys.readouterr().err


def test_check_secrets(tmp_repo, monkeypatch, capsys):
    monkeypatch.setenv("SWARM_DEV_API_KEY", "k1")
    monkeypatch.setenv("SWARM_DEV_HOST_ADDRESS", "dev.example.com")
    with pytest.raises(SystemExit):
        main(["--env", "dev", "--check-secrets"], repo_root_override=tmp_repo)
    assert "host_credential" in capsys.readouterr().err

    (tmp_repo / ".env.deploy.dev.secrets").write_text("SWARM_DEV_HOST_CREDENTIAL=pw\n", encoding="utf-8")
    assert main(["--env", "dev", "--check-secrets"], repo_root_override=tmp_repo) == 0


def test_unknown_deploy_knob_fails_validation(tmp_repo, capsys):
    (tmp_repo / ".env.deploy").write_text("SWARM_ENV=prod\nSWARM_REMOTE_DIRECTORY=/srv\n", encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main([], repo_root_override=tmp_repo)
    assert exc.value.code == 2
    err = capsys.readouterr().err
    assert "deploy (.env.deploy)" in err
    assert "SWARM_REMOTE_DIRECTORY" in err
