from __future__ import annotations

import ast
from pathlib import Path


def _iter_py_files() -> list[Path]:
    package_dir = Path(__file__).parents[2] / "swarm_deploy"
    return sorted(p for p in package_dir.glob("*.py") if p.is_file())


def _is_os_attr(node: ast.AST, attr: str) -> bool:
    return (
        isinstance(node, ast.Attribute)
        and node.attr == attr
        and isinstance(node.value, ast.Name)
        and node.value.id == "os"
    )


def _literal(node: ast.AST | None) -> str | None:
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    return None


def test_env_keys_are_only_read_through_enums() -> None:
    offenders: list[str] = []

    for path in _iter_py_files():
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))

        for node in ast.walk(tree):
            if isinstance(node, ast.Call) and node.args:
                key = _literal(node.args[0])
                # os.getenv("X") / os.environ.get("X")
                if key and _is_os_attr(node.func, "getenv"):
                    offenders.append(f"{path.name}: os.getenv({key!r})")
                if (
                    key
                    and isinstance(node.func, ast.Attribute)
                    and node.func.attr == "get"
                    and _is_os_attr(node.func.value, "environ")
                ):
                    offenders.append(f"{path.name}: os.environ.get({key!r})")

            if isinstance(node, ast.Subscript) and _is_os_attr(node.value, "environ"):
                key = _literal(node.slice)
                if key:
                    offenders.append(f"{path.name}: os.environ[{key!r}]")

    assert not offenders, "Literal env key access found:\n" + "\n".join(offenders)


def test_scanner_sees_the_package() -> None:
    names = {p.name for p in _iter_py_files()}
    assert {"deploy.py", "env_schema.py", "secret_provider.py"} <= names
