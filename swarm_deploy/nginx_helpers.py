"""Tiny typed directive tree for generating nginx configuration.

Building the config from nodes instead of string templates means a missing
value fails when the node is constructed, not as a literal `None` in the file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

INDENT = "    "


def _check_arg(name: str, arg: object) -> str:
    if arg is None:
        raise ValueError(f"nginx directive '{name}' has a missing argument")
    text = str(arg)
    if not text.strip():
        raise ValueError(f"nginx directive '{name}' has an empty argument")
    if any(c in text for c in ";{}\n"):
        raise ValueError(f"nginx directive '{name}' argument contains a control character: {text!r}")
    # nginx splits unquoted arguments on whitespace.
    if any(c.isspace() for c in text):
        raise ValueError(f"nginx directive '{name}' argument contains whitespace: {text!r}")
    return text


@dataclass(frozen=True)
class Directive:
    name: str
    args: tuple[str, ...] = ()

    def __init__(self, name: str, *args: object):
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "args", tuple(_check_arg(name, a) for a in args))

    def render(self, depth: int = 0) -> list[str]:
        parts = " ".join((self.name, *self.args))
        return [f"{INDENT * depth}{parts};"]


@dataclass(frozen=True)
class Block:
    name: str
    args: tuple[str, ...] = ()
    children: tuple["Node", ...] = field(default_factory=tuple)

    def __init__(self, name: str, *args: object, children: list["Node"] | tuple["Node", ...] = ()):
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "args", tuple(_check_arg(name, a) for a in args))
        object.__setattr__(self, "children", tuple(children))

    def render(self, depth: int = 0) -> list[str]:
        head = " ".join((self.name, *self.args))
        lines = [f"{INDENT * depth}{head} {{"]
        for child in self.children:
            lines.extend(child.render(depth + 1))
        lines.append(f"{INDENT * depth}}}")
        return lines


@dataclass(frozen=True)
class Comment:
    text: str

    def render(self, depth: int = 0) -> list[str]:
        return [f"{INDENT * depth}# {self.text}"]


Node = Union[Directive, Block, Comment]


def render_config(nodes: list[Node]) -> str:
    lines: list[str] = []
    for node in nodes:
        lines.extend(node.render(0))
    return "\n".join(lines) + "\n"


def find_directives(nodes: list[Node] | tuple[Node, ...], name: str) -> list[Directive]:
    """Depth-first search for directives called `name`."""
    found: list[Directive] = []
    for node in nodes:
        if isinstance(node, Directive) and node.name == name:
            found.append(node)
        elif isinstance(node, Block):
            found.extend(find_directives(node.children, name))
    return found
