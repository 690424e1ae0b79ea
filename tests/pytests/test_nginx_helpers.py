import pytest

from swarm_deploy.nginx_helpers import Block, Comment, Directive, find_directives, render_config


def test_render_nested_blocks_with_indentation():
    out = render_config(
        [
            Block("events", children=[Directive("worker_connections", 1024)]),
            Comment("tail"),
            Directive("include", "/etc/nginx/endpoints.conf"),
        ]
    )
    assert out == (
        "events {\n"
        "    worker_connections 1024;\n"
        "}\n"
        "# tail\n"
        "include /etc/nginx/endpoints.conf;\n"
    )


@pytest.mark.parametrize("bad", [None, "", "  ", "a;b", "x{", "line\nbreak", "/my app/", "tab\there"])
def test_invalid_arguments_fail_at_construction(bad):
    with pytest.raises(ValueError):
        Directive("server_name", bad)


def test_find_directives_searches_nested_blocks():
    tree = [Block("http", children=[Block("server", children=[Directive("listen", 443, "ssl")])])]
    found = find_directives(tree, "listen")
    assert found == [Directive("listen", 443, "ssl")]
    assert found[0].args == ("443", "ssl")
