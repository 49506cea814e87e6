"""Unit tests for template expansion (stencil.engine.templates).

Tests cover:
- Content expansion (interpolation, conditionals, loops, filters)
- Error wrapping with source id and line number
- Destination path normalisation and safety
- Custom Jinja2 filters
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from stencil.engine.context import GenerationContext
from stencil.engine.templates import (
    TemplateExpander,
    _camel_case_filter,
    _pascal_case_filter,
    _slugify_filter,
    _snake_case_filter,
    normalise_destination,
    resolve_destination,
)
from stencil.errors import TemplateExpansionError, UnsafeDestinationPath

pytestmark = pytest.mark.unit


@pytest.fixture
def expander() -> TemplateExpander:
    return TemplateExpander()


@pytest.fixture
def ctx() -> GenerationContext:
    return GenerationContext(
        {"project_name": "my-svc", "database": "postgres", "tags": ["api", "grpc"], "port": 8080},
        {"has_database": True},
    )


# ---------------------------------------------------------------------------
# expand
# ---------------------------------------------------------------------------


class TestExpand:
    def test_interpolation(self, expander, ctx):
        assert expander.expand(b"name={{ project_name }}\n", ctx) == b"name=my-svc\n"

    def test_conditional_block(self, expander, ctx):
        template = b'{% if database != "" %}\nuses {{ database }}\n{% endif %}\n'
        assert expander.expand(template, ctx) == b"uses postgres\n"

    def test_loop_over_list(self, expander, ctx):
        template = b"{% for tag in tags %}\n- {{ tag }}\n{% endfor %}\n"
        assert expander.expand(template, ctx) == b"- api\n- grpc\n"

    def test_filters(self, expander, ctx):
        template = b"{{ project_name | pascal_case }} {{ project_name | snake_case }}"
        assert expander.expand(template, ctx) == b"MySvc my_svc"

    def test_trailing_newline_kept(self, expander, ctx):
        assert expander.expand(b"x\n\n", ctx) == b"x\n\n"

    def test_utf8_roundtrip(self, expander, ctx):
        assert expander.expand("café {{ port }}".encode("utf-8"), ctx) == "café 8080".encode("utf-8")

    def test_deterministic(self, expander, ctx):
        template = b"{% for t in tags %}{{ loop.index }}:{{ t }} {% endfor %}{{ port }}"
        outputs = {expander.expand(template, ctx) for _ in range(20)}
        assert len(outputs) == 1

    def test_no_random_filter_or_lipsum(self, expander, ctx):
        with pytest.raises(TemplateExpansionError):
            expander.expand(b"{{ tags | random }}", ctx)
        with pytest.raises(TemplateExpansionError):
            expander.expand(b"{{ lipsum() }}", ctx)

    def test_undefined_name(self, expander, ctx):
        with pytest.raises(TemplateExpansionError) as exc_info:
            expander.expand(b"line one\n{{ missing }}\n", ctx, source_id="main.go.j2")
        err = exc_info.value
        assert err.source_id == "main.go.j2"
        assert err.file == "main.go.j2"
        assert "missing" in err.reason
        assert err.lineno == 2

    def test_syntax_error_has_line(self, expander, ctx):
        with pytest.raises(TemplateExpansionError) as exc_info:
            expander.expand(b"ok\nok\n{% if %}\n", ctx, source_id="bad.j2")
        assert exc_info.value.lineno == 3
        assert "bad.j2:3" in str(exc_info.value)

    def test_invalid_utf8(self, expander, ctx):
        with pytest.raises(TemplateExpansionError, match="UTF-8"):
            expander.expand(b"\xff\xfe", ctx)

    def test_sandbox_blocks_attribute_escape(self, expander, ctx):
        with pytest.raises(TemplateExpansionError):
            expander.expand(b"{{ project_name.__class__.__mro__[1].__subclasses__() }}", ctx)


# ---------------------------------------------------------------------------
# expand_path / normalise_destination
# ---------------------------------------------------------------------------


class TestExpandPath:
    def test_expands_and_normalises(self, expander, ctx):
        assert expander.expand_path("cmd/{{ project_name }}/./main.go", ctx) == "cmd/my-svc/main.go"

    def test_backslashes_become_separators(self, expander, ctx):
        assert expander.expand_path("internal\\db\\db.go", ctx) == "internal/db/db.go"

    @pytest.mark.parametrize(
        "template",
        ["../../etc/passwd", "/etc/passwd", "C:/Windows/x", "a/../../b", "", "{{ '' }}", "./"],
    )
    def test_unsafe_paths_rejected(self, expander, ctx, template):
        with pytest.raises(UnsafeDestinationPath):
            expander.expand_path(template, ctx)

    def test_value_injecting_traversal_rejected(self, expander):
        evil = GenerationContext({"name": "../../outside"})
        with pytest.raises(UnsafeDestinationPath):
            expander.expand_path("{{ name }}/main.go", evil)

    def test_render_error_uses_source_id(self, expander, ctx):
        with pytest.raises(TemplateExpansionError) as exc_info:
            expander.expand_path("{{ nope }}/x", ctx, source_id="x.j2")
        assert exc_info.value.file == "x.j2"

    def test_normalise_collapses_empty_segments(self):
        assert normalise_destination("a//b/./c") == "a/b/c"

    @pytest.mark.parametrize("value", ["a\x00b", "a\tb", "a\nb", "a\x7fb"])
    def test_control_characters_rejected(self, expander, value):
        with pytest.raises(UnsafeDestinationPath, match="control character"):
            expander.expand_path("{{ name }}.txt", GenerationContext({"name": value}))


# ---------------------------------------------------------------------------
# resolve_destination
# ---------------------------------------------------------------------------


class TestResolveDestination:
    def test_inside_root(self, tmp_path: Path):
        assert resolve_destination(tmp_path, "a/b.txt") == tmp_path.resolve() / "a" / "b.txt"

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlink_escape_rejected(self, tmp_path: Path):
        root = tmp_path / "root"
        outside = tmp_path / "outside"
        root.mkdir()
        outside.mkdir()
        (root / "link").symlink_to(outside, target_is_directory=True)
        with pytest.raises(UnsafeDestinationPath):
            resolve_destination(root, "link/file.txt")


# ---------------------------------------------------------------------------
# Custom filters
# ---------------------------------------------------------------------------


class TestFilters:
    @pytest.mark.parametrize(
        "value, expected",
        [("My Project!", "my-project"), ("  spaced  out ", "spaced-out"), ("a__b", "a-b")],
    )
    def test_slugify(self, value, expected):
        assert _slugify_filter(value) == expected

    def test_pascal_case(self):
        assert _pascal_case_filter("user-profile_page") == "UserProfilePage"

    def test_snake_case(self):
        assert _snake_case_filter("UserProfile") == "user_profile"
        assert _snake_case_filter("user-profile") == "user_profile"

    def test_camel_case(self):
        assert _camel_case_filter("user_profile") == "userProfile"
        assert _camel_case_filter("") == ""
