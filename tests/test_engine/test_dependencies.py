"""Unit tests for dependency merging (stencil.engine.dependencies)."""

from __future__ import annotations

import json

import pytest
import yaml

from stencil.blueprint.models import Dependency
from stencil.engine.dependencies import build_manifest, merge_dependencies, render_manifest
from stencil.errors import DependencyConflict

pytestmark = pytest.mark.unit


def dep(module: str, version: str = "", condition: str = "") -> Dependency:
    return Dependency(module=module, version=version, condition=condition)


# ---------------------------------------------------------------------------
# merge_dependencies
# ---------------------------------------------------------------------------


class TestMergeDependencies:
    def test_sorted_by_module(self):
        merged = merge_dependencies([dep("zeta"), dep("alpha"), dep("mid")])
        assert [d.module for d in merged] == ["alpha", "mid", "zeta"]

    def test_idempotent(self):
        once = merge_dependencies([dep("github.com/gin-gonic/gin", "^1.9.0"), dep("github.com/lib/pq", "1.10.9")])
        assert merge_dependencies(once) == once
        assert merge_dependencies(once, once) == once

    def test_identical_declarations_collapse(self):
        merged = merge_dependencies([dep("m", "^1.2.0")], [dep("m", "^1.2.0")])
        assert merged == [dep("m", "^1.2.0")]

    def test_narrower_wins_either_order(self):
        wide, narrow = dep("m", ">=1.0"), dep("m", "^1.4.0")
        assert merge_dependencies([wide, narrow]) == [narrow]
        assert merge_dependencies([narrow, wide]) == [narrow]

    def test_any_version_yields_to_specific(self):
        assert merge_dependencies([dep("m"), dep("m", "1.2.3")]) == [dep("m", "1.2.3")]

    def test_equivalent_spellings_pick_stable_text(self):
        a = merge_dependencies([dep("m", "v1.2.3"), dep("m", "1.2.3")])
        b = merge_dependencies([dep("m", "1.2.3"), dep("m", "v1.2.3")])
        assert a == b == [dep("m", "1.2.3")]

    def test_disjoint_constraints_conflict(self):
        with pytest.raises(DependencyConflict) as exc_info:
            merge_dependencies([dep("m", "^1.0.0"), dep("m", "^2.0.0")])
        err = exc_info.value
        assert err.module == "m"
        assert err.constraints == ("^1.0.0", "^2.0.0")

    def test_overlapping_not_nested_conflict(self):
        with pytest.raises(DependencyConflict):
            merge_dependencies([dep("m", ">=1.0, <2.0"), dep("m", ">=1.5, <3.0")])

    def test_conditions_are_dropped(self):
        merged = merge_dependencies([dep("m", "1.0.0", condition="db")])
        assert merged[0].condition == ""

    def test_malformed_constraint(self):
        with pytest.raises(ValueError):
            merge_dependencies([dep("m", "not-a-version")])

    def test_empty(self):
        assert merge_dependencies() == []
        assert merge_dependencies([]) == []


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class TestManifest:
    def test_build_manifest(self):
        manifest = build_manifest(
            "go-web", [dep("a", "1.0.0")], blueprint_version="2.0", variables={"x": 1}
        )
        assert manifest == {
            "blueprint": "go-web",
            "blueprint_version": "2.0",
            "dependencies": [{"module": "a", "version": "1.0.0"}],
            "variables": {"x": 1},
        }

    def test_json_is_deterministic(self):
        manifest = build_manifest("bp", [dep("a", "1.0.0")], variables={"b": 1, "a": 2})
        first = render_manifest(manifest)
        assert first == render_manifest(dict(reversed(list(manifest.items()))))
        assert first.endswith(b"\n")
        assert json.loads(first)["dependencies"][0]["module"] == "a"

    def test_yaml_format(self):
        manifest = build_manifest("bp", [dep("a", "^1.0.0")], variables={"tags": ["x"]})
        data = yaml.safe_load(render_manifest(manifest, "yaml"))
        assert data["dependencies"] == [{"module": "a", "version": "^1.0.0"}]
        assert data["variables"]["tags"] == ["x"]

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            render_manifest({}, "toml")
