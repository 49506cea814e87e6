"""Integration tests for the load-then-generate flow.

These tests build a blueprint directory on disk (``blueprint.yaml`` plus a
``files/`` template tree), load it through :meth:`Catalog.from_directory`,
generate real projects and run real post-generation hooks.

No external services are required; hooks use the running interpreter.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest
import yaml

from stencil import Catalog, EngineConfig, Generator, HookStatus
from stencil.errors import TemplateExpansionError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_blueprint(root: Path, descriptor: dict[str, Any], templates: dict[str, str]) -> Path:
    """Lay out ``<root>/<id>/blueprint.yaml`` and its ``files/`` directory."""
    directory = root / descriptor["id"]
    (directory / "files").mkdir(parents=True)
    descriptor = {k: v for k, v in descriptor.items() if k != "id"}
    (directory / "blueprint.yaml").write_text(yaml.safe_dump(descriptor, sort_keys=False), encoding="utf-8")
    for name, content in templates.items():
        path = directory / "files" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return directory


def _service_descriptor(hooks: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "id": "py-service",
        "name": "Python service",
        "version": "0.3.0",
        "variables": [
            {"name": "project_name", "required": True},
            {"name": "with_cli", "type": "bool", "default": False},
        ],
        "files": [
            {"source": "pyproject.toml.j2"},
            {"source": "src/__init__.py.j2",
             "destination": "src/{{ project_name | snake_case }}/__init__.py"},
            {"source": "src/cli.py.j2",
             "destination": "src/{{ project_name | snake_case }}/cli.py",
             "condition": "with_cli"},
        ],
        "dependencies": [
            {"module": "click", "version": ">=8.0", "condition": "with_cli"},
            {"module": "pydantic", "version": "^2.5.0"},
        ],
        "post_hooks": hooks,
    }


_SERVICE_TEMPLATES = {
    "pyproject.toml.j2": '[project]\nname = "{{ project_name | slugify }}"\n',
    "src/__init__.py.j2": '"""{{ project_name }}."""\n',
    "src/cli.py.j2": "def main():\n    print({{ project_name | tojson }})\n",
}


def _tree(root: Path) -> list[str]:
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestGenerateFromDirectory:
    """End-to-end: descriptor on disk, templates on disk, real hooks."""

    @pytest.mark.asyncio
    async def test_generate_with_hook(self, tmp_path: Path):
        hook = {
            "name": "list-files",
            "command": sys.executable,
            "args": ["-c", "import os; names = sorted(os.listdir('.')); open('FILES.txt', 'w').write('\\n'.join(names))"],
        }
        _write_blueprint(tmp_path / "blueprints", _service_descriptor([hook]), _SERVICE_TEMPLATES)
        catalog = Catalog.from_directory(tmp_path / "blueprints")
        assert catalog.ids() == ["py-service"]

        out = tmp_path / "data-pipeline"
        result = await Generator(catalog).generate(
            "py-service", {"project_name": "data-pipeline", "with_cli": "yes"}, out
        )

        assert _tree(out) == [
            "FILES.txt",
            "pyproject.toml",
            "src/data_pipeline/__init__.py",
            "src/data_pipeline/cli.py",
            "stencil.lock.json",
        ]
        assert (out / "pyproject.toml").read_text(encoding="utf-8") == '[project]\nname = "data-pipeline"\n'
        assert (out / "src" / "data_pipeline" / "cli.py").read_text(encoding="utf-8") == (
            'def main():\n    print("data-pipeline")\n'
        )
        # The hook ran after the files and the manifest were written.
        listed = (out / "FILES.txt").read_text(encoding="utf-8").split("\n")
        assert listed == ["pyproject.toml", "src", "stencil.lock.json"]

        manifest = json.loads((out / "stencil.lock.json").read_text(encoding="utf-8"))
        assert manifest["blueprint"] == "py-service"
        assert manifest["blueprint_version"] == "0.3.0"
        assert [d["module"] for d in manifest["dependencies"]] == ["click", "pydantic"]
        assert manifest["variables"] == {"project_name": "data-pipeline", "with_cli": True}

        assert [h.name for h in result.hook_results] == ["list-files"]
        assert result.failed_hooks == []

    @pytest.mark.asyncio
    async def test_failing_hook_keeps_tree(self, tmp_path: Path):
        hooks = [
            {"name": "always-fails", "command": sys.executable,
             "args": ["-c", "import sys; sys.stderr.write('nope'); sys.exit(3)"]},
        ]
        _write_blueprint(tmp_path / "blueprints", _service_descriptor(hooks), _SERVICE_TEMPLATES)
        generator = Generator(Catalog.from_directory(tmp_path / "blueprints"), config=EngineConfig(hook_timeout=30))

        out = tmp_path / "svc"
        result = await generator.generate("py-service", {"project_name": "svc"}, out)

        assert len(result.failed_hooks) == 1
        failed = result.failed_hooks[0]
        assert failed.status is HookStatus.FAILED
        assert failed.returncode == 3
        assert "nope" in failed.output
        assert _tree(out) == ["pyproject.toml", "src/svc/__init__.py", "stencil.lock.json"]

    @pytest.mark.asyncio
    async def test_broken_template_on_disk_leaves_nothing(self, tmp_path: Path):
        templates = dict(_SERVICE_TEMPLATES)
        templates["src/__init__.py.j2"] = '"""{{ project_name | no_such_filter }}."""\n'
        _write_blueprint(tmp_path / "blueprints", _service_descriptor([]), templates)
        generator = Generator(Catalog.from_directory(tmp_path / "blueprints"))

        out = tmp_path / "out" / "svc"
        with pytest.raises(TemplateExpansionError) as exc_info:
            await generator.generate("py-service", {"project_name": "svc"}, out)
        assert exc_info.value.file == "src/__init__.py.j2"
        assert exc_info.value.lineno == 1
        assert not (tmp_path / "out").exists()

    @pytest.mark.asyncio
    async def test_preview_matches_generated_tree(self, tmp_path: Path):
        _write_blueprint(tmp_path / "blueprints", _service_descriptor([]), _SERVICE_TEMPLATES)
        generator = Generator(Catalog.from_directory(tmp_path / "blueprints"))
        values = {"project_name": "svc", "with_cli": True}

        planned = generator.preview("py-service", values)
        out = tmp_path / "svc"
        await generator.generate("py-service", values, out)

        assert sorted([p.destination for p in planned] + ["stencil.lock.json"]) == _tree(out)
