"""Shared pytest fixtures for the Stencil test suite.

Provides reusable fixtures for:
- Sample blueprints (the Go web service used throughout the docs)
- In-memory template sources
- Frozen catalogs and generators wired to them
- Output roots under ``tmp_path``
"""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Any

import pytest

from stencil.blueprint import Blueprint, Catalog, MemorySource
from stencil.config import EngineConfig
from stencil.engine import Generator


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------


@pytest.fixture
def output_root(tmp_path: Path) -> Path:
    """A not-yet-existing directory to generate into."""
    return tmp_path / "out" / "project"


# ---------------------------------------------------------------------------
# Sample blueprint
# ---------------------------------------------------------------------------


GO_WEB_TEMPLATES: dict[str, str] = {
    "main.go.j2": textwrap.dedent(
        """\
        package main

        // {{ project_name }} uses {{ framework }}.
        {% if database != "" %}
        import "{{ module_path }}/internal/db"
        {% endif %}

        func main() {
        {% if has_database %}
        	db.Connect()
        {% endif %}
        }
        """
    ),
    "db.go.j2": textwrap.dedent(
        """\
        package db

        // Driver: {{ database }}
        func Connect() {}
        """
    ),
    "README.md.j2": "# {{ project_name | pascal_case }}\n",
    "scripts/run.sh": "#!/bin/sh\nexec ./{{ project_name | slugify }}\n",
}


def go_web_descriptor() -> dict[str, Any]:
    """Raw descriptor for the Go web service blueprint."""
    return {
        "id": "go-web",
        "name": "Go web service",
        "version": "1.0.0",
        "variables": [
            {"name": "project_name", "type": "string", "required": True,
             "validation": r"[a-z][a-z0-9-]*"},
            {"name": "module_path", "type": "string", "default": "example.com/app"},
            {"name": "framework", "type": "enum", "choices": ["gin", "echo", "chi"],
             "default": "gin"},
            {"name": "database", "type": "enum", "choices": ["", "postgres", "mysql"],
             "default": ""},
            {"name": "tags", "type": "list", "default": []},
        ],
        "features": [
            {"name": "has_database", "enabled_when": 'database != ""'},
        ],
        "files": [
            {"source": "main.go.j2", "destination": "cmd/{{ project_name }}/main.go"},
            {"source": "db.go.j2", "destination": "internal/db/db.go", "condition": "has_database"},
            {"source": "README.md.j2"},
            {"source": "scripts/run.sh", "executable": True},
        ],
        "dependencies": [
            {"module": "github.com/gin-gonic/gin", "version": "^1.9.0",
             "condition": 'framework == "gin"'},
            {"module": "github.com/labstack/echo/v4", "version": "^4.11.0",
             "condition": 'framework == "echo"'},
            {"module": "github.com/lib/pq", "version": ">=1.10.0",
             "condition": 'database == "postgres"'},
        ],
    }


@pytest.fixture
def go_web_data() -> dict[str, Any]:
    return go_web_descriptor()


@pytest.fixture
def go_web_blueprint() -> Blueprint:
    return Blueprint.model_validate(go_web_descriptor())


@pytest.fixture
def go_web_source() -> MemorySource:
    return MemorySource(GO_WEB_TEMPLATES)


@pytest.fixture
def catalog(go_web_source: MemorySource) -> Catalog:
    """A frozen catalog holding the Go web service blueprint."""
    catalog = Catalog()
    catalog.register(go_web_descriptor(), go_web_source)
    catalog.freeze()
    return catalog


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(hook_timeout=30, max_workers=4)


@pytest.fixture
def generator(catalog: Catalog, engine_config: EngineConfig) -> Generator:
    return Generator(catalog, config=engine_config)


# ---------------------------------------------------------------------------
# Subprocess helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def python_exe() -> str:
    """The running interpreter, for hooks that need a portable command."""
    return sys.executable
