#!/usr/bin/env python3
"""Tests for import extraction, resolution and the dependency maps."""

import pytest

from projectmap.dependencies import (
    DependencyGraph,
    detect_language,
    extract_go_imports,
    extract_js_ts_imports,
    extract_python_imports,
    extract_rust_imports,
    module_for,
)

from conftest import write_files

SAMPLE_PATHS = [
    "README.md",
    "src/app.py",
    "src/util.py",
    "src/web/index.js",
    "src/web/view.js",
    "tests/test_app.py",
]


def sources(imports):
    return [entry["source"] for entry in imports]


class TestExtractors:
    """Tests for per-language import extraction."""

    def test_python(self):
        content = "import os, sys\nfrom .models import User, Post\nfrom .. import shared\n"
        imports = extract_python_imports(content)
        assert sources(imports) == ["os", "sys", ".models", ".."]
        assert imports[2]["symbols"] == ["User", "Post"]
        assert imports[3]["symbols"] == ["shared"]

    def test_python_syntax_error(self):
        assert extract_python_imports("def broken(:\n") == []

    def test_javascript(self):
        content = (
            "import React, { useState as useS } from 'react';\n"
            "import * as utils from './utils';\n"
            "import './styles.css';\n"
            "export { helper } from './helper';\n"
            "const { readFile } = require('fs');\n"
            "const lazy = import('./lazy');\n"
        )
        imports = {entry["source"]: entry["symbols"] for entry in extract_js_ts_imports(content)}
        assert imports["react"] == ["useState", "React"]
        assert imports["./utils"] == ["*"]
        assert imports["./styles.css"] == []
        assert imports["./helper"] == ["helper"]
        assert imports["fs"] == ["readFile"]
        assert imports["./lazy"] == []

    def test_go(self):
        content = 'package main\n\nimport "fmt"\n\nimport (\n\t"os"\n\tlog "github.com/acme/log"\n)\n'
        assert sources(extract_go_imports(content)) == ["fmt", "os", "github.com/acme/log"]

    def test_rust(self):
        content = "mod db;\nuse std::io;\nuse crate::db::models::{User, Post};\n"
        imports = {entry["source"]: entry["symbols"] for entry in extract_rust_imports(content)}
        assert imports == {
            "std::io": [],
            "crate::db::models": ["User", "Post"],
            "self::db": [],
        }

    @pytest.mark.parametrize(
        "path,language",
        [
            ("a.py", "python"),
            ("a.tsx", "typescript"),
            ("a.mjs", "javascript"),
            ("main.go", "go"),
            ("lib.rs", "rust"),
            ("README.md", ""),
        ],
    )
    def test_detect_language(self, path, language):
        assert detect_language(path) == language


class TestModuleFor:
    """Tests for module grouping."""

    @pytest.mark.parametrize(
        "path,module",
        [
            ("setup.py", "(root)"),
            ("docs/index.md", "docs"),
            ("src/app.py", "src"),
            ("src/api/routes.py", "src/api"),
            ("packages/core/lib/x.ts", "packages/core"),
        ],
    )
    def test_module_for(self, path, module):
        assert module_for(path) == module


class TestDependencyGraph:
    """Tests for resolution and the derived maps."""

    def test_forward_map(self, sample_project):
        forward = DependencyGraph(sample_project).build(SAMPLE_PATHS).forward_map()

        assert list(forward) == ["src/app.py", "src/web/index.js", "tests/test_app.py"]
        assert forward["src/app.py"]["imports"] == [
            {"source": ".util", "resolved": "src/util.py", "type": "internal", "symbols": ["helper"]},
            {"source": "os", "resolved": None, "type": "external", "symbols": []},
        ]
        web = {i["source"]: i for i in forward["src/web/index.js"]["imports"]}
        assert web["./view"]["resolved"] == "src/web/view.js"
        assert web["react"]["type"] == "external"
        assert forward["tests/test_app.py"]["imports"][0]["resolved"] == "src/app.py"

    def test_reverse_map(self, sample_project):
        reverse = DependencyGraph(sample_project).build(SAMPLE_PATHS).reverse_map()
        assert reverse == {
            "src/app.py": {"imported_by": [{"file": "tests/test_app.py", "symbols": ["helper"]}]},
            "src/util.py": {"imported_by": [{"file": "src/app.py", "symbols": ["helper"]}]},
            "src/web/view.js": {"imported_by": [{"file": "src/web/index.js", "symbols": ["render"]}]},
        }

    def test_unresolved_relative_import(self, tmp_path):
        write_files(tmp_path, {"a.js": "import x from './missing';\n"})
        forward = DependencyGraph(tmp_path).build(["a.js"]).forward_map()
        assert forward["a.js"]["imports"][0]["type"] == "unresolved"

    def test_rust_resolution(self, tmp_path):
        write_files(
            tmp_path,
            {
                "src/main.rs": "mod db;\nuse crate::db::models::{User};\n",
                "src/db/mod.rs": "pub mod models;\n",
                "src/db/models.rs": "pub struct User;\n",
            },
        )
        graph = DependencyGraph(tmp_path).build(["src/main.rs", "src/db/mod.rs", "src/db/models.rs"])
        resolved = {i["source"]: i["resolved"] for i in graph.forward_map()["src/main.rs"]["imports"]}
        assert resolved == {"crate::db::models": "src/db/models.rs", "self::db": "src/db/mod.rs"}

    def test_go_module_prefix(self, tmp_path):
        write_files(
            tmp_path,
            {
                "go.mod": "module github.com/acme/app\n\ngo 1.21\n",
                "main.go": 'package main\n\nimport "github.com/acme/app/internal/store"\n',
                "internal/store/store.go": "package store\n",
            },
        )
        graph = DependencyGraph(tmp_path)
        assert graph.module_name == "github.com/acme/app"
        graph.build(["main.go", "internal/store/store.go"])
        # Directory imports name a package, not a file
        imports = graph.forward_map()["main.go"]["imports"]
        assert imports[0]["source"] == "github.com/acme/app/internal/store"

    def test_ambiguous_suffix_is_unresolved(self, tmp_path):
        write_files(
            tmp_path,
            {
                "main.py": "import config\n",
                "a/config.py": "",
                "b/config.py": "",
            },
        )
        graph = DependencyGraph(tmp_path).build(["main.py", "a/config.py", "b/config.py"])
        assert graph.forward_map()["main.py"]["imports"][0]["resolved"] is None

    def test_modules_map(self, sample_project):
        graph = DependencyGraph(sample_project).build(SAMPLE_PATHS)
        files = [{"path": p, "size": 10, "lines": 2} for p in SAMPLE_PATHS]
        modules = graph.modules_map(files)

        assert list(modules) == ["(root)", "src", "src/web", "tests"]
        assert modules["src"]["files"] == ["src/app.py", "src/util.py"]
        assert modules["src"]["stats"] == {"file_count": 2, "total_size": 20, "total_lines": 4}
        assert modules["tests"]["dependencies"] == ["src"]
        assert modules["src"]["dependencies"] == []

    def test_from_forward_map_matches_build(self, sample_project):
        built = DependencyGraph(sample_project).build(SAMPLE_PATHS)
        rebuilt = DependencyGraph.from_forward_map(sample_project, SAMPLE_PATHS, built.forward_map())
        assert rebuilt.forward_map() == built.forward_map()
        assert rebuilt.reverse_map() == built.reverse_map()

    def test_update_and_remove_file(self, sample_project):
        graph = DependencyGraph(sample_project).build(SAMPLE_PATHS)

        write_files(sample_project, {"src/extra.py": "from .util import helper\n"})
        graph.update_file("src/extra.py")
        graph.resolve_all()
        importers = [i["file"] for i in graph.reverse_map()["src/util.py"]["imported_by"]]
        assert importers == ["src/app.py", "src/extra.py"]

        graph.remove_file("src/util.py")
        graph.resolve_all()
        assert "src/util.py" not in graph.reverse_map()
        assert graph.forward_map()["src/app.py"]["imports"][0]["type"] == "unresolved"
