#!/usr/bin/env python3
"""Import extraction and resolution for the dependency maps.

Builds a directed graph where nodes are project files and edges are
resolved imports, then derives the forward, reverse and module-level
dependency maps from it.

Example:
    >>> graph = DependencyGraph('/my/project').build(['src/app.py', 'src/util.py'])
    >>> graph.forward_map()['src/app.py']['imports'][0]
    {'source': 'util', 'resolved': 'src/util.py', 'type': 'internal', 'symbols': ['helper']}
    >>> graph.reverse_map()['src/util.py']
    {'imported_by': [{'file': 'src/app.py', 'symbols': ['helper']}]}
"""

import ast
import json
import logging
import posixpath
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import networkx as nx

logger = logging.getLogger(__name__)

LANGUAGE_EXTENSIONS = {
    "python": [".py"],
    "javascript": [".js", ".jsx", ".mjs", ".cjs"],
    "typescript": [".ts", ".tsx"],
    "go": [".go"],
    "rust": [".rs"],
}

# Suffixes tried when matching an import against the file index
RESOLVE_SUFFIXES = [
    "",
    ".py",
    ".js",
    ".ts",
    ".tsx",
    ".jsx",
    ".mjs",
    ".go",
    ".rs",
    "/index.js",
    "/index.ts",
    "/index.tsx",
    "/__init__.py",
    "/mod.rs",
]

IMPORT_INTERNAL = "internal"
IMPORT_EXTERNAL = "external"
IMPORT_UNRESOLVED = "unresolved"

# Directories that group files into a second-level module
SOURCE_ROOTS = frozenset(["src", "lib", "app", "packages", "pkg", "internal", "cmd"])
ROOT_MODULE = "(root)"

_JS_IMPORT_FROM = re.compile(r"import\s+(?:type\s+)?([\w*{}\s,$]+?)\s+from\s+['\"]([^'\"]+)['\"]")
_JS_IMPORT_BARE = re.compile(r"import\s+['\"]([^'\"]+)['\"]")
_JS_EXPORT_FROM = re.compile(r"export\s+(?:type\s+)?([\w*{}\s,$]+?)\s+from\s+['\"]([^'\"]+)['\"]")
_JS_REQUIRE = re.compile(r"(?:(?:const|let|var)\s+([\w{}\s,$]+?)\s*=\s*)?require\s*\(\s*['\"]([^'\"]+)['\"]\s*\)")
_JS_DYNAMIC = re.compile(r"import\s*\(\s*['\"]([^'\"]+)['\"]\s*\)")
_GO_SINGLE = re.compile(r"^\s*import\s+(?:[\w.]+\s+)?\"([^\"]+)\"", re.MULTILINE)
_GO_BLOCK = re.compile(r"import\s*\((.*?)\)", re.DOTALL)
_RUST_USE = re.compile(r"^\s*(?:pub\s+)?use\s+((?:\w+::)*\w+)(?:::\{([^}]*)\})?", re.MULTILINE)
_RUST_MOD = re.compile(r"^\s*(?:pub\s+)?mod\s+(\w+)\s*;", re.MULTILINE)


def detect_language(path: str) -> str:
    ext = posixpath.splitext(path)[1].lower()
    for language, extensions in LANGUAGE_EXTENSIONS.items():
        if ext in extensions:
            return language
    return ""


def _js_symbols(clause: Optional[str]) -> List[str]:
    """Names bound by an import clause such as ``React, { useState as s }``."""
    if not clause:
        return []
    symbols = []
    clause = clause.strip()
    braced = re.search(r"\{([^}]*)\}", clause)
    if braced:
        for part in braced.group(1).split(","):
            name = part.strip().split(" as ")[0].strip()
            if name:
                symbols.append(name)
        clause = clause[: braced.start()] + clause[braced.end():]
    for part in clause.split(","):
        part = part.strip()
        if not part:
            continue
        if part.startswith("*"):
            symbols.append("*")
        else:
            symbols.append(part)
    return symbols


def extract_python_imports(content: str) -> List[Dict[str, Any]]:
    """Imports from Python source, parsed with ``ast``. Unparseable files yield nothing."""
    imports = []
    try:
        tree = ast.parse(content)
    except (SyntaxError, ValueError):
        return imports
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.append({"source": alias.name, "symbols": []})
        elif isinstance(node, ast.ImportFrom):
            source = "." * node.level + (node.module or "")
            imports.append({"source": source, "symbols": [alias.name for alias in node.names]})
    return imports


def extract_js_ts_imports(content: str) -> List[Dict[str, Any]]:
    imports = []
    for pattern in (_JS_IMPORT_FROM, _JS_EXPORT_FROM, _JS_REQUIRE):
        for clause, source in pattern.findall(content):
            imports.append({"source": source, "symbols": _js_symbols(clause)})
    for pattern in (_JS_IMPORT_BARE, _JS_DYNAMIC):
        for source in pattern.findall(content):
            imports.append({"source": source, "symbols": []})
    return imports


def extract_go_imports(content: str) -> List[Dict[str, Any]]:
    sources = _GO_SINGLE.findall(content)
    for block in _GO_BLOCK.findall(content):
        sources.extend(re.findall(r"\"([^\"]+)\"", block))
    return [{"source": s, "symbols": []} for s in sources]


def extract_rust_imports(content: str) -> List[Dict[str, Any]]:
    imports = []
    for path, group in _RUST_USE.findall(content):
        symbols = [s.strip() for s in group.split(",") if s.strip()] if group else []
        imports.append({"source": path.rstrip(":"), "symbols": symbols})
    for name in _RUST_MOD.findall(content):
        imports.append({"source": f"self::{name}", "symbols": []})
    return imports


EXTRACTORS = {
    "python": extract_python_imports,
    "javascript": extract_js_ts_imports,
    "typescript": extract_js_ts_imports,
    "go": extract_go_imports,
    "rust": extract_rust_imports,
}


def module_for(path: str) -> str:
    """Module name for a relative path: its top directory, or two levels under a source root.

    Example:
        >>> module_for('src/api/routes.py'), module_for('docs/index.md'), module_for('setup.py')
        ('src/api', 'docs', '(root)')
    """
    parts = path.split("/")
    if len(parts) == 1:
        return ROOT_MODULE
    if parts[0] in SOURCE_ROOTS and len(parts) > 2:
        return f"{parts[0]}/{parts[1]}"
    return parts[0]


class DependencyGraph:
    """File-level import graph of a project.

    Attributes:
        root: Absolute project root.
        graph: networkx DiGraph; an edge ``a -> b`` means ``a`` imports ``b``
            and carries the imported ``symbols``.
        imports: Import entries per analyzed file, in source order.
        module_name: Package name from go.mod, pyproject.toml or package.json.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.graph: nx.DiGraph = nx.DiGraph()
        self.imports: Dict[str, List[Dict[str, Any]]] = {}
        self.file_index: Dict[str, Dict[str, List[str]]] = {}
        self.module_name = self._detect_module_name()

    def build(self, files: Iterable[str]) -> "DependencyGraph":
        """Index ``files`` (relative POSIX paths) and analyze every source file among them.

        Returns:
            self, for method chaining.
        """
        self.set_files(files)
        self.imports = {}
        for path in sorted(self.graph.nodes):
            if detect_language(path):
                self.imports[path] = self.extract_imports(path)
        self.resolve_all()
        return self

    @classmethod
    def from_forward_map(
        cls, root: Union[str, Path], files: Iterable[str], forward: Dict[str, Any]
    ) -> "DependencyGraph":
        """Rebuild a graph from a stored forward map without reading any source file."""
        graph = cls(root)
        graph.set_files(files)
        graph.imports = {
            path: [{"source": i["source"], "symbols": list(i.get("symbols", []))} for i in entry.get("imports", [])]
            for path, entry in forward.items()
            if path in graph.graph
        }
        graph.resolve_all()
        return graph

    def _detect_module_name(self) -> str:
        go_mod = self.root / "go.mod"
        if go_mod.is_file():
            try:
                for line in go_mod.read_text(encoding="utf-8").splitlines():
                    if line.startswith("module "):
                        return line.split()[1]
            except (OSError, UnicodeDecodeError, IndexError):
                pass

        pyproject = self.root / "pyproject.toml"
        if pyproject.is_file():
            try:
                match = re.search(r'name\s*=\s*["\']([^"\']+)["\']', pyproject.read_text(encoding="utf-8"))
                if match:
                    return match.group(1)
            except (OSError, UnicodeDecodeError):
                pass

        package_json = self.root / "package.json"
        if package_json.is_file():
            try:
                return json.loads(package_json.read_text(encoding="utf-8")).get("name", "")
            except (OSError, UnicodeDecodeError, ValueError, AttributeError):
                pass

        return ""

    def set_files(self, files: Iterable[str]) -> None:
        """Replace the set of known files and rebuild the resolution index."""
        self.graph.clear()
        self.graph.add_nodes_from(files)
        self.file_index = {"exact": {}, "no_ext": {}, "suffix": {}}
        for path in self.graph.nodes:
            self._index(path)

    def _index(self, path: str) -> None:
        self._add_to_index("exact", path, path)
        self._add_to_index("no_ext", posixpath.splitext(path)[0], path)
        # "src/core/config.py" is also reachable as "core/config.py" and "config.py"
        parts = path.split("/")
        for i in range(1, len(parts)):
            suffix = "/".join(parts[i:])
            self._add_to_index("suffix", suffix, path)
            self._add_to_index("suffix", posixpath.splitext(suffix)[0], path)

    def _add_to_index(self, index_type: str, key: str, path: str) -> None:
        bucket = self.file_index[index_type].setdefault(key, [])
        if path not in bucket:
            bucket.append(path)

    def extract_imports(self, rel_path: str) -> List[Dict[str, Any]]:
        """Read one file and return its deduplicated ``{source, symbols}`` imports.

        Unreadable files are logged at debug level and yield no imports.
        """
        extractor = EXTRACTORS.get(detect_language(rel_path))
        if extractor is None:
            return []
        try:
            content = (self.root / rel_path).read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            logger.debug("Cannot read %s for imports: %s", rel_path, e)
            return []

        merged: Dict[str, Dict[str, Any]] = {}
        for entry in extractor(content):
            existing = merged.setdefault(entry["source"], {"source": entry["source"], "symbols": []})
            for symbol in entry["symbols"]:
                if symbol not in existing["symbols"]:
                    existing["symbols"].append(symbol)
        return list(merged.values())

    def update_file(self, rel_path: str) -> None:
        """Add or re-analyze one file. Call resolve_all() afterwards."""
        if rel_path not in self.graph:
            self.graph.add_node(rel_path)
            self._index(rel_path)
        if detect_language(rel_path):
            self.imports[rel_path] = self.extract_imports(rel_path)
        else:
            self.imports.pop(rel_path, None)

    def remove_file(self, rel_path: str) -> None:
        """Forget one file. Call resolve_all() afterwards."""
        self.imports.pop(rel_path, None)
        if rel_path in self.graph:
            files = [p for p in self.graph.nodes if p != rel_path]
            imports = self.imports
            self.set_files(files)
            self.imports = imports

    def resolve_all(self) -> None:
        """Resolve every import against the current index and rebuild the edges."""
        self.graph.remove_edges_from(list(self.graph.edges))
        for path, entries in self.imports.items():
            language = detect_language(path)
            for entry in entries:
                resolved = self.resolve_import(entry["source"], path, language)
                entry["resolved"] = resolved
                if resolved:
                    entry["type"] = IMPORT_INTERNAL
                elif entry["source"].startswith("."):
                    entry["type"] = IMPORT_UNRESOLVED
                else:
                    entry["type"] = IMPORT_EXTERNAL
                if resolved and resolved != path:
                    self.graph.add_edge(path, resolved, symbols=entry["symbols"])

    def resolve_import(self, source: str, from_file: str, language: str) -> Optional[str]:
        """Resolve an import string to a single project file, or None.

        Strategies, in order: relative path, module-prefixed path, exact
        match, then unique suffix match.
        """
        from_dir = posixpath.dirname(from_file)

        if language == "python" and source.startswith("."):
            return self._unique(self._resolve_python_relative(source, from_dir))
        if language == "rust":
            return self._unique(self._resolve_rust(source, from_dir))
        if source.startswith("."):
            return self._unique(self._try_exact_match(posixpath.normpath(posixpath.join(from_dir, source))))

        normalized = source
        if language == "python":
            normalized = source.replace(".", "/")

        if self.module_name and source.startswith(self.module_name + "/"):
            candidates = self._try_exact_match(source[len(self.module_name) + 1:])
            if candidates:
                return self._unique(candidates)

        candidates = self._try_exact_match(normalized)
        if candidates:
            return self._unique(candidates)
        return self._unique(self._try_suffix_match(normalized))

    def _resolve_python_relative(self, source: str, from_dir: str) -> List[str]:
        level = len(source) - len(source.lstrip("."))
        rest = source[level:].replace(".", "/")
        target = from_dir
        for _ in range(level - 1):
            target = posixpath.dirname(target)
        candidate = posixpath.join(target, rest) if rest else posixpath.join(target, "__init__.py")
        return self._try_exact_match(candidate)

    def _resolve_rust(self, source: str, from_dir: str) -> List[str]:
        if source.startswith("self::"):
            return self._try_exact_match(posixpath.join(from_dir, source[6:].replace("::", "/")))
        if source.startswith("super::"):
            return self._try_exact_match(
                posixpath.join(posixpath.dirname(from_dir), source[7:].replace("::", "/"))
            )
        if source.startswith("crate::"):
            source = source[7:]
        # Longest prefix that names a file: crate::db::models::User -> db/models.rs
        parts = source.split("::")
        for end in range(len(parts), 0, -1):
            candidates = self._try_suffix_match("/".join(parts[:end]))
            if candidates:
                return candidates
        return []

    def _try_exact_match(self, path: str) -> List[str]:
        path = "" if path in ("", ".") else path.strip("/")
        for suffix in RESOLVE_SUFFIXES:
            candidate = (path + suffix).lstrip("/")
            if candidate in self.file_index["exact"]:
                return self.file_index["exact"][candidate]
        return self.file_index["no_ext"].get(path, []) if path else []

    def _try_suffix_match(self, normalized: str) -> List[str]:
        for suffix in RESOLVE_SUFFIXES:
            files = self.file_index["suffix"].get(normalized + suffix)
            if files and len(files) == 1:
                return files
        return []

    @staticmethod
    def _unique(candidates: List[str]) -> Optional[str]:
        return candidates[0] if len(candidates) == 1 else None

    def forward_map(self) -> Dict[str, Dict[str, Any]]:
        """``{path: {"imports": [{source, resolved, type, symbols}, ...]}}`` sorted by path."""
        return {
            path: {
                "imports": [
                    {
                        "source": e["source"],
                        "resolved": e.get("resolved"),
                        "type": e.get("type", IMPORT_EXTERNAL),
                        "symbols": list(e["symbols"]),
                    }
                    for e in self.imports[path]
                ]
            }
            for path in sorted(self.imports)
            if self.imports[path]
        }

    def reverse_map(self) -> Dict[str, Dict[str, Any]]:
        """``{path: {"imported_by": [{file, symbols}, ...]}}`` for every imported file."""
        reverse = {}
        for path in sorted(self.graph.nodes):
            importers = sorted(self.graph.predecessors(path))
            if importers:
                reverse[path] = {
                    "imported_by": [
                        {"file": importer, "symbols": list(self.graph.edges[importer, path]["symbols"])}
                        for importer in importers
                    ]
                }
        return reverse

    def module_graph(self) -> nx.DiGraph:
        """Graph of modules with an edge wherever a file imports a file of another module."""
        modules = nx.DiGraph()
        modules.add_nodes_from({module_for(p) for p in self.graph.nodes})
        for source, target in self.graph.edges:
            a, b = module_for(source), module_for(target)
            if a != b:
                modules.add_edge(a, b)
        return modules

    def modules_map(self, files: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Group metadata entries into modules.

        Args:
            files: Metadata map file entries (``path``, ``size``, ``lines``).

        Returns:
            ``{name: {files, stats{file_count, total_size, total_lines}, dependencies}}``
        """
        module_graph = self.module_graph()
        modules: Dict[str, Dict[str, Any]] = {}
        for entry in sorted(files, key=lambda f: f["path"]):
            name = module_for(entry["path"])
            module = modules.setdefault(
                name,
                {"files": [], "stats": {"file_count": 0, "total_size": 0, "total_lines": 0}, "dependencies": []},
            )
            module["files"].append(entry["path"])
            module["stats"]["file_count"] += 1
            module["stats"]["total_size"] += entry.get("size", 0)
            module["stats"]["total_lines"] += entry.get("lines", 0)

        for name, module in modules.items():
            if name in module_graph:
                module["dependencies"] = sorted(module_graph.successors(name))
        return dict(sorted(modules.items()))
