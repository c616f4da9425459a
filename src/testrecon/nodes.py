# src/testrecon/nodes.py

"""
The declared test hierarchy: Suite -> File -> Method -> DatasetVariant.

Nodes are created by the discovery collaborator and persist across runs. A run
only annotates them; nothing in testrecon constructs nodes except the manifest
loader, which stands in for discovery.
"""

import json
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any, TypeAlias

import structlog
from attrs import define, field

from testrecon.exceptions import TreeLoadError
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("nodes")

FILE_SEPARATOR = ":"
METHOD_SEPARATOR = "::"
DATASET_SEPARATOR = "#"


@define(frozen=True, slots=True)
class SourceLocation:
    """A file plus an optional 1-based line range."""

    file: str
    line: int | None = field(default=None)
    end_line: int | None = field(default=None)

    def __str__(self) -> str:
        return f"{self.file}:{self.line}" if self.line is not None else self.file


@define(frozen=True, slots=True)
class DatasetVariant:
    """One parameterized invocation of a method, e.g. data set "#0" of testLogin."""

    id: str
    name: str
    method_name: str
    label: str
    location: SourceLocation | None = field(default=None)
    tags: frozenset[str] = field(factory=frozenset, converter=frozenset)


@define(frozen=True, slots=True)
class Method:
    id: str
    name: str
    location: SourceLocation | None = field(default=None)
    tags: frozenset[str] = field(factory=frozenset, converter=frozenset)
    datasets: tuple[DatasetVariant, ...] = field(factory=tuple, converter=tuple)


@define(frozen=True, slots=True)
class File:
    id: str
    name: str
    location: SourceLocation | None = field(default=None)
    tags: frozenset[str] = field(factory=frozenset, converter=frozenset)
    methods: tuple[Method, ...] = field(factory=tuple, converter=tuple)


@define(frozen=True, slots=True)
class Suite:
    id: str
    name: str
    location: SourceLocation | None = field(default=None)
    tags: frozenset[str] = field(factory=frozenset, converter=frozenset)
    files: tuple[File, ...] = field(factory=tuple, converter=tuple)


TestNode: TypeAlias = Suite | File | Method | DatasetVariant


def children(node: TestNode) -> tuple[TestNode, ...]:
    """Returns the direct children of any node."""
    if isinstance(node, Suite):
        return node.files
    if isinstance(node, File):
        return node.methods
    if isinstance(node, Method):
        return node.datasets
    if isinstance(node, DatasetVariant):
        return ()
    raise TypeError(f"Unknown test node type: {type(node).__name__}")


def iter_results_nodes(node: TestNode) -> Iterator[Method | DatasetVariant]:
    """Yields every node that can carry its own outcome: all methods and variants."""
    if isinstance(node, (Method, DatasetVariant)):
        yield node
    for child in children(node):
        yield from iter_results_nodes(child)


def make_id(
    suite: str,
    file: str | None = None,
    method: str | None = None,
    dataset: str | None = None,
) -> str:
    """Builds the path-like composite id, e.g. ``unit:FooTest.php::testLogin#0``."""
    node_id = suite
    if file is not None:
        node_id += f"{FILE_SEPARATOR}{file}"
    if method is not None:
        node_id += f"{METHOD_SEPARATOR}{method}"
    if dataset is not None:
        node_id += f"{DATASET_SEPARATOR}{dataset.removeprefix(DATASET_SEPARATOR)}"
    return node_id


class TestTree:
    """The declared node tree with id and parent lookups."""

    __test__ = False

    def __init__(self, suites: Iterable[Suite]):
        self.suites: tuple[Suite, ...] = tuple(suites)
        self._nodes: dict[str, TestNode] = {}
        self._parents: dict[str, TestNode] = {}
        for suite in self.suites:
            self._index(suite, None)

    def _index(self, node: TestNode, parent: TestNode | None) -> None:
        if node.id in self._nodes:
            raise TreeLoadError(f"Duplicate test node id '{node.id}'")
        self._nodes[node.id] = node
        if parent is not None:
            self._parents[node.id] = parent
        for child in children(node):
            self._index(child, node)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __getitem__(self, node_id: str) -> TestNode:
        return self._nodes[node_id]

    def __iter__(self) -> Iterator[TestNode]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str) -> TestNode | None:
        return self._nodes.get(node_id)

    def parent(self, node: TestNode) -> TestNode | None:
        return self._parents.get(node.id)

    def ancestors(self, node: TestNode) -> list[TestNode]:
        """Returns the ancestors of a node, nearest first."""
        chain: list[TestNode] = []
        current = self.parent(node)
        while current is not None:
            chain.append(current)
            current = self.parent(current)
        return chain

    # --- Manifest loading (stands in for the discovery collaborator) ---

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TestTree":
        """
        Builds a tree from a manifest mapping.

        Expected shape::

            {"suites": [{"name": "unit", "files": [
                {"name": "FooTest.php", "path": "tests/unit/FooTest.php",
                 "methods": [{"name": "testLogin", "line": 12, "end_line": 20,
                              "datasets": ["#0", "#1"]}]}]}]}
        """
        try:
            suites = [_suite_from_mapping(raw) for raw in data.get("suites", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise TreeLoadError(f"Invalid test tree manifest: {e}", details=e) from e
        tree = cls(suites)
        log.debug("Loaded test tree", suites=len(tree.suites), nodes=len(tree))
        return tree

    @classmethod
    def from_json(cls, path: Path) -> "TestTree":
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise TreeLoadError(f"Could not read test tree manifest '{path}': {e}", details=e) from e
        if not isinstance(data, Mapping):
            raise TreeLoadError(f"Test tree manifest '{path}' must contain a JSON object")
        return cls.from_mapping(data)


def _location(raw: Mapping[str, Any], default_file: str | None) -> SourceLocation | None:
    file = raw.get("path", default_file)
    if file is None:
        return None
    line = raw.get("line")
    end_line = raw.get("end_line")
    return SourceLocation(
        file=str(file),
        line=int(line) if line is not None else None,
        end_line=int(end_line) if end_line is not None else None,
    )


def _suite_from_mapping(raw: Mapping[str, Any]) -> Suite:
    suite_name = str(raw["name"])
    files = []
    for raw_file in raw.get("files", []):
        file_name = str(raw_file["name"])
        file_location = _location(raw_file, None)
        file_path = file_location.file if file_location else None
        methods = []
        for raw_method in raw_file.get("methods", []):
            if isinstance(raw_method, str):
                raw_method = {"name": raw_method}
            method_name = str(raw_method["name"])
            datasets = [
                DatasetVariant(
                    id=make_id(suite_name, file_name, method_name, str(dataset)),
                    name=f"{method_name} {dataset}",
                    method_name=method_name,
                    label=str(dataset),
                    location=_location(raw_method, file_path),
                )
                for dataset in raw_method.get("datasets", [])
            ]
            methods.append(
                Method(
                    id=make_id(suite_name, file_name, method_name),
                    name=method_name,
                    location=_location(raw_method, file_path),
                    tags=raw_method.get("tags", ()),
                    datasets=datasets,
                )
            )
        files.append(
            File(
                id=make_id(suite_name, file_name),
                name=file_name,
                location=file_location,
                tags=raw_file.get("tags", ()),
                methods=methods,
            )
        )
    return Suite(
        id=make_id(suite_name),
        name=suite_name,
        tags=raw.get("tags", ()),
        files=files,
    )

# 🔼⚙️
