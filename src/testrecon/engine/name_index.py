# src/testrecon/engine/name_index.py

"""
Matches free-text test identifiers from runner output to declared nodes.
"""

from collections.abc import Iterable
from pathlib import PurePosixPath

import structlog

from testrecon.nodes import DatasetVariant, File, Method, TestNode, TestTree, iter_results_nodes
from testrecon.telemetry import StructLogger

log: StructLogger = structlog.get_logger("engine.name_index")

TEST_PREFIX = "test"
QUALIFIER_SEPARATOR = "::"


def strip_test_prefix(name: str) -> str | None:
    """Returns the name without a leading "test" (any case), or None if it has none."""
    if len(name) > len(TEST_PREFIX) and name[: len(TEST_PREFIX)].lower() == TEST_PREFIX:
        return name[len(TEST_PREFIX) :]
    return None


def canonical_variants(name: str) -> tuple[str, ...]:
    """
    All canonical keys for a name, in lookup priority order.

    exact, lowercase, then prefix-stripped (exact and lowercase). Duplicates
    are removed while keeping order.
    """
    variants = [name, name.lower()]
    stripped = strip_test_prefix(name)
    if stripped:
        variants.extend((stripped, stripped.lower()))
    return tuple(dict.fromkeys(variants))


def qualifier_stem(qualifier: str) -> str:
    """Reduces a class name or file path to a comparable stem.

    ``tests/unit/FooTest.php`` -> ``footest``, ``App\\Tests\\FooTest`` -> ``footest``.
    """
    tail = qualifier.replace("\\", "/").rstrip("/")
    stem = PurePosixPath(tail).name
    if "." in stem:
        stem = stem.split(".", 1)[0]
    return stem.lower()


def _names_for(node: Method | DatasetVariant) -> list[str]:
    if isinstance(node, DatasetVariant):
        # Forms runners print for one data set of a parameterized method.
        return [
            node.name,
            f"{node.method_name} with data set {node.label}",
            f"{node.method_name} | {node.label}",
        ]
    return [node.name]


def _owning_file_name(node: TestNode, tree: TestTree | None) -> str | None:
    if tree is None:
        return None
    for ancestor in tree.ancestors(node):
        if isinstance(ancestor, File):
            return ancestor.name
    return None


class CanonicalNameIndex:
    """
    Single dict from canonical key to node.

    The first node registered under a key keeps it; later collisions are
    logged and ignored. Qualified keys (``<file-stem>::<key>``) are stored in
    the same dict so that a qualifier can break ties between files.
    """

    def __init__(self) -> None:
        self._index: dict[str, TestNode] = {}
        self._collisions = 0

    @classmethod
    def build(cls, roots: Iterable[TestNode], tree: TestTree | None = None) -> "CanonicalNameIndex":
        """
        Builds an index over every method and dataset variant under `roots`.

        With a tree, each node is also registered under its owning file's
        qualified keys.
        """
        index = cls()
        for root in roots:
            for node in iter_results_nodes(root):
                index.register(node, qualifier=_owning_file_name(node, tree))
        log.debug("Canonical name index built", keys=len(index), collisions=index._collisions)
        return index

    def __len__(self) -> int:
        return len(self._index)

    def register(self, node: Method | DatasetVariant, qualifier: str | None = None) -> None:
        """Inserts every canonical variant of the node's names."""
        for name in _names_for(node):
            for key in canonical_variants(name):
                self._insert(key, node)
                if qualifier:
                    self._insert(f"{qualifier_stem(qualifier)}{QUALIFIER_SEPARATOR}{key}", node)

    def _insert(self, key: str, node: TestNode) -> None:
        existing = self._index.setdefault(key, node)
        if existing is not node and existing.id != node.id:
            self._collisions += 1
            log.debug("Canonical key collision", key=key, kept=existing.id, ignored=node.id)

    def lookup(self, raw_name: str, qualifier: str | None = None) -> TestNode | None:
        """
        Resolves a raw name: exact, then lowercase, then prefix-stripped.

        When a qualifier is given, qualified keys are tried first. Never raises.
        """
        if not raw_name:
            return None
        raw_name = raw_name.strip()
        if qualifier:
            stem = qualifier_stem(qualifier)
            for key in canonical_variants(raw_name):
                node = self._index.get(f"{stem}{QUALIFIER_SEPARATOR}{key}")
                if node is not None:
                    return node
        for key in canonical_variants(raw_name):
            node = self._index.get(key)
            if node is not None:
                return node
        return None

# 🔼⚙️
