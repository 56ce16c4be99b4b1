from __future__ import annotations
"""Derive a synthetic folder hierarchy from flat object keys.

Object stores have no directories. A folder exists when some key contains it
as a ``/``-delimited prefix, or when an empty marker object whose key ends in
``/`` names it explicitly. The tree is always rebuilt from the full key set,
never patched, so it cannot drift from what the backend holds.
"""
import logging
from typing import Iterable, Iterator, Optional

from .models import FolderNode
from .ui_utils import join_path, normalize_path

LOGGER = logging.getLogger(__name__)


def folder_paths(keys: Iterable[str]) -> list[str]:
    """Return every folder path implied by ``keys``, sorted ascending."""

    folders: set[str] = set()
    for key in keys:
        is_marker = key.endswith("/")
        normalized = key[:-1] if is_marker else key
        if not normalized:
            continue
        parts = normalized.split("/")
        if not is_marker:
            parts = parts[:-1]
        current = ""
        for part in parts:
            if not part:
                # Leading or doubled slashes name no folder.
                continue
            current = f"{current}/{part}" if current else part
            folders.add(current)
    return sorted(folders)


def build_folder_tree(bucket_name: str, keys: Iterable[str]) -> FolderNode:
    root = FolderNode(name=bucket_name, path="")
    nodes: dict[str, FolderNode] = {"": root}
    for path in folder_paths(keys):
        name = path.rsplit("/", 1)[-1]
        node = FolderNode(name=name, path=path)
        nodes[path] = node
        # Parents sort before their children; unknown parents fall back to root.
        parent = nodes.get(_parent(path), root)
        parent.children.append(node)
    _sort_children(root)
    return root


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def _sort_children(node: FolderNode) -> None:
    node.children.sort(key=lambda child: child.name)
    for child in node.children:
        _sort_children(child)


def iter_nodes(root: FolderNode) -> Iterator[FolderNode]:
    """Depth-first, pre-order walk including ``root``."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def all_paths(root: FolderNode) -> set[str]:
    return {node.path for node in iter_nodes(root)}


def find_node(root: FolderNode, path: str) -> Optional[FolderNode]:
    path = normalize_path(path)
    node = root
    if not path:
        return node
    walked = ""
    for part in path.split("/"):
        walked = join_path(walked, part)
        node = next((child for child in node.children if child.path == walked), None)
        if node is None:
            return None
    return node


def filter_tree(root: FolderNode, term: str) -> FolderNode:
    """Return a copy keeping nodes whose name, or a descendant's name, matches ``term``."""

    needle = (term or "").strip().lower()
    if not needle:
        return root

    def _filter(node: FolderNode) -> Optional[FolderNode]:
        children = [kept for kept in (_filter(child) for child in node.children) if kept]
        if children or needle in node.name.lower():
            return FolderNode(name=node.name, path=node.path, children=children)
        return None

    children = [kept for kept in (_filter(child) for child in root.children) if kept]
    return FolderNode(name=root.name, path=root.path, children=children)


class FolderTreeBuilder:
    """Fetches the complete key listing of a bucket and builds its folder tree."""

    def __init__(self, gateway):
        self._gateway = gateway

    def build(self, bucket: str) -> FolderNode:
        keys = self._gateway.list_all_keys(bucket)
        root = build_folder_tree(bucket, keys)
        LOGGER.debug("Built folder tree for '%s' from %d key(s)", bucket, len(keys))
        return root
