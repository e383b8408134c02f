"""
Module Trie
============
A prefix tree over dot-separated module path segments. Two modules that
share a prefix ("model.layers.0.mlp.up_proj", "model.layers.0.mlp.down_proj")
share the trie nodes for that prefix, which is how the flat name set turns
into a hierarchy.

The trie is an intermediate structure: `builder.trie_to_nodes` converts it
into LayerNode values and the trie is discarded. Child order here is
insertion order and carries no meaning; ordering passes run later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

logger = logging.getLogger(__name__)


@dataclass
class TrieNode:
    """
    One node of the module trie.

    Parameters
    ----------
    full_path : str
        Dotted path from the root to this node ("" for the root).
    children : dict[str, TrieNode]
        Child nodes keyed by their own segment.
    is_terminal : bool
        True if this exact path is itself a module path.
    """
    full_path: str = ""
    children: dict[str, TrieNode] = field(default_factory=dict)
    is_terminal: bool = False


def build_trie(module_paths: Iterable[str]) -> TrieNode:
    """
    Build a trie from module paths.

    Parameters
    ----------
    module_paths : iterable of str
        Deduplicated module paths (see `paths.module_paths`).

    Returns
    -------
    TrieNode
        The synthetic root; its full_path is "".
    """
    root = TrieNode()
    n_paths = 0

    for path in module_paths:
        segments = path.split(".")
        current = root
        for i, segment in enumerate(segments):
            child = current.children.get(segment)
            if child is None:
                child = TrieNode(full_path=".".join(segments[: i + 1]))
                current.children[segment] = child
            current = child
        current.is_terminal = True
        n_paths += 1

    logger.debug(f"Built module trie from {n_paths} paths")
    return root
