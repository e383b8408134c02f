"""
Tree Materializer
==================
Converts the module trie into LayerNode values and puts numbered layers
into numeric order.

Two separately testable passes:

1. `trie_to_nodes` — post-order walk creating one LayerNode per trie node.
   A node keeps its classified role even when it has children (an
   "attention" folder holding q/k/v/o stays "attention"). A node is
   selectable only if it is a module path AND has no children; a module
   that owns tensors and also has sub-modules is not directly selectable.

2. `collapse_numbered_layers` — in every sibling list, nodes whose name is
   all digits are moved after the other siblings and sorted by integer
   value, so "10" follows "2" rather than "1".

Usage:
    >>> tree = parse_weight_map({
    ...     "model.layers.10.mlp.weight": "a.safetensors",
    ...     "model.layers.2.mlp.weight": "a.safetensors",
    ... })
    >>> [n.name for n in tree[0].children[0].children]
    ['2', '10']
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from layerpick.tree.nodes import LayerNode
from layerpick.tree.paths import WEIGHT_SUFFIXES, module_paths
from layerpick.tree.roles import classify_segment
from layerpick.tree.trie import TrieNode, build_trie

logger = logging.getLogger(__name__)


def trie_to_nodes(trie: TrieNode) -> list[LayerNode]:
    """
    Materialize the children of `trie` into LayerNode values.

    Parameters
    ----------
    trie : TrieNode
        Usually the synthetic root from `build_trie`; the root itself is
        not materialized.

    Returns
    -------
    list[LayerNode]
        One node per child, in trie insertion order.
    """
    nodes: list[LayerNode] = []

    for name, child in trie.children.items():
        children = trie_to_nodes(child)
        nodes.append(
            LayerNode(
                id=child.full_path,
                name=name,
                full_path=child.full_path,
                role=classify_segment(name, child.full_path),
                children=tuple(children),
                is_selectable=child.is_terminal and not children,
            )
        )

    return nodes


def _is_numbered(name: str) -> bool:
    # str.isdigit() also accepts superscripts and other Unicode digits
    return name.isascii() and name.isdigit()


def collapse_numbered_layers(nodes: Sequence[LayerNode]) -> list[LayerNode]:
    """
    Move all-digit siblings after the others, in numeric order, at every level.

    Node identity, path and role are untouched; only sibling order changes.
    """
    numbered: list[LayerNode] = []
    others: list[LayerNode] = []

    for node in nodes:
        (numbered if _is_numbered(node.name) else others).append(node)

    numbered.sort(key=lambda node: int(node.name))

    return [
        node.with_children(collapse_numbered_layers(node.children))
        for node in others + numbered
    ]


def parse_weight_map(
    weight_map: Mapping[str, str],
    suffixes: Sequence[str] = WEIGHT_SUFFIXES,
) -> list[LayerNode]:
    """
    Build the module tree for a checkpoint.

    Parameters
    ----------
    weight_map : Mapping[str, str]
        Tensor name → shard file, e.g. the "weight_map" of a
        model.safetensors.index.json. Only the keys are used.
    suffixes : sequence of str
        Weight-tensor suffixes to strip.

    Returns
    -------
    list[LayerNode]
        Top-level nodes, with numbered layers in numeric order.
    """
    paths = module_paths(weight_map.keys(), suffixes)
    tree = collapse_numbered_layers(trie_to_nodes(build_trie(paths)))

    logger.info(
        f"Parsed {len(weight_map):,} tensors into {len(paths):,} module paths "
        f"({len(tree)} top-level nodes)"
    )
    return tree
