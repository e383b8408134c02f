"""
Parameter-Count Aggregation
=============================
Attaches element counts to a module tree and reads them back out.

Counts arrive keyed by raw tensor name ("model.norm.weight": 4096,
"model.norm.bias": 4096). They are first folded onto module paths
("model.norm": 8192), then attached to leaves and summed upward, so every
container reports the total of everything beneath it.

Counts may be partial or missing entirely: a leaf without a count gets 0,
and the tree is still built.

Usage:
    >>> counted = attach_param_counts(tree, {"lm_head.weight": 1000})
    >>> collect_leaf_param_counts(counted)["lm_head"]
    1000
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace
from typing import Iterator, Mapping, Sequence

from layerpick.tree.nodes import LayerNode
from layerpick.tree.paths import WEIGHT_SUFFIXES, strip_weight_suffix

logger = logging.getLogger(__name__)


def module_param_counts(
    tensor_param_counts: Mapping[str, int],
    suffixes: Sequence[str] = WEIGHT_SUFFIXES,
) -> dict[str, int]:
    """Sum tensor element counts per module path."""
    totals: dict[str, int] = defaultdict(int)
    for tensor_name, count in tensor_param_counts.items():
        totals[strip_weight_suffix(tensor_name, suffixes)] += count
    return dict(totals)


def attach_param_counts(
    nodes: Sequence[LayerNode],
    tensor_param_counts: Mapping[str, int],
    suffixes: Sequence[str] = WEIGHT_SUFFIXES,
) -> list[LayerNode]:
    """
    Return a copy of the tree with `param_count` set on every node.

    Parameters
    ----------
    nodes : sequence of LayerNode
        Tree to annotate. Not modified.
    tensor_param_counts : Mapping[str, int]
        Raw tensor name → element count. May be partial or empty.
    suffixes : sequence of str
        Weight-tensor suffixes used to fold tensors onto modules.

    Returns
    -------
    list[LayerNode]
        Leaves carry their module's summed count (0 if absent); every
        other node carries the sum of its children.
    """
    module_counts = module_param_counts(tensor_param_counts, suffixes)

    def attach(level: Sequence[LayerNode]) -> list[LayerNode]:
        result = []
        for node in level:
            if node.is_leaf:
                count = module_counts.get(node.full_path, 0)
                result.append(replace(node, param_count=count))
                continue
            children = attach(node.children)
            total = sum(child.param_count or 0 for child in children)
            result.append(replace(node.with_children(children), param_count=total))
        return result

    tree = attach(nodes)
    logger.debug(
        f"Attached counts for {len(module_counts):,} modules "
        f"(total={sum(node.param_count or 0 for node in tree):,})"
    )
    return tree


def iter_nodes(nodes: Sequence[LayerNode]) -> Iterator[LayerNode]:
    """Pre-order traversal of every node in the tree."""
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)


def collect_leaf_param_counts(nodes: Sequence[LayerNode]) -> dict[str, int]:
    """Selectable leaf path → attached count, for leaves that have one."""
    return {
        node.full_path: node.param_count
        for node in iter_nodes(nodes)
        if node.is_selectable and node.param_count is not None
    }


def collect_selectable_paths(nodes: Sequence[LayerNode]) -> list[str]:
    """Every selectable leaf path, in tree order. This is the selection universe."""
    return [node.full_path for node in iter_nodes(nodes) if node.is_selectable]
