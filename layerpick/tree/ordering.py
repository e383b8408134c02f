"""
Forward-Pass Ordering
======================
Re-sorts every sibling list into the order a token flows through the
model, independent of file or alphabetical order:

    0    embeddings
    1    vision tower
    2    connector / projector
    3    backbone container (model, language_model, transformer)
    4    layer containers and numbered layers
    5.0  pre-attention norm
    5.1  attention block
    5.2  post-attention norm
    5.3  mlp block
    6    final norm
    7    output head
    99   everything else

Python's sort is stable, so equal-priority siblings keep their previous
order (numbered layers stay numerically sorted). Applying the pass twice
gives the same tree.
"""

from __future__ import annotations

from typing import Sequence

from layerpick.tree.nodes import LayerNode

_EMBEDDING_NAMES = frozenset({"wte", "wpe", "patch_embed", "pos_embed"})
_VISION_NAMES = frozenset({"vit", "clip", "image_encoder"})
_CONNECTOR_NAMES = frozenset({
    "merger", "connector", "projector", "multi_modal_projector", "deepstack",
})
_BACKBONE_NAMES = frozenset({"language_model", "model", "transformer"})
_LAYER_CONTAINER_NAMES = frozenset({"layers", "blocks", "h", "encoder"})
_FINAL_NORM_NAMES = frozenset({"norm", "ln_f", "final_layer_norm", "final_layernorm"})
_HEAD_NAMES = frozenset({"lm_head", "classifier", "score"})

_WITHIN_LAYER = {
    "input_layernorm": 5.0,
    "layer_norm1": 5.0,
    "self_attn": 5.1,
    "attention": 5.1,
    "attn": 5.1,
    "post_attention_layernorm": 5.2,
    "layer_norm2": 5.2,
    "mlp": 5.3,
}

UNORDERED_PRIORITY = 99


def forward_pass_priority(name: str) -> float:
    """Sort key for one segment name; lower comes first."""
    s = name.lower()

    if "embed" in s or s in _EMBEDDING_NAMES:
        return 0
    if "visual" in s or "vision" in s or s in _VISION_NAMES:
        return 1
    if s in _CONNECTOR_NAMES:
        return 2
    if s in _BACKBONE_NAMES:
        return 3
    if s in _LAYER_CONTAINER_NAMES or (s.isascii() and s.isdigit()):
        return 4
    if s in _WITHIN_LAYER:
        return _WITHIN_LAYER[s]
    if s in _FINAL_NORM_NAMES:
        return 6
    if s in _HEAD_NAMES:
        return 7
    return UNORDERED_PRIORITY


def sort_forward_pass(nodes: Sequence[LayerNode]) -> list[LayerNode]:
    """
    Return a copy of the tree with every level in forward-pass order.

    Parameters
    ----------
    nodes : sequence of LayerNode
        A tree (list of top-level nodes) or any sibling list.

    Returns
    -------
    list[LayerNode]
        Same nodes, roles and counts; only sibling order differs.
    """
    return [
        node.with_children(sort_forward_pass(node.children))
        for node in sorted(nodes, key=lambda node: forward_pass_priority(node.name))
    ]
