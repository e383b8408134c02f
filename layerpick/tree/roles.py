"""
Semantic Role Classifier
=========================
Assigns each module-tree segment one of seven roles:

    embedding, attention, mlp, norm, head, vision, group

Real checkpoint names are adversarial: "post_attention_layernorm" contains
"attention", "c_proj" is an MLP projection in GPT-2 but an attention output
in others, "vit" appears in vision towers and nowhere else. The classifier
is therefore an ORDERED cascade; the order of the checks is part of its
contract and is pinned by tests.

Cascade (first match wins, all comparisons lower-cased):
    1. Embedding  — "embed" anywhere in the segment, or wte / wpe
    2. Norm       — "norm" anywhere, or a known norm alias
                    (before attention: "post_attention_layernorm")
    3. Head       — lm_head / score / classifier
    4. Attention  — attention-looking segment, confirmed only when the full
                    path also mentions attention or the segment is an
                    explicit projection alias (q_proj, key, ...)
    5. MLP        — mlp-looking segment, confirmed by the full path or an
                    explicit projection alias (c_proj excluded)
    6. Vision     — full path mentions vision / visual / image_encoder /
                    vit / clip
    7. Group      — everything else

Usage:
    >>> classify_segment("post_attention_layernorm", "model.layers.0.post_attention_layernorm")
    <Role.NORM: 'norm'>
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Semantic category of a module-tree node."""
    EMBEDDING = "embedding"
    ATTENTION = "attention"
    MLP = "mlp"
    NORM = "norm"
    HEAD = "head"
    VISION = "vision"
    GROUP = "group"


_EMBEDDING_ALIASES = frozenset({"wte", "wpe"})

_NORM_ALIASES = frozenset({
    "ln_1", "ln_2", "ln_f",
    "final_layer_norm",
    "input_layernorm",
    "post_attention_layernorm",
    "layer_norm1", "layer_norm2",
})

_HEAD_ALIASES = frozenset({"lm_head", "score", "classifier"})

_ATTENTION_MARKERS = ("self_attn", "attention", "attn")
_ATTENTION_ALIASES = frozenset({
    "q_proj", "k_proj", "v_proj", "o_proj", "qkv_proj",
    "query", "key", "value",
})

_MLP_ALIASES = frozenset({
    "gate_proj", "up_proj", "down_proj",
    "fc1", "fc2",
    "c_fc", "c_proj",
    "gate_up_proj",
    "dense_h_to_4h", "dense_4h_to_h",
})
# c_proj is shared with GPT-2 attention, so it never confirms on its own.
_MLP_CONFIRMING_ALIASES = _MLP_ALIASES - {"c_proj"}

_VISION_MARKERS = ("vision", "visual", "image_encoder", "vit", "clip")


def _contains_any(text: str, markers) -> bool:
    return any(marker in text for marker in markers)


def classify_segment(segment: str, full_path: str) -> Role:
    """
    Classify one tree segment.

    Parameters
    ----------
    segment : str
        The node's own segment, e.g. "q_proj".
    full_path : str
        The node's full dotted path, e.g. "model.layers.0.self_attn.q_proj".

    Returns
    -------
    Role
        Never undefined; unrecognised segments are `Role.GROUP`.
    """
    s = segment.lower()
    fp = full_path.lower()

    if "embed" in s or s in _EMBEDDING_ALIASES:
        return Role.EMBEDDING

    if "norm" in s or "layernorm" in s or s in _NORM_ALIASES:
        return Role.NORM

    if s in _HEAD_ALIASES:
        return Role.HEAD

    if _contains_any(s, _ATTENTION_MARKERS) or s in _ATTENTION_ALIASES:
        if _contains_any(fp, _ATTENTION_MARKERS) or s in _ATTENTION_ALIASES:
            return Role.ATTENTION

    if "mlp" in s or s in _MLP_ALIASES:
        if "mlp" in fp or s in _MLP_CONFIRMING_ALIASES:
            return Role.MLP

    if _contains_any(fp, _VISION_MARKERS):
        return Role.VISION

    return Role.GROUP
