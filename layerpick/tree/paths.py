"""
Tensor Name → Module Path Normalization
=========================================
A checkpoint stores one entry per tensor ("model.norm.weight",
"model.norm.bias"), but users select modules ("model.norm"). This module
strips the known weight-tensor suffixes so that every tensor of a module
collapses onto one module path.

Usage:
    >>> strip_weight_suffix("model.layers.0.mlp.down_proj.weight")
    'model.layers.0.mlp.down_proj'
    >>> module_paths(["b.weight", "a.weight", "a.bias"])
    ['a', 'b']
"""

from __future__ import annotations

from typing import Iterable, Sequence

# Checked in order; the first suffix that matches is removed.
WEIGHT_SUFFIXES: tuple[str, ...] = (
    ".weight",
    ".bias",
    ".scales",
    ".zero_point",
    ".weight_scale",
)


def strip_weight_suffix(
    name: str,
    suffixes: Sequence[str] = WEIGHT_SUFFIXES,
) -> str:
    """
    Remove the first matching weight-tensor suffix from a tensor name.

    Parameters
    ----------
    name : str
        Raw tensor name, e.g. "model.embed_tokens.weight".
    suffixes : sequence of str
        Suffixes to try, in order.

    Returns
    -------
    str
        The owning module path, or `name` unchanged if no suffix matches.
    """
    for suffix in suffixes:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def module_paths(
    tensor_names: Iterable[str],
    suffixes: Sequence[str] = WEIGHT_SUFFIXES,
) -> list[str]:
    """Deduplicated, sorted module paths for a collection of tensor names."""
    return sorted({strip_weight_suffix(name, suffixes) for name in tensor_names})
