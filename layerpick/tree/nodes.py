"""
LayerNode — the externally visible module tree.

A LayerNode is an immutable value. Passes that "change" a tree (ordering,
numbered-layer collapse, count attachment) build new nodes with
`dataclasses.replace`, so earlier trees stay valid snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

from layerpick.tree.roles import Role


@dataclass(frozen=True)
class LayerNode:
    """
    One module in the checkpoint hierarchy.

    Parameters
    ----------
    id : str
        Stable identifier; equal to `full_path`.
    name : str
        The node's own segment, e.g. "q_proj".
    full_path : str
        Dotted path from the root, e.g. "model.layers.0.self_attn.q_proj".
    role : Role
        Semantic role from `classify_segment`.
    children : tuple[LayerNode, ...]
        Children in display / iteration order.
    is_selectable : bool
        True only for childless nodes that correspond to a module path.
    param_count : int or None
        Element count, when counts have been attached. For a non-leaf
        this is the sum of its children's counts.
    """
    id: str
    name: str
    full_path: str
    role: Role = Role.GROUP
    children: tuple[LayerNode, ...] = field(default_factory=tuple)
    is_selectable: bool = False
    param_count: Optional[int] = None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def with_children(self, children) -> LayerNode:
        """Copy of this node with a new child sequence."""
        return replace(self, children=tuple(children))

    def __repr__(self) -> str:
        count = "" if self.param_count is None else f", params={self.param_count:,}"
        return (
            f"LayerNode({self.full_path!r}, role={self.role.value}, "
            f"children={len(self.children)}{count})"
        )
