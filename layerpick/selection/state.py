"""
Selection State
================
The selection is the one piece of state that changes while a user works:
leaves are toggled, patterns are applied, a different checkpoint is
loaded. `SelectionState` keeps it as an immutable value. Every operation
returns a new state, and every path that enters the selection is checked
against the universe first, so a selection can never hold a path the
current checkpoint does not have.

Also here:
    - Quick-select patterns (all attention / mlp / norms / vision)
    - `auto_ignore`: a staged "what to keep in high precision" heuristic

Usage:
    >>> state = SelectionState.for_universe(paths)
    >>> state = state.select_pattern(QUICK_SELECT_PATTERNS["norms"])
    >>> state = state.select_range(0, 2)
    >>> state.ordered()[:2]
    ['model.layers.0.input_layernorm', 'model.layers.0.self_attn.q_proj']
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Pattern, Union

logger = logging.getLogger(__name__)

PatternLike = Union[str, Pattern[str]]

_LAYER_INDEX = re.compile(r"\.(\d+)\.")

QUICK_SELECT_PATTERNS: dict[str, Pattern[str]] = {
    "attention": re.compile(r"\.self_attn\.|\.attention\.|\.attn\."),
    "mlp": re.compile(
        r"mlp|gate_proj|up_proj|down_proj|fc1|fc2|dense_h_to_4h|dense_4h_to_h"
    ),
    "norms": re.compile(r"norm|ln_"),
    "vision": re.compile(r"vision|visual|vit|clip|image"),
}


def _compile(pattern: PatternLike) -> Pattern[str]:
    return re.compile(pattern) if isinstance(pattern, str) else pattern


def layer_index(path: str) -> Optional[int]:
    """The first `.N.` index in a path, or None."""
    match = _LAYER_INDEX.search(path)
    return int(match.group(1)) if match else None


def max_layer_index(paths: Iterable[str]) -> int:
    """Largest layer index over all paths; 0 when none is indexed."""
    return max((i for i in map(layer_index, paths) if i is not None), default=0)


@dataclass(frozen=True)
class SelectionState:
    """
    Immutable selection over a universe of selectable leaf paths.

    Parameters
    ----------
    universe : tuple[str, ...]
        All selectable leaf paths of the current checkpoint, in tree order.
    selected : frozenset[str]
        Selected paths; always a subset of `universe`.
    """
    universe: tuple[str, ...] = ()
    selected: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def for_universe(cls, paths: Iterable[str]) -> SelectionState:
        return cls(universe=tuple(paths))

    def _with(self, paths: Iterable[str]) -> SelectionState:
        members = set(self.universe)
        return SelectionState(
            universe=self.universe,
            selected=frozenset(p for p in paths if p in members),
        )

    # ─── Universe ───────────────────────────────────────────────────────

    def with_universe(self, paths: Iterable[str]) -> SelectionState:
        """New universe, empty selection (a different checkpoint was loaded)."""
        return SelectionState.for_universe(paths)

    def reconcile(self, paths: Iterable[str]) -> SelectionState:
        """
        Keep the current selection across a universe change.

        Paths missing from the new universe are dropped silently.
        """
        universe = tuple(paths)
        members = set(universe)
        kept = frozenset(p for p in self.selected if p in members)
        dropped = len(self.selected) - len(kept)
        if dropped:
            logger.info(f"Dropped {dropped} selected paths not in the new checkpoint")
        return SelectionState(universe=universe, selected=kept)

    # ─── Explicit edits ─────────────────────────────────────────────────

    def set_selected(self, paths: Iterable[str]) -> SelectionState:
        return self._with(paths)

    def toggle(self, path: str) -> SelectionState:
        if path in self.selected:
            return SelectionState(self.universe, self.selected - {path})
        return self._with(self.selected | {path})

    def select(self, paths: Iterable[str]) -> SelectionState:
        return self._with(self.selected.union(paths))

    def deselect(self, paths: Iterable[str]) -> SelectionState:
        return SelectionState(self.universe, self.selected.difference(paths))

    def select_all(self) -> SelectionState:
        return SelectionState(self.universe, frozenset(self.universe))

    def deselect_all(self) -> SelectionState:
        return SelectionState(self.universe)

    def invert(self) -> SelectionState:
        return SelectionState(
            self.universe,
            frozenset(p for p in self.universe if p not in self.selected),
        )

    # ─── Pattern edits ──────────────────────────────────────────────────

    def select_pattern(self, pattern: PatternLike) -> SelectionState:
        """Add every universe path the regex finds a match in."""
        regex = _compile(pattern)
        return self.select(p for p in self.universe if regex.search(p))

    def deselect_pattern(self, pattern: PatternLike) -> SelectionState:
        regex = _compile(pattern)
        return self.deselect(p for p in self.universe if regex.search(p))

    def select_range(
        self,
        start_layer: int,
        end_layer: int,
        suffix_pattern: Optional[PatternLike] = None,
    ) -> SelectionState:
        """
        Add every indexed path whose layer lies in [start_layer, end_layer].

        Parameters
        ----------
        start_layer, end_layer : int
            Inclusive bounds on the first `.N.` index of the path.
        suffix_pattern : str or compiled regex, optional
            If given, a path must also contain a match for it.
        """
        regex = _compile(suffix_pattern) if suffix_pattern is not None else None
        picked = []
        for path in self.universe:
            index = layer_index(path)
            if index is None or not start_layer <= index <= end_layer:
                continue
            if regex is None or regex.search(path):
                picked.append(path)
        return self.select(picked)

    # ─── Queries ────────────────────────────────────────────────────────

    def is_selected(self, path: str) -> bool:
        return path in self.selected

    def ordered(self) -> list[str]:
        """Selected paths in universe order."""
        return [p for p in self.universe if p in self.selected]

    def __len__(self) -> int:
        return len(self.selected)


# ─── Auto-ignore heuristic ──────────────────────────────────────────────

_HEAD = re.compile(r"lm_head|embed_out|classifier|score")
_NORM = re.compile(r"norm|layernorm|ln_")
_MOE_GATE = re.compile(r"\.gate\b")
_SWIGLU_GATE = re.compile(r"gate_proj|gate_up_proj")
_SHARED_EXPERT_GATE = re.compile(r"shared_expert_gate")
_DECODER_LAYER = re.compile(r"\.layers\.(\d+)\.")
_O_PROJ = re.compile(r"\.o_proj\b")
_MLP_LIKE = re.compile(
    r"mlp|gate_proj|up_proj|down_proj|gate_up_proj|fc1|fc2"
    r"|dense_h_to_4h|dense_4h_to_h|experts"
)


def _auto_ignore_path(path: str, max_index: int, stage: int) -> bool:
    # Stage 1: heads, norms and MoE routers
    if _HEAD.search(path) or _NORM.search(path):
        return True
    if _MOE_GATE.search(path) and not _SWIGLU_GATE.search(path):
        return True
    if _SHARED_EXPERT_GATE.search(path):
        return True
    if stage < 2:
        return False

    # Stage 2: first/last three decoder layers and every o_proj
    match = _DECODER_LAYER.search(path)
    index = int(match.group(1)) if match else None
    if index is not None and (index <= 2 or index >= max_index - 2):
        return True
    if _O_PROJ.search(path):
        return True
    if stage < 3:
        return False

    # Stage 3: MLPs in the middle 30-70% of depth
    if index is not None:
        depth = index / max_index if max_index > 0 else 0
        if 0.3 <= depth <= 0.7 and _MLP_LIKE.search(path):
            return True
    return False


def auto_ignore(paths: Iterable[str], max_index: int, stage: int) -> list[str]:
    """
    Paths worth keeping in high precision, by increasingly aggressive stage.

    Parameters
    ----------
    paths : iterable of str
        Selection universe.
    max_index : int
        Largest decoder-layer index (see `max_layer_index`).
    stage : int
        1 = heads, norms, MoE gates. 2 = also the first and last three
        layers and every o_proj. 3 = also mid-depth MLPs.

    Returns
    -------
    list[str]
        Matching paths in input order.
    """
    if stage not in (1, 2, 3):
        raise ValueError(f"auto-ignore stage must be 1, 2 or 3, got {stage}")
    picked = [p for p in paths if _auto_ignore_path(p, max_index, stage)]
    logger.info(f"Auto-ignore stage {stage}: {len(picked)} paths")
    return picked
