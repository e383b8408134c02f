"""
LayerPick Pipeline
===================
Wires the pieces together the way the command-line scripts use them:

    checkpoint directory
        → load_weight_map / load_config / load_tensor_param_counts
        → parse_weight_map (+ attach_param_counts) (+ sort_forward_pass)
        → CheckpointView (tree, universe, leaf counts)
        → initial selection from SelectionConfig, or from previous output
        → optimize_selection → format_ignore_list / format_recipe

Analogy:
    The tree modules are the kitchen stations; this is the pass where a
    ticket (a checkpoint path plus a config) turns into a plate (the
    text a user pastes into their quantization script).

Usage:
    >>> picker = LayerPicker(LayerPickConfig.from_yaml("configs/default.yaml"))
    >>> view = picker.load("checkpoints/Qwen2.5-7B")
    >>> state = picker.initial_selection(view)
    >>> print(picker.render(view, state))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from layerpick.config import LayerPickConfig
from layerpick.data.checkpoint import (
    load_config,
    load_tensor_param_counts,
    load_weight_map,
)
from layerpick.output.estimates import (
    QuantSizeEstimate,
    estimate_kv_cache,
    estimate_quantized_size,
)
from layerpick.output.formatting import format_ignore_list, format_recipe
from layerpick.selection.ignore_parser import parse_ignore_items
from layerpick.selection.optimizer import optimize_selection
from layerpick.selection.state import SelectionState, auto_ignore, max_layer_index
from layerpick.tree.builder import parse_weight_map
from layerpick.tree.counts import (
    attach_param_counts,
    collect_leaf_param_counts,
    collect_selectable_paths,
)
from layerpick.tree.nodes import LayerNode
from layerpick.tree.ordering import sort_forward_pass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckpointView:
    """
    Everything derived from one checkpoint.

    Parameters
    ----------
    tree : list[LayerNode]
        Display tree (counted when counts were available, ordered per config).
    base_tree : list[LayerNode]
        Tree straight from the weight map, before counts and re-ordering.
    universe : list[str]
        Selectable leaf paths.
    leaf_counts : dict[str, int]
        Selectable leaf path → element count; empty without counts.
    model_config : dict or None
        The checkpoint's config.json, if any.
    """
    tree: list[LayerNode]
    base_tree: list[LayerNode]
    universe: list[str]
    leaf_counts: dict[str, int] = field(default_factory=dict)
    model_config: Optional[dict[str, Any]] = None

    @property
    def max_layer_index(self) -> int:
        return max_layer_index(self.universe)


class LayerPicker:
    """
    Builds checkpoint views, selections and emitted text from one config.

    Parameters
    ----------
    config : LayerPickConfig
        Full configuration.
    """

    def __init__(self, config: Optional[LayerPickConfig] = None):
        self.config = config or LayerPickConfig()

    # ─── Tree ───────────────────────────────────────────────────────────

    def build_view(
        self,
        weight_map: Mapping[str, str],
        tensor_param_counts: Optional[Mapping[str, int]] = None,
        model_config: Optional[dict[str, Any]] = None,
    ) -> CheckpointView:
        """
        Build the view for an already-loaded weight map.

        Parameters
        ----------
        weight_map : Mapping[str, str]
            Tensor name → shard file.
        tensor_param_counts : Mapping[str, int] or None
            Tensor name → element count; may be partial or absent.
        model_config : dict or None
            Architecture config, kept for estimates.
        """
        suffixes = tuple(self.config.tree.weight_suffixes)
        base_tree = parse_weight_map(weight_map, suffixes)

        tree = base_tree
        if tensor_param_counts:
            tree = attach_param_counts(tree, tensor_param_counts, suffixes)
        if self.config.tree.sort_order == "forward-pass":
            tree = sort_forward_pass(tree)

        return CheckpointView(
            tree=tree,
            base_tree=base_tree,
            universe=collect_selectable_paths(base_tree),
            leaf_counts=collect_leaf_param_counts(tree),
            model_config=model_config,
        )

    def load(self, path: Union[str, Path], with_counts: bool = True) -> CheckpointView:
        """
        Load a checkpoint from disk and build its view.

        Parameters
        ----------
        path : str or Path
            Checkpoint directory, index JSON, or single .safetensors file.
        with_counts : bool
            Read element counts from safetensors headers.
        """
        weight_map = load_weight_map(path)
        counts = load_tensor_param_counts(path, weight_map) if with_counts else None
        view = self.build_view(weight_map, counts, load_config(path))

        logger.info(
            f"Loaded {path}: {len(view.universe):,} selectable modules, "
            f"max layer index {view.max_layer_index}"
        )
        return view

    # ─── Selection ──────────────────────────────────────────────────────

    def initial_selection(self, view: CheckpointView) -> SelectionState:
        """Selection described by the SelectionConfig."""
        cfg = self.config.selection
        state = SelectionState.for_universe(view.universe)

        if cfg.auto_ignore_stage:
            state = state.select(
                auto_ignore(view.universe, view.max_layer_index, cfg.auto_ignore_stage)
            )
        for pattern in cfg.patterns:
            state = state.select_pattern(pattern)
        if cfg.layer_range is not None:
            start, end = cfg.layer_range
            state = state.select_range(start, end)

        logger.info(f"Initial selection: {len(state)} of {len(view.universe)} modules")
        return state

    def selection_from_text(self, view: CheckpointView, text: str) -> SelectionState:
        """Selection resolved from previously emitted ignore-list text."""
        resolved = parse_ignore_items(text, view.universe)
        return SelectionState.for_universe(view.universe).set_selected(resolved)

    # ─── Output ─────────────────────────────────────────────────────────

    def ignore_items(self, view: CheckpointView, state: SelectionState) -> list[str]:
        result = optimize_selection(
            state.ordered(),
            view.universe,
            max_literal_indices=self.config.optimizer.max_literal_indices,
        )
        return result.items(self.config.optimizer.use_regex)

    def render(self, view: CheckpointView, state: SelectionState) -> str:
        """Ignore list or recipe text for the selection, per RecipeConfig."""
        items = self.ignore_items(view, state)
        recipe = self.config.recipe
        if recipe.output == "recipe":
            return format_recipe(
                items,
                modifier=recipe.modifier,
                scheme=recipe.scheme,
                kv_cache_scheme=recipe.kv_cache_scheme,
            )
        return format_ignore_list(items)

    def size_estimate(
        self, view: CheckpointView, state: SelectionState
    ) -> Optional[QuantSizeEstimate]:
        return estimate_quantized_size(view.leaf_counts, state.selected)

    def kv_cache_estimate(self, view: CheckpointView):
        if view.model_config is None:
            return None
        return estimate_kv_cache(view.model_config)
