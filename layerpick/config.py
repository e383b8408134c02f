"""
LayerPick Configuration System
================================
Centralized configuration for the LayerPick tools using Python
dataclasses. Every tunable the scripts forward to the tree builder, the
optimizer and the recipe renderer lives here.

The core functions never read this object; they take plain keyword
arguments whose defaults match the defaults below. The config only
decides what the scripts pass in.

Usage:
    # Load from YAML file:
    >>> config = LayerPickConfig.from_yaml("configs/default.yaml")

    # Create programmatically:
    >>> config = LayerPickConfig(
    ...     recipe=RecipeConfig(output="recipe", kv_cache_scheme="FP8_TENSOR"),
    ...     selection=SelectionConfig(auto_ignore_stage=1),
    ... )

    # Save to YAML:
    >>> config.to_yaml("configs/my_recipe.yaml")

    # Access nested values:
    >>> config.optimizer.max_literal_indices  # 3
    >>> config.recipe.modifier                # "GPTQModifier"
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Literal, Optional

import yaml

from layerpick.output.formatting import KVCacheScheme, Modifier, Scheme
from layerpick.tree.paths import WEIGHT_SUFFIXES

logger = logging.getLogger(__name__)


# =============================================================================
# Tree Configuration
# =============================================================================

@dataclass
class TreeConfig:
    """
    How tensor names become a module tree.

    Parameters
    ----------
    weight_suffixes : list[str]
        Suffixes stripped from tensor names to get module paths. Checked
        in order; the first match is removed.

    sort_order : str
        Sibling order of the displayed tree.
        - "weight-file": trie order with numbered layers in numeric order
        - "forward-pass": embeddings → layers → final norm → head
    """
    weight_suffixes: list[str] = field(default_factory=lambda: list(WEIGHT_SUFFIXES))
    sort_order: Literal["weight-file", "forward-pass"] = "forward-pass"

    def validate(self) -> None:
        """Validate tree parameters."""
        if not self.weight_suffixes:
            raise ValueError("weight_suffixes must not be empty")
        for suffix in self.weight_suffixes:
            if not suffix.startswith("."):
                raise ValueError(
                    f"weight suffix '{suffix}' must start with '.', "
                    f"e.g. '.weight'"
                )
        if self.sort_order not in ("weight-file", "forward-pass"):
            raise ValueError(
                f"Unknown sort_order: '{self.sort_order}'. "
                f"Choose from: weight-file, forward-pass"
            )


# =============================================================================
# Optimizer Configuration
# =============================================================================

@dataclass
class OptimizerConfig:
    """
    Selection compression settings.

    Parameters
    ----------
    use_regex : bool
        Emit the optimized form (literals + `re:` patterns). When False the
        explicit form (one literal per selected path) is emitted.

    max_literal_indices : int
        A template group that is not fully selected is listed as literals
        when it has at most this many indices, and as one alternation
        pattern otherwise.
    """
    use_regex: bool = True
    max_literal_indices: int = 3

    def validate(self) -> None:
        """Validate optimizer parameters."""
        if self.max_literal_indices < 0:
            raise ValueError(
                f"max_literal_indices must be >= 0, got {self.max_literal_indices}"
            )


# =============================================================================
# Recipe Configuration
# =============================================================================

@dataclass
class RecipeConfig:
    """
    What text to emit.

    Parameters
    ----------
    output : str
        - "ignore": a bare `ignore=[...]` list
        - "recipe": an llm-compressor modifier call with the list inside

    modifier : str
        GPTQModifier, QuantizationModifier or SmoothQuantModifier.

    scheme : str
        W4A16, W8A16, FP8 or FP8_BLOCK.

    kv_cache_scheme : str
        none, FP8_TENSOR, FP8_HEAD or INT8_TENSOR.
    """
    output: Literal["ignore", "recipe"] = "ignore"
    modifier: str = Modifier.GPTQ.value
    scheme: str = Scheme.W4A16.value
    kv_cache_scheme: str = KVCacheScheme.NONE.value

    def validate(self) -> None:
        """Validate recipe parameters."""
        if self.output not in ("ignore", "recipe"):
            raise ValueError(
                f"Unknown output: '{self.output}'. Choose from: ignore, recipe"
            )
        for value, enum_cls in (
            (self.modifier, Modifier),
            (self.scheme, Scheme),
            (self.kv_cache_scheme, KVCacheScheme),
        ):
            choices = [member.value for member in enum_cls]
            if value not in choices:
                raise ValueError(
                    f"Unknown {enum_cls.__name__}: '{value}'. "
                    f"Choose from: {', '.join(choices)}"
                )


# =============================================================================
# Selection Configuration
# =============================================================================

@dataclass
class SelectionConfig:
    """
    The starting selection built by the scripts.

    Parameters
    ----------
    auto_ignore_stage : int
        0 disables the heuristic. 1 = heads, norms, MoE gates;
        2 = also first/last three layers and o_proj; 3 = also mid-depth MLPs.

    patterns : list[str]
        Regexes; every universe path they match is selected.

    layer_range : list[int] or None
        Optional inclusive [start, end] layer range to select.
    """
    auto_ignore_stage: int = 0
    patterns: list[str] = field(default_factory=list)
    layer_range: Optional[list[int]] = None

    def validate(self) -> None:
        """Validate selection parameters."""
        if self.auto_ignore_stage not in (0, 1, 2, 3):
            raise ValueError(
                f"auto_ignore_stage must be 0-3, got {self.auto_ignore_stage}"
            )
        for pattern in self.patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid selection pattern '{pattern}': {exc}") from exc
        if self.layer_range is not None:
            if len(self.layer_range) != 2:
                raise ValueError(
                    f"layer_range must be [start, end], got {self.layer_range}"
                )
            start, end = self.layer_range
            if start < 0 or end < start:
                raise ValueError(
                    f"layer_range must satisfy 0 <= start <= end, got {self.layer_range}"
                )


# =============================================================================
# Master Configuration
# =============================================================================

@dataclass
class LayerPickConfig:
    """
    Master configuration combining all sub-configurations.

    Usage:
        # From YAML file:
        >>> config = LayerPickConfig.from_yaml("configs/default.yaml")

        # Programmatic:
        >>> config = LayerPickConfig()
        >>> config.validate()

        # Save:
        >>> config.to_yaml("configs/my_recipe.yaml")
    """
    tree: TreeConfig = field(default_factory=TreeConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    recipe: RecipeConfig = field(default_factory=RecipeConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)

    def validate(self) -> None:
        """
        Validate all sub-configurations and cross-config consistency.

        Raises
        ------
        ValueError
            If any parameter is invalid or configs are inconsistent.
        """
        self.tree.validate()
        self.optimizer.validate()
        self.recipe.validate()
        self.selection.validate()

        if self.recipe.modifier == Modifier.SMOOTH_QUANT.value and (
            self.recipe.kv_cache_scheme != KVCacheScheme.NONE.value
        ):
            logger.warning(
                "kv_cache_scheme is set on a SmoothQuantModifier recipe; "
                "SmoothQuant does not quantize the KV cache itself"
            )

        logger.debug(
            f"Config validated: output={self.recipe.output}, "
            f"use_regex={self.optimizer.use_regex}, "
            f"auto_ignore_stage={self.selection.auto_ignore_stage}"
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> LayerPickConfig:
        """
        Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        LayerPickConfig
            Loaded and validated configuration.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        yaml.YAMLError
            If the YAML file is malformed.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}. "
                f"Create one from configs/default.yaml as a template."
            )

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            raise ValueError(f"Config file is empty: {path}")

        config = cls(
            tree=TreeConfig(**(raw.get("tree") or {})),
            optimizer=OptimizerConfig(**(raw.get("optimizer") or {})),
            recipe=RecipeConfig(**(raw.get("recipe") or {})),
            selection=SelectionConfig(**(raw.get("selection") or {})),
        )

        config.validate()
        return config

    def to_yaml(self, path: str | Path) -> None:
        """
        Save configuration to a YAML file.

        Creates parent directories if they don't exist.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                asdict(self),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict:
        """Convert to nested dictionary."""
        return asdict(self)

    def __repr__(self) -> str:
        lines = [
            "LayerPickConfig(",
            f"  Tree:      order={self.tree.sort_order}, "
            f"suffixes={len(self.tree.weight_suffixes)}",
            f"  Optimizer: use_regex={self.optimizer.use_regex}, "
            f"max_literal_indices={self.optimizer.max_literal_indices}",
            f"  Recipe:    {self.recipe.output} / {self.recipe.modifier} / "
            f"{self.recipe.scheme} / kv={self.recipe.kv_cache_scheme}",
            f"  Selection: auto_ignore_stage={self.selection.auto_ignore_stage}, "
            f"{len(self.selection.patterns)} pattern(s)",
            ")",
        ]
        return "\n".join(lines)
