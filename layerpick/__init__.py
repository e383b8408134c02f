"""
LayerPick
=========
Turns the flat tensor-name namespace of a large checkpoint into a
navigable module tree, and turns a user-chosen subset of that tree's
leaves into a compact ignore list for quantization recipes.

This package provides:
    1. Building a role-labelled module tree from a name → shard mapping
    2. Re-ordering that tree into forward-pass order
    3. Attaching per-module element counts and summing them bottom-up
    4. Compressing a leaf selection into literal paths and `re:` patterns
    5. Resolving previously emitted ignore lists back into a selection

Every tree-producing step returns a new tree; nothing is mutated in place,
so a raw tree and a count-annotated tree can be held side by side.

Quick Start:
    >>> from layerpick.tree import parse_weight_map, collect_selectable_paths
    >>> from layerpick.selection import optimize_selection
    >>> from layerpick.output import format_ignore_list
    >>> tree = parse_weight_map({"lm_head.weight": "model.safetensors"})
    >>> universe = collect_selectable_paths(tree)
    >>> print(format_ignore_list(optimize_selection(universe, universe).optimized))
    ignore=[
        "lm_head",
    ]

Subpackages:
    - layerpick.tree      — Normalizer, trie, role classifier, ordering, counts
    - layerpick.selection — Selection optimizer, ignore-list parser, selection ops
    - layerpick.output    — Ignore-list / recipe text and size estimates
    - layerpick.data      — Local checkpoint index and header readers
"""

__version__ = "0.1.0"
