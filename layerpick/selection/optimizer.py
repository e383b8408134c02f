"""
Selection Optimizer
====================
Compresses a set of selected leaf paths into a short list of literal
paths and `re:` patterns that resolve back to exactly the same set.

The heuristics are tuned for layer-indexed module names, not for
arbitrary strings:

1. TEMPLATING
   "model.layers.17.mlp.down_proj" → template ("model.layers.", ".mlp.down_proj")
   with index 17. The index is the LAST all-digit segment that has at
   least one segment on each side. Paths with no such segment
   ("lm_head", "model.norm") stay literals.

2. PER-TEMPLATE DECISION
   Let k = selected indices for a template and n = universe paths that
   share the template.
   - k == n  → one wildcard:    re:model\\.layers\\.\\d+\\.mlp\\.down_proj
               (n == 1 stays a literal; a pattern for one path saves nothing)
   - k <= 3  → k literal paths
   - else    → one alternation: re:model\\.layers\\.(0|5|10)\\.mlp\\.down_proj
   Contiguous index runs get the same alternation; no range syntax is
   produced.

3. VERIFICATION
   Every emitted pattern is resolved against the universe with the same
   matching rule the ignore-list parser uses (`re.search`). If it would
   pick up anything outside its group (e.g. "visual.model.layers.3..."
   next to "model.layers.3..."), the group falls back to literals.

Output order: non-templated literals first, then one block per template
in first-seen order.

Usage:
    >>> universe = [f"model.layers.{i}.mlp.down_proj" for i in range(32)]
    >>> optimize_selection(universe, universe).optimized
    ['re:model\\\\.layers\\\\.\\\\d+\\\\.mlp\\\\.down_proj']
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)

REGEX_PREFIX = "re:"
DEFAULT_MAX_LITERAL_INDICES = 3

_TEMPLATE_PATTERN = re.compile(r"(.+\.)(\d+)(\..+)")
_REGEX_SPECIALS = re.compile(r"[.*+?^${}()|\[\]\\]")


def escape_regex(text: str) -> str:
    """
    Backslash-escape regex metacharacters.

    Narrower than `re.escape`: "-", "_" and whitespace are left alone so
    emitted patterns stay readable.
    """
    return _REGEX_SPECIALS.sub(lambda m: "\\" + m.group(0), text)


class Template(NamedTuple):
    """A module path with one layer index abstracted out."""
    prefix: str
    suffix: str


def to_template(path: str) -> Optional[tuple[Template, int]]:
    """
    Split a path into its template and layer index.

    Returns None when the path has no all-digit segment with a segment on
    each side of it.
    """
    match = _TEMPLATE_PATTERN.fullmatch(path)
    if match is None:
        return None
    prefix, index, suffix = match.groups()
    return Template(prefix, suffix), int(index)


@dataclass
class _TemplateGroup:
    template: Template
    paths: list[str] = field(default_factory=list)
    indices: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class OptimizedSelection:
    """
    Both output forms of `optimize_selection`.

    Parameters
    ----------
    explicit : list[str]
        The selection unchanged, one literal per path.
    optimized : list[str]
        Literal paths and `re:` patterns resolving to the same set.
    """
    explicit: list[str]
    optimized: list[str]

    def items(self, use_regex: bool = True) -> list[str]:
        return self.optimized if use_regex else self.explicit


def _wildcard_rule(template: Template) -> str:
    return f"{REGEX_PREFIX}{escape_regex(template.prefix)}\\d+{escape_regex(template.suffix)}"


def _alternation_rule(template: Template, indices: Sequence[int]) -> str:
    alternation = "|".join(str(i) for i in indices)
    return (
        f"{REGEX_PREFIX}{escape_regex(template.prefix)}"
        f"({alternation}){escape_regex(template.suffix)}"
    )


def _is_contiguous(indices: Sequence[int]) -> bool:
    return all(b == a + 1 for a, b in zip(indices, indices[1:]))


def _resolves_exactly(rule: str, expected: set[str], universe: Sequence[str]) -> bool:
    pattern = re.compile(rule[len(REGEX_PREFIX):])
    return {p for p in universe if pattern.search(p)} == expected


def optimize_selection(
    selected_paths: Iterable[str],
    all_selectable_paths: Sequence[str],
    max_literal_indices: int = DEFAULT_MAX_LITERAL_INDICES,
) -> OptimizedSelection:
    """
    Compress a selection into literal paths and `re:` patterns.

    Parameters
    ----------
    selected_paths : iterable of str
        Selected leaf paths; should be a subset of `all_selectable_paths`.
    all_selectable_paths : sequence of str
        The universe of selectable leaf paths.
    max_literal_indices : int
        Partial template groups up to this size are listed as literals.

    Returns
    -------
    OptimizedSelection
        The explicit form and the optimized form.
    """
    selected = list(dict.fromkeys(selected_paths))
    if not selected:
        return OptimizedSelection(explicit=[], optimized=[])

    literals: list[str] = []
    groups: dict[Template, _TemplateGroup] = {}

    for path in selected:
        parsed = to_template(path)
        if parsed is None:
            literals.append(path)
            continue
        template, index = parsed
        group = groups.setdefault(template, _TemplateGroup(template))
        group.paths.append(path)
        group.indices.append(index)

    universe_counts: dict[Template, int] = {}
    for path in all_selectable_paths:
        parsed = to_template(path)
        if parsed is not None:
            template = parsed[0]
            universe_counts[template] = universe_counts.get(template, 0) + 1

    optimized = list(literals)

    for template, group in groups.items():
        members = sorted(zip(group.indices, group.paths))
        indices = [index for index, _ in members]
        ordered_paths = [path for _, path in members]
        total = universe_counts.get(template, 0)

        if len(indices) == total and total > 1:
            rule = _wildcard_rule(template)
        elif len(indices) <= max_literal_indices:
            optimized.extend(ordered_paths)
            continue
        else:
            # contiguous and scattered runs share one output form
            logger.debug(
                f"{template.prefix}*{template.suffix}: {len(indices)}/{total} "
                f"indices (contiguous={_is_contiguous(indices)})"
            )
            rule = _alternation_rule(template, indices)

        if _resolves_exactly(rule, set(group.paths), all_selectable_paths):
            optimized.append(rule)
        else:
            logger.debug(f"Pattern {rule} over-matches the universe; using literals")
            optimized.extend(ordered_paths)

    logger.info(
        f"Optimized {len(selected):,} selected paths into {len(optimized):,} rules"
    )
    return OptimizedSelection(explicit=selected, optimized=optimized)
