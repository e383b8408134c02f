"""
Ignore-List Parser
===================
Resolves previously emitted (and possibly hand-edited) ignore-list text
back into a concrete selection.

Accepted input is anything containing a bracketed list of quoted strings,
so both forms produced by `layerpick.output.formatting` work:

    ignore=[
        "lm_head",
        "re:model\\.layers\\.\\d+\\.mlp\\.down_proj",
    ]

    recipe = GPTQModifier(targets="Linear", ignore=["lm_head"], ...)

Only the FIRST `[...]` span is read. Each quoted item is either a literal
path (kept only if it is in the universe) or a `re:` pattern (every
universe path it matches, by `re.search`). Invalid patterns and stale
literals contribute nothing; the parser never raises.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from layerpick.selection.optimizer import REGEX_PREFIX

logger = logging.getLogger(__name__)

_BRACKETED = re.compile(r"\[([^\]]*)\]", re.DOTALL)
_QUOTED = re.compile(r"""["']([^"']+)["']""")


def extract_ignore_items(text: str) -> list[str]:
    """Quoted items of the first bracketed list in `text`, in order."""
    match = _BRACKETED.search(text)
    if match is None:
        return []
    return _QUOTED.findall(match.group(1))


def parse_ignore_items(text: str, all_selectable_paths: Iterable[str]) -> list[str]:
    """
    Resolve ignore-list text against the current universe.

    Parameters
    ----------
    text : str
        Emitted ignore list or recipe text.
    all_selectable_paths : iterable of str
        The universe of selectable leaf paths.

    Returns
    -------
    list[str]
        Deduplicated resolved paths, in first-resolved order.
    """
    universe = list(all_selectable_paths)
    members = set(universe)
    resolved: dict[str, None] = {}

    for item in extract_ignore_items(text):
        if item.startswith(REGEX_PREFIX):
            try:
                pattern = re.compile(item[len(REGEX_PREFIX):])
            except re.error as exc:
                logger.warning(f"Skipping invalid pattern {item!r}: {exc}")
                continue
            for path in universe:
                if pattern.search(path):
                    resolved[path] = None
        elif item in members:
            resolved[item] = None
        else:
            logger.debug(f"Dropping {item!r}: not in the current checkpoint")

    return list(resolved)
