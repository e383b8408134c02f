"""
layerpick.selection — Selection Compression & Resolution
=========================================================
A selection is a set of selectable leaf paths ("keep these modules out of
quantization"). This subpackage moves it between its two shapes:

    1. **Optimizer** (`optimizer.py`):
       Explicit paths → literal paths + `re:` patterns, grouped by
       layer-index template.

    2. **Ignore parser** (`ignore_parser.py`):
       Emitted (or hand-edited) ignore-list text → explicit paths,
       resolved against the current universe.

    3. **State** (`state.py`):
       Immutable selection value with toggle / pattern / range edits,
       reconciliation against a new universe, and the staged
       auto-ignore heuristic.

Round Trip:
    selection
        → optimize_selection(...).optimized
        → format_ignore_list(...)
        → parse_ignore_items(..., universe)
        → the same selection
"""

from layerpick.selection.optimizer import (
    REGEX_PREFIX,
    OptimizedSelection,
    Template,
    escape_regex,
    optimize_selection,
    to_template,
)
from layerpick.selection.ignore_parser import extract_ignore_items, parse_ignore_items
from layerpick.selection.state import (
    QUICK_SELECT_PATTERNS,
    SelectionState,
    auto_ignore,
    layer_index,
    max_layer_index,
)
