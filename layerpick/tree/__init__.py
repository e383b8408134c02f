"""
layerpick.tree — Module Tree Construction
==========================================
This subpackage turns a flat set of tensor names into a tree of typed
LayerNode values:

    1. **Paths** (`paths.py`):
       Strips weight-tensor suffixes (".weight", ".bias", ...) so that all
       tensors of one module collapse onto a single module path.

    2. **Trie** (`trie.py`):
       Builds a prefix tree keyed by dot-separated path segments.

    3. **Roles** (`roles.py`):
       Labels each segment as embedding / attention / mlp / norm / head /
       vision / group with an ordered rule cascade.

    4. **Builder** (`builder.py`):
       Materializes the trie into LayerNode values and collapses numbered
       layers into numeric order.

    5. **Ordering** (`ordering.py`):
       Re-sorts every sibling list into forward-pass order.

    6. **Counts** (`counts.py`):
       Attaches per-module element counts and sums them bottom-up.

Information Flow:
    {tensor name: shard}
        → strip_weight_suffix + dedup + sort
        → build_trie
        → trie_to_nodes (classify_segment per node)
        → collapse_numbered_layers
        → [sort_forward_pass] [attach_param_counts]
"""

from layerpick.tree.roles import Role, classify_segment
from layerpick.tree.nodes import LayerNode
from layerpick.tree.paths import WEIGHT_SUFFIXES, strip_weight_suffix, module_paths
from layerpick.tree.trie import TrieNode, build_trie
from layerpick.tree.builder import (
    trie_to_nodes,
    collapse_numbered_layers,
    parse_weight_map,
)
from layerpick.tree.ordering import forward_pass_priority, sort_forward_pass
from layerpick.tree.counts import (
    attach_param_counts,
    module_param_counts,
    collect_leaf_param_counts,
    collect_selectable_paths,
    iter_nodes,
)
