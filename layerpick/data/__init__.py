"""
layerpick.data — Checkpoint Metadata
=====================================
Reads a checkpoint's weight map, config and per-tensor element counts from
local files. This is the on-disk stand-in for fetching the same metadata
from a model hub; the tree pipeline treats both identically.
"""

from layerpick.data.checkpoint import (
    load_config,
    load_tensor_param_counts,
    load_weight_map,
)
