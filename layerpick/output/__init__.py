"""
layerpick.output — Emitted Text & Estimates
============================================
Everything that turns a selection into something a user copies out:

    - formatting.py — `ignore=[...]` lists and llm-compressor recipes
    - estimates.py  — quantized weight size, KV cache size, and the
                      byte / parameter-count formatters used to show them
"""

from layerpick.output.formatting import (
    KVCacheScheme,
    Modifier,
    Scheme,
    format_ignore_list,
    format_kv_cache_scheme,
    format_recipe,
    format_string_list,
)
from layerpick.output.estimates import (
    KVCacheEstimate,
    QuantSizeEstimate,
    estimate_kv_cache,
    estimate_quantized_size,
    format_bytes,
    format_param_count,
)
