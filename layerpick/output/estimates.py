"""
Size Estimates
===============
Back-of-the-envelope memory numbers shown next to an ignore list.

1. QUANTIZED WEIGHT SIZE
   Given per-leaf element counts and the ignored (kept-in-FP16) leaves:
       FP16  = total × 2 B
       W8A16 = ignored × 2 B + quantized × 1 B
       W4A16 = ignored × 2 B + quantized × 0.5 B

2. KV CACHE SIZE
   Per context length, from the architecture config:
       2 (K and V) × attention_layers × kv_heads × head_dim × seq_len × bytes

   Hybrid models (`full_attention_interval` > 1, e.g. Qwen3-Next) only
   grow a KV cache on every Nth layer. The remaining linear-attention
   layers hold a fixed recurrent state of
       key_heads × key_dim × value_dim
   elements per layer, independent of context length.

Config fields are read from the top level first, then from `text_config`
(multimodal checkpoints nest the language model's settings there).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Collection, Mapping, Optional

KV_CACHE_CONTEXTS: tuple[tuple[int, str], ...] = (
    (32_768, "32k"),
    (65_536, "64k"),
    (131_072, "128k"),
)


# ─── Formatting ─────────────────────────────────────────────────────────

def format_bytes(n_bytes: float) -> str:
    """Human-readable byte size (1024-based)."""
    if n_bytes >= 1024 ** 3:
        return f"{n_bytes / 1024 ** 3:.2f} GB"
    if n_bytes >= 1024 ** 2:
        return f"{n_bytes / 1024 ** 2:.1f} MB"
    if n_bytes >= 1024:
        return f"{n_bytes / 1024:.1f} KB"
    return f"{int(n_bytes)} B"


def format_param_count(count: int) -> str:
    """Human-readable element count: 1.5K, 7.2M, 1.10B."""
    if count >= 1e9:
        return f"{count / 1e9:.2f}B"
    if count >= 1e6:
        return f"{count / 1e6:.1f}M"
    if count >= 1e3:
        return f"{count / 1e3:.1f}K"
    return str(count)


# ─── Quantized weight size ──────────────────────────────────────────────

@dataclass(frozen=True)
class QuantSizeEstimate:
    """Parameter totals and weight sizes for one selection."""
    total_params: int
    ignored_params: int
    quantized_params: int
    fp16_bytes: float
    w8_bytes: float
    w4_bytes: float


def estimate_quantized_size(
    leaf_param_counts: Mapping[str, int],
    selected: Collection[str],
) -> Optional[QuantSizeEstimate]:
    """
    Weight sizes when `selected` leaves stay FP16 and the rest are quantized.

    Parameters
    ----------
    leaf_param_counts : Mapping[str, int]
        Selectable leaf path → element count (see `collect_leaf_param_counts`).
    selected : collection of str
        Ignored leaf paths.

    Returns
    -------
    QuantSizeEstimate or None
        None when no counts are available.
    """
    if not leaf_param_counts:
        return None

    selected = set(selected)
    total = sum(leaf_param_counts.values())
    ignored = sum(c for p, c in leaf_param_counts.items() if p in selected)
    quantized = total - ignored

    return QuantSizeEstimate(
        total_params=total,
        ignored_params=ignored,
        quantized_params=quantized,
        fp16_bytes=total * 2,
        w8_bytes=ignored * 2 + quantized * 1,
        w4_bytes=ignored * 2 + quantized * 0.5,
    )


# ─── KV cache ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KVCacheEstimate:
    """
    KV cache size at one context length.

    Parameters
    ----------
    seq_len : int
        Context length in tokens.
    label : str
        Short label, e.g. "32k".
    fp16_bytes : int
        KV cache plus linear-attention state at 2 bytes per element.
    fp8_bytes : int
        Same at 1 byte per element.
    linear_state_fp16 : int
        Fixed-size linear-attention state (FP16 bytes); 0 for pure
        attention models.
    """
    seq_len: int
    label: str
    fp16_bytes: int
    fp8_bytes: int
    linear_state_fp16: int


def _config_value(config: Mapping[str, Any], key: str) -> Any:
    value = config.get(key)
    if value is None:
        value = (config.get("text_config") or {}).get(key)
    return value


def estimate_kv_cache(config: Mapping[str, Any]) -> Optional[list[KVCacheEstimate]]:
    """
    KV cache size at 32k, 64k and 128k tokens.

    Parameters
    ----------
    config : Mapping
        Architecture config (the contents of config.json).

    Returns
    -------
    list[KVCacheEstimate] or None
        None when the layer count, hidden size or head count is missing.
    """
    total_layers = _config_value(config, "num_hidden_layers")
    hidden = _config_value(config, "hidden_size")
    heads = _config_value(config, "num_attention_heads")
    if not total_layers or not hidden or not heads:
        return None

    kv_heads = _config_value(config, "num_key_value_heads") or heads
    head_dim = _config_value(config, "head_dim") or hidden // heads

    interval = _config_value(config, "full_attention_interval")
    attn_layers = total_layers // interval if interval and interval > 1 else total_layers
    linear_layers = total_layers - attn_layers

    linear_state_fp16 = 0
    key_heads = _config_value(config, "linear_num_key_heads")
    key_dim = _config_value(config, "linear_key_head_dim")
    value_dim = _config_value(config, "linear_value_head_dim")
    if linear_layers > 0 and key_heads and key_dim and value_dim:
        linear_state_fp16 = linear_layers * key_heads * key_dim * value_dim * 2

    estimates = []
    for seq_len, label in KV_CACHE_CONTEXTS:
        elements = 2 * attn_layers * kv_heads * head_dim * seq_len
        estimates.append(
            KVCacheEstimate(
                seq_len=seq_len,
                label=label,
                fp16_bytes=elements * 2 + linear_state_fp16,
                fp8_bytes=elements + linear_state_fp16 // 2,
                linear_state_fp16=linear_state_fp16,
            )
        )
    return estimates
