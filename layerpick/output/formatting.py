"""
Ignore-List and Recipe Text
============================
Renders a list of ignore items (literal paths and `re:` patterns) in the
two text forms users paste into a quantization script.

1. IGNORE LIST

    ignore=[
        "lm_head",
        "re:model\\.layers\\.\\d+\\.mlp\\.down_proj",
    ]

   An empty list renders as `ignore=[]`.

2. RECIPE — an llm-compressor modifier call:

    from llmcompressor.modifiers.quantization import GPTQModifier

    recipe = GPTQModifier(
        targets="Linear",
        scheme="W4A16",
        ignore=[
        "lm_head",
    ],
        kv_cache_scheme={...},
    )

    # vLLM: load with kv_cache_dtype="fp8"

   SmoothQuantModifier is imported from llmcompressor.modifiers.smoothquant,
   every other modifier from llmcompressor.modifiers.quantization. The
   kv_cache_scheme block and the trailing comment only appear when a KV
   cache preset is chosen.

Both forms are read back by `layerpick.selection.parse_ignore_items`.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence, Union


class Modifier(str, Enum):
    GPTQ = "GPTQModifier"
    QUANTIZATION = "QuantizationModifier"
    SMOOTH_QUANT = "SmoothQuantModifier"


class Scheme(str, Enum):
    W4A16 = "W4A16"
    W8A16 = "W8A16"
    FP8 = "FP8"
    FP8_BLOCK = "FP8_BLOCK"


class KVCacheScheme(str, Enum):
    NONE = "none"
    FP8_TENSOR = "FP8_TENSOR"
    FP8_HEAD = "FP8_HEAD"
    INT8_TENSOR = "INT8_TENSOR"

    @property
    def loader_dtype(self) -> Optional[str]:
        """kv_cache_dtype to pass to vLLM, or None without KV quantization."""
        if self is KVCacheScheme.NONE:
            return None
        return "fp8" if self.value.startswith("FP8") else "int8"


SMOOTHQUANT_IMPORT = "llmcompressor.modifiers.smoothquant"
QUANTIZATION_IMPORT = "llmcompressor.modifiers.quantization"

# (type, strategy) per preset; all presets are 8-bit, static and symmetric
_KV_CACHE_PRESETS: dict[KVCacheScheme, tuple[str, str]] = {
    KVCacheScheme.FP8_TENSOR: ("float", "tensor"),
    KVCacheScheme.FP8_HEAD: ("float", "attn_head"),
    KVCacheScheme.INT8_TENSOR: ("int", "tensor"),
}


def _parse_enum(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValueError(
            f"Unknown {enum_cls.__name__}: '{value}'. Choose from: {choices}"
        ) from None


def format_string_list(items: Sequence[str]) -> str:
    """Bracketed list, one four-space-indented quoted item per line."""
    if not items:
        return "[]"
    inner = "\n".join(f'    "{item}",' for item in items)
    return f"[\n{inner}\n]"


def format_ignore_list(items: Sequence[str]) -> str:
    """Render `items` as an `ignore=[...]` assignment."""
    return f"ignore={format_string_list(items)}"


def format_kv_cache_scheme(kv_cache_scheme: Union[KVCacheScheme, str]) -> Optional[str]:
    """The `kv_cache_scheme={...}` recipe argument, or None for "none"."""
    preset = _KV_CACHE_PRESETS.get(_parse_enum(KVCacheScheme, kv_cache_scheme))
    if preset is None:
        return None
    kind, strategy = preset
    return (
        "    kv_cache_scheme={\n"
        '        "num_bits": 8,\n'
        f'        "type": "{kind}",\n'
        f'        "strategy": "{strategy}",\n'
        '        "dynamic": False,\n'
        '        "symmetric": True,\n'
        "    }"
    )


def format_recipe(
    items: Sequence[str],
    modifier: Union[Modifier, str] = Modifier.GPTQ,
    scheme: Union[Scheme, str] = Scheme.W4A16,
    kv_cache_scheme: Union[KVCacheScheme, str] = KVCacheScheme.NONE,
) -> str:
    """
    Render an llm-compressor recipe that ignores `items`.

    Parameters
    ----------
    items : sequence of str
        Ignore items (literal paths and `re:` patterns).
    modifier : Modifier or str
        Modifier class name, e.g. "GPTQModifier".
    scheme : Scheme or str
        Quantization scheme, e.g. "W4A16".
    kv_cache_scheme : KVCacheScheme or str
        KV cache preset, or "none".

    Returns
    -------
    str
        Python source for the recipe.

    Raises
    ------
    ValueError
        If modifier, scheme or KV preset is not one of the known values.
    """
    modifier = _parse_enum(Modifier, modifier)
    scheme = _parse_enum(Scheme, scheme)
    kv_cache_scheme = _parse_enum(KVCacheScheme, kv_cache_scheme)

    import_path = (
        SMOOTHQUANT_IMPORT if modifier is Modifier.SMOOTH_QUANT else QUANTIZATION_IMPORT
    )

    args = [
        '    targets="Linear"',
        f'    scheme="{scheme.value}"',
        f"    ignore={format_string_list(items)}",
    ]
    kv_block = format_kv_cache_scheme(kv_cache_scheme)
    if kv_block:
        args.append(kv_block)

    note = ""
    if kv_cache_scheme.loader_dtype:
        note = f'\n\n# vLLM: load with kv_cache_dtype="{kv_cache_scheme.loader_dtype}"'

    joined = ",\n".join(args)
    return (
        f"from {import_path} import {modifier.value}\n"
        f"\n"
        f"recipe = {modifier.value}(\n"
        f"{joined},\n"
        f"){note}"
    )
