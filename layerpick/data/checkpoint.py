"""
Local Checkpoint Source
========================
Reads the three inputs the tree pipeline needs from a checkpoint on disk:

    1. weight map   — tensor name → shard file
    2. config       — architecture settings (config.json), optional
    3. param counts — tensor name → element count, optional

Only metadata is touched. Element counts come from the safetensors header
(each tensor's shape); no tensor data is read.

Lookup order for the weight map:
    model.safetensors.index.json
    pytorch_model.bin.index.json
    every *.safetensors file in the directory (or the single file given)

Usage:
    >>> weight_map = load_weight_map("checkpoints/Qwen2.5-7B")
    >>> counts = load_tensor_param_counts("checkpoints/Qwen2.5-7B", weight_map)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import numpy as np
from safetensors import SafetensorError, safe_open

logger = logging.getLogger(__name__)

INDEX_FILENAMES = (
    "model.safetensors.index.json",
    "pytorch_model.bin.index.json",
)
CONFIG_FILENAME = "config.json"


def _checkpoint_dir(path: Path) -> Path:
    return path if path.is_dir() else path.parent


def _read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _read_header_shapes(shard: Path) -> dict[str, list[int]]:
    """Tensor name → shape from one safetensors header."""
    shapes = {}
    with safe_open(str(shard), framework="numpy") as f:
        for name in f.keys():
            shapes[name] = f.get_slice(name).get_shape()
    return shapes


def _read_index(index_path: Path) -> dict[str, str]:
    index = _read_json(index_path)
    if not isinstance(index, dict) or not isinstance(index.get("weight_map"), dict):
        raise ValueError(
            f"{index_path} has no 'weight_map' object; expected a Hugging Face "
            f"sharded-checkpoint index"
        )
    logger.info(f"Loaded weight map from {index_path}")
    return dict(index["weight_map"])


def load_weight_map(path: Union[str, Path]) -> dict[str, str]:
    """
    Load the tensor name → shard mapping of a checkpoint.

    Parameters
    ----------
    path : str or Path
        Checkpoint directory, an index JSON file, or a single
        .safetensors file.

    Returns
    -------
    dict[str, str]
        Tensor name → shard file name (relative to the checkpoint directory).

    Raises
    ------
    FileNotFoundError
        If `path` does not exist.
    ValueError
        If no index file or safetensors shard can be found, or an index
        file has no "weight_map".
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")

    if path.is_file() and path.suffix == ".json":
        return _read_index(path)

    if path.is_dir():
        for filename in INDEX_FILENAMES:
            index_path = path / filename
            if index_path.exists():
                return _read_index(index_path)
        shards = sorted(path.glob("*.safetensors"))
    else:
        shards = [path] if path.suffix == ".safetensors" else []

    if not shards:
        raise ValueError(
            f"No index file or .safetensors shard found at {path}. "
            f"Expected one of: {', '.join(INDEX_FILENAMES)}"
        )

    weight_map = {}
    for shard in shards:
        for name in _read_header_shapes(shard):
            weight_map[name] = shard.name

    logger.info(f"Built weight map from {len(shards)} shard header(s)")
    return weight_map


def load_config(path: Union[str, Path]) -> Optional[dict[str, Any]]:
    """The checkpoint's config.json as a dict, or None if there is none."""
    config_path = _checkpoint_dir(Path(path)) / CONFIG_FILENAME
    if not config_path.exists():
        return None
    return _read_json(config_path)


def load_tensor_param_counts(
    path: Union[str, Path],
    weight_map: Mapping[str, str],
) -> dict[str, int]:
    """
    Element count of every tensor, from safetensors headers.

    Shards that are missing, are not safetensors (.bin), or fail to parse
    are skipped with a warning, so the result may be partial.

    Parameters
    ----------
    path : str or Path
        Checkpoint directory (or any file inside it).
    weight_map : Mapping[str, str]
        Tensor name → shard file, from `load_weight_map`.

    Returns
    -------
    dict[str, int]
        Tensor name → number of elements.
    """
    root = _checkpoint_dir(Path(path))
    counts: dict[str, int] = {}

    for shard_name in sorted(set(weight_map.values())):
        shard = root / shard_name
        if shard.suffix != ".safetensors" or not shard.exists():
            logger.warning(f"Skipping shard {shard_name}: no safetensors header available")
            continue
        try:
            shapes = _read_header_shapes(shard)
        except (SafetensorError, OSError) as exc:
            logger.warning(f"Skipping shard {shard_name}: {exc}")
            continue
        for name, shape in shapes.items():
            counts[name] = int(np.prod(shape, dtype=np.int64))

    logger.info(f"Read element counts for {len(counts):,} tensors")
    return counts
