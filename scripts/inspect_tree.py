#!/usr/bin/env python3
"""
LayerPick — Tree Inspection Script
====================================
Prints the module tree of a local checkpoint with semantic roles and
element counts, followed by a KV cache estimate when the checkpoint ships
a config.json.

Usage:
    python scripts/inspect_tree.py checkpoints/Qwen2.5-7B
    python scripts/inspect_tree.py checkpoints/Qwen2.5-7B --order weight-file --depth 4
    python scripts/inspect_tree.py model.safetensors.index.json --no-counts
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from layerpick.config import LayerPickConfig
from layerpick.output.estimates import format_bytes, format_param_count
from layerpick.pipeline import LayerPicker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def print_tree(nodes, depth: int, indent: int = 0) -> None:
    for node in nodes:
        count = ""
        if node.param_count is not None:
            count = f"  [{format_param_count(node.param_count)}]"
        marker = "*" if node.is_selectable else " "
        print(f"{'  ' * indent}{marker} {node.name} ({node.role.value}){count}")
        if indent + 1 < depth:
            print_tree(node.children, depth, indent + 1)


def main():
    parser = argparse.ArgumentParser(description="LayerPick Tree Inspection")
    parser.add_argument("checkpoint", type=str,
                        help="Checkpoint directory, index JSON or .safetensors file")
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--order", choices=["weight-file", "forward-pass"], default=None,
                        help="Sibling order (overrides config)")
    parser.add_argument("--depth", type=int, default=100,
                        help="Maximum depth to print")
    parser.add_argument("--no-counts", action="store_true",
                        help="Skip reading element counts from shard headers")
    args = parser.parse_args()

    config = LayerPickConfig.from_yaml(args.config) if args.config else LayerPickConfig()
    if args.order:
        config.tree.sort_order = args.order

    picker = LayerPicker(config)
    view = picker.load(args.checkpoint, with_counts=not args.no_counts)

    print_tree(view.tree, args.depth)
    print(f"\n{len(view.universe):,} selectable modules (marked *)")

    kv = picker.kv_cache_estimate(view)
    if kv:
        print("\nKV cache:")
        for estimate in kv:
            print(
                f"  {estimate.label:>5}: FP16 {format_bytes(estimate.fp16_bytes)}, "
                f"FP8 {format_bytes(estimate.fp8_bytes)}"
            )


if __name__ == "__main__":
    main()
