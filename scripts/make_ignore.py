#!/usr/bin/env python3
"""
LayerPick — Ignore List Script
================================
Builds a selection for a local checkpoint and prints it as an llm-compressor
ignore list or full recipe, followed by a quantized-size summary.

The selection comes from the config (auto-ignore stage, patterns, layer
range) plus any --select patterns, or from a previously emitted and
hand-edited ignore list passed with --from-file.

Usage:
    python scripts/make_ignore.py checkpoints/Qwen2.5-7B --stage 2
    python scripts/make_ignore.py checkpoints/Qwen2.5-7B --select "mlp\\.down_proj" --recipe
    python scripts/make_ignore.py checkpoints/Qwen2.5-7B --from-file edited_ignore.txt
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

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"


def resolve_config(config_path=None) -> LayerPickConfig:
    """
    Config for this run.

    An explicit path must exist (FileNotFoundError otherwise). Without one
    the shipped configs/default.yaml is used, or built-in defaults when the
    script runs outside a source checkout.
    """
    if config_path is not None:
        return LayerPickConfig.from_yaml(config_path)
    if DEFAULT_CONFIG.exists():
        return LayerPickConfig.from_yaml(DEFAULT_CONFIG)
    logger.warning(f"{DEFAULT_CONFIG} not found; using built-in defaults")
    return LayerPickConfig()


def main():
    parser = argparse.ArgumentParser(description="LayerPick Ignore List")
    parser.add_argument("checkpoint", type=str,
                        help="Checkpoint directory, index JSON or .safetensors file")
    parser.add_argument("--config", type=str, default=None,
                        help="YAML config (default: configs/default.yaml)")
    parser.add_argument("--stage", type=int, choices=[0, 1, 2, 3], default=None,
                        help="Auto-ignore stage (overrides config)")
    parser.add_argument("--select", action="append", default=[],
                        help="Regex of paths to select (repeatable)")
    parser.add_argument("--from-file", type=str, default=None,
                        help="Resolve the selection from previously emitted text")
    parser.add_argument("--recipe", action="store_true",
                        help="Emit a full recipe instead of a bare ignore list")
    parser.add_argument("--explicit", action="store_true",
                        help="List every path instead of compressing to patterns")
    parser.add_argument("--output", type=str, default=None,
                        help="Write the text to this file as well")
    args = parser.parse_args()

    config = resolve_config(args.config)
    if args.stage is not None:
        config.selection.auto_ignore_stage = args.stage
    config.selection.patterns.extend(args.select)
    if args.recipe:
        config.recipe.output = "recipe"
    if args.explicit:
        config.optimizer.use_regex = False
    config.validate()

    picker = LayerPicker(config)
    view = picker.load(args.checkpoint)

    if args.from_file:
        text = Path(args.from_file).read_text(encoding="utf-8")
        state = picker.selection_from_text(view, text)
        logger.info(f"Resolved {len(state)} modules from {args.from_file}")
    else:
        state = picker.initial_selection(view)

    output = picker.render(view, state)
    print(output)

    if args.output:
        Path(args.output).write_text(output + "\n", encoding="utf-8")
        logger.info(f"Wrote {args.output}")

    estimate = picker.size_estimate(view, state)
    if estimate:
        print(
            f"\n# {format_param_count(estimate.total_params)} params, "
            f"{format_param_count(estimate.ignored_params)} kept FP16\n"
            f"# FP16 {format_bytes(estimate.fp16_bytes)} | "
            f"W8A16 {format_bytes(estimate.w8_bytes)} | "
            f"W4A16 {format_bytes(estimate.w4_bytes)}"
        )


if __name__ == "__main__":
    main()
