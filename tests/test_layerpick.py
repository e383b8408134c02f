#!/usr/bin/env python3
"""
Tests for LayerPick tree construction, ordering, counts, selection
compression, ignore-list resolution, output text, and the checkpoint
pipeline.

Run all tests:
    python -m pytest tests/ -v --tb=short

Run one group:
    python -m pytest tests/test_layerpick.py -v -k TestOptimizer
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


LLAMA_LAYER_MODULES = (
    "self_attn.q_proj",
    "self_attn.k_proj",
    "self_attn.v_proj",
    "self_attn.o_proj",
    "mlp.gate_proj",
    "mlp.up_proj",
    "mlp.down_proj",
    "input_layernorm",
    "post_attention_layernorm",
)


def llama_weight_map(n_layers: int = 2) -> dict:
    """Weight map of a small Llama-style checkpoint."""
    names = ["model.embed_tokens.weight", "model.norm.weight", "lm_head.weight"]
    for i in range(n_layers):
        for module in LLAMA_LAYER_MODULES:
            names.append(f"model.layers.{i}.{module}.weight")
        names.append(f"model.layers.{i}.self_attn.q_proj.bias")
    return {name: "model-00001-of-00001.safetensors" for name in names}


def llama_universe(n_layers: int = 2) -> list:
    from layerpick.tree import parse_weight_map, collect_selectable_paths
    return collect_selectable_paths(parse_weight_map(llama_weight_map(n_layers)))


def find(nodes, *names):
    """Walk down the tree by segment names."""
    node = None
    for name in names:
        node = next(n for n in nodes if n.name == name)
        nodes = node.children
    return node


# =============================================================================
# Path Normalizer Tests
# =============================================================================

class TestPaths:
    """Tests for weight-suffix stripping."""

    def test_strips_weight_and_bias(self):
        from layerpick.tree.paths import strip_weight_suffix
        assert strip_weight_suffix("model.norm.weight") == "model.norm"
        assert strip_weight_suffix("model.layers.0.mlp.up_proj.bias") == "model.layers.0.mlp.up_proj"

    def test_strips_quantization_suffixes(self):
        """Quantized checkpoints carry .scales / .zero_point / .weight_scale."""
        from layerpick.tree.paths import strip_weight_suffix
        assert strip_weight_suffix("a.q_proj.weight_scale") == "a.q_proj"
        assert strip_weight_suffix("a.q_proj.scales") == "a.q_proj"
        assert strip_weight_suffix("a.q_proj.zero_point") == "a.q_proj"

    def test_unknown_suffix_unchanged(self):
        from layerpick.tree.paths import strip_weight_suffix
        assert strip_weight_suffix("model.rotary_emb.inv_freq") == "model.rotary_emb.inv_freq"

    def test_module_paths_dedup_and_sort(self):
        """Tensors of one module collapse onto one sorted path."""
        from layerpick.tree.paths import module_paths
        names = ["b.weight", "a.weight", "a.bias"]
        assert module_paths(names) == ["a", "b"]


# =============================================================================
# Role Classifier Tests
# =============================================================================

class TestRoles:
    """Tests for the ordered role cascade."""

    def test_norm_before_attention(self):
        """post_attention_layernorm contains 'attention' but is a norm."""
        from layerpick.tree.roles import Role, classify_segment
        role = classify_segment(
            "post_attention_layernorm", "model.layers.0.post_attention_layernorm"
        )
        assert role == Role.NORM

    def test_embeddings(self):
        from layerpick.tree.roles import Role, classify_segment
        assert classify_segment("embed_tokens", "model.embed_tokens") == Role.EMBEDDING
        assert classify_segment("wte", "transformer.wte") == Role.EMBEDDING
        assert classify_segment("WPE", "transformer.WPE") == Role.EMBEDDING

    def test_head(self):
        from layerpick.tree.roles import Role, classify_segment
        assert classify_segment("lm_head", "lm_head") == Role.HEAD
        assert classify_segment("score", "score") == Role.HEAD

    def test_attention_projection_aliases(self):
        from layerpick.tree.roles import Role, classify_segment
        assert classify_segment("q_proj", "model.layers.0.self_attn.q_proj") == Role.ATTENTION
        assert classify_segment(
            "query", "bert.encoder.layer.0.attention.self.query"
        ) == Role.ATTENTION

    def test_attention_container_keeps_role(self):
        from layerpick.tree.roles import Role, classify_segment
        assert classify_segment("self_attn", "model.layers.0.self_attn") == Role.ATTENTION

    def test_mlp_aliases(self):
        from layerpick.tree.roles import Role, classify_segment
        assert classify_segment("gate_proj", "model.layers.0.mlp.gate_proj") == Role.MLP
        assert classify_segment("mlp", "model.layers.0.mlp") == Role.MLP
        assert classify_segment(
            "dense_4h_to_h", "gpt_neox.layers.0.mlp.dense_4h_to_h"
        ) == Role.MLP

    def test_c_proj_needs_mlp_context(self):
        """GPT-2's c_proj lives under both attn and mlp; only the mlp one is MLP."""
        from layerpick.tree.roles import Role, classify_segment
        assert classify_segment("c_proj", "transformer.h.0.mlp.c_proj") == Role.MLP
        assert classify_segment("c_proj", "transformer.h.0.attn.c_proj") == Role.GROUP

    def test_vision_from_full_path(self):
        from layerpick.tree.roles import Role, classify_segment
        assert classify_segment("blocks", "visual.blocks") == Role.VISION
        assert classify_segment("qkv", "visual.blocks.0.attn.qkv") == Role.VISION
        # embedding check comes first
        assert classify_segment("patch_embed", "visual.patch_embed") == Role.EMBEDDING

    def test_default_group(self):
        from layerpick.tree.roles import Role, classify_segment
        assert classify_segment("layers", "model.layers") == Role.GROUP
        assert classify_segment("0", "model.layers.0") == Role.GROUP

    def test_idempotent(self):
        from layerpick.tree.roles import classify_segment
        args = ("o_proj", "model.layers.3.self_attn.o_proj")
        assert classify_segment(*args) == classify_segment(*args)


# =============================================================================
# Trie & Materializer Tests
# =============================================================================

class TestTrie:
    """Tests for trie construction."""

    def test_shared_prefix(self):
        from layerpick.tree.trie import build_trie
        root = build_trie(["a", "a.b", "a.c"])
        a = root.children["a"]
        assert a.is_terminal
        assert a.full_path == "a"
        assert list(a.children) == ["b", "c"]
        assert a.children["b"].full_path == "a.b"
        assert not root.is_terminal


class TestBuilder:
    """Tests for materialization and numbered-layer collapse."""

    def test_numbered_collapse_order(self):
        """Non-numbered first, then ascending by integer value."""
        from layerpick.tree.builder import collapse_numbered_layers
        from layerpick.tree.nodes import LayerNode
        nodes = [LayerNode(id=n, name=n, full_path=n) for n in ["10", "2", "1", "mlp"]]
        collapsed = collapse_numbered_layers(nodes)
        assert [n.name for n in collapsed] == ["mlp", "1", "2", "10"]
        # input untouched
        assert [n.name for n in nodes] == ["10", "2", "1", "mlp"]

    def test_numbered_collapse_recurses(self):
        from layerpick.tree import parse_weight_map
        weight_map = {f"model.layers.{i}.mlp.weight": "s" for i in (10, 2, 1)}
        tree = parse_weight_map(weight_map)
        layers = find(tree, "model", "layers")
        assert [n.name for n in layers.children] == ["1", "2", "10"]

    def test_collapse_preserves_identity(self):
        from layerpick.tree import parse_weight_map
        from layerpick.tree.builder import collapse_numbered_layers
        tree = parse_weight_map(llama_weight_map(3))
        again = collapse_numbered_layers(tree)
        assert again == tree

    def test_terminus_with_children_not_selectable(self):
        """A module with its own tensors AND sub-modules is not selectable."""
        from layerpick.tree import parse_weight_map, collect_selectable_paths
        tree = parse_weight_map({"a.weight": "s", "a.b.weight": "s"})
        a = find(tree, "a")
        assert not a.is_selectable
        assert a.children[0].is_selectable
        assert collect_selectable_paths(tree) == ["a.b"]

    def test_container_keeps_classified_role(self):
        from layerpick.tree import parse_weight_map, Role
        tree = parse_weight_map(llama_weight_map(1))
        attn = find(tree, "model", "layers", "0", "self_attn")
        assert attn.role == Role.ATTENTION
        assert attn.id == attn.full_path == "model.layers.0.self_attn"
        assert find(tree, "model", "layers").role == Role.GROUP

    def test_bias_and_weight_share_a_leaf(self):
        from layerpick.tree import parse_weight_map, collect_selectable_paths
        universe = collect_selectable_paths(parse_weight_map(llama_weight_map(1)))
        assert universe.count("model.layers.0.self_attn.q_proj") == 1
        assert len(universe) == 3 + len(LLAMA_LAYER_MODULES)

    def test_empty_weight_map(self):
        from layerpick.tree import parse_weight_map
        assert parse_weight_map({}) == []


# =============================================================================
# Forward-Pass Ordering Tests
# =============================================================================

class TestOrdering:
    """Tests for forward-pass sibling ordering."""

    def test_within_layer_order(self):
        from layerpick.tree import parse_weight_map, sort_forward_pass
        tree = sort_forward_pass(parse_weight_map(llama_weight_map(1)))
        layer = find(tree, "model", "layers", "0")
        names = [n.name for n in layer.children]
        assert names == ["input_layernorm", "self_attn", "post_attention_layernorm", "mlp"]

    def test_top_level_order(self):
        from layerpick.tree import parse_weight_map, sort_forward_pass
        tree = sort_forward_pass(parse_weight_map(llama_weight_map(1)))
        assert [n.name for n in tree] == ["model", "lm_head"]
        assert [n.name for n in find(tree, "model").children] == ["embed_tokens", "layers", "norm"]

    def test_vision_connector_order(self):
        from layerpick.tree import sort_forward_pass
        from layerpick.tree.nodes import LayerNode
        names = ["lm_head", "model", "multi_modal_projector", "vision_tower", "embed_tokens"]
        nodes = [LayerNode(id=n, name=n, full_path=n) for n in names]
        ordered = [n.name for n in sort_forward_pass(nodes)]
        assert ordered == ["embed_tokens", "vision_tower", "multi_modal_projector", "model", "lm_head"]

    def test_numbered_layers_stay_numeric(self):
        """Equal priority keeps the numeric order from the collapse pass."""
        from layerpick.tree import parse_weight_map, sort_forward_pass
        tree = sort_forward_pass(parse_weight_map(llama_weight_map(12)))
        layers = find(tree, "model", "layers")
        assert [n.name for n in layers.children] == [str(i) for i in range(12)]

    def test_idempotent(self):
        from layerpick.tree import parse_weight_map, sort_forward_pass
        once = sort_forward_pass(parse_weight_map(llama_weight_map(3)))
        assert sort_forward_pass(once) == once

    def test_structure_preserved(self):
        from layerpick.tree import parse_weight_map, sort_forward_pass, iter_nodes
        tree = parse_weight_map(llama_weight_map(3))
        ordered = sort_forward_pass(tree)
        before = {(n.full_path, n.role, n.is_selectable) for n in iter_nodes(tree)}
        after = {(n.full_path, n.role, n.is_selectable) for n in iter_nodes(ordered)}
        assert before == after

    def test_priorities(self):
        from layerpick.tree.ordering import forward_pass_priority
        assert forward_pass_priority("Embed_Tokens") == 0
        assert forward_pass_priority("17") == 4
        assert forward_pass_priority("ln_f") == 6
        assert forward_pass_priority("rotary_emb") == 99


# =============================================================================
# Param-Count Tests
# =============================================================================

class TestCounts:
    """Tests for count attachment and extraction."""

    def test_container_sums_children(self):
        from layerpick.tree import parse_weight_map, attach_param_counts
        tree = parse_weight_map({"m.a.weight": "s", "m.b.weight": "s", "m.b.bias": "s"})
        counted = attach_param_counts(
            tree, {"m.a.weight": 100, "m.b.weight": 200, "m.b.bias": 50}
        )
        m = find(counted, "m")
        assert m.param_count == 350
        assert [c.param_count for c in m.children] == [100, 250]

    def test_missing_leaf_is_zero(self):
        from layerpick.tree import parse_weight_map, attach_param_counts
        tree = parse_weight_map({"m.a.weight": "s", "m.b.weight": "s"})
        counted = attach_param_counts(tree, {"m.a.weight": 100})
        assert find(counted, "m", "b").param_count == 0
        assert find(counted, "m").param_count == 100

    def test_input_tree_untouched(self):
        from layerpick.tree import parse_weight_map, attach_param_counts
        tree = parse_weight_map({"m.a.weight": "s"})
        attach_param_counts(tree, {"m.a.weight": 7})
        assert find(tree, "m").param_count is None
        assert find(tree, "m", "a").param_count is None

    def test_collect_leaf_counts(self):
        from layerpick.tree import (
            parse_weight_map, attach_param_counts, collect_leaf_param_counts,
        )
        tree = parse_weight_map({"m.a.weight": "s", "m.b.weight": "s"})
        assert collect_leaf_param_counts(tree) == {}
        counted = attach_param_counts(tree, {"m.a.weight": 3, "m.b.weight": 4})
        assert collect_leaf_param_counts(counted) == {"m.a": 3, "m.b": 4}

    def test_empty_counts_still_builds(self):
        from layerpick.tree import parse_weight_map, attach_param_counts
        counted = attach_param_counts(parse_weight_map(llama_weight_map(1)), {})
        assert all(n.param_count == 0 for n in counted)


# =============================================================================
# Selection Optimizer Tests
# =============================================================================

DOWN_PROJ_UNIVERSE = [f"model.layers.{i}.mlp.down_proj" for i in range(32)]


class TestOptimizer:
    """Tests for template-based selection compression."""

    def test_all_indices_wildcard(self):
        from layerpick.selection import optimize_selection
        result = optimize_selection(DOWN_PROJ_UNIVERSE, DOWN_PROJ_UNIVERSE)
        assert result.optimized == [r"re:model\.layers\.\d+\.mlp\.down_proj"]
        assert result.explicit == DOWN_PROJ_UNIVERSE

    def test_few_indices_literals(self):
        from layerpick.selection import optimize_selection
        selected = [f"model.layers.{i}.mlp.down_proj" for i in (2, 0, 1)]
        result = optimize_selection(selected, DOWN_PROJ_UNIVERSE)
        assert result.optimized == [f"model.layers.{i}.mlp.down_proj" for i in (0, 1, 2)]

    def test_many_indices_alternation(self):
        from layerpick.selection import optimize_selection
        selected = [f"model.layers.{i}.mlp.down_proj" for i in (20, 0, 5, 15, 10)]
        result = optimize_selection(selected, DOWN_PROJ_UNIVERSE)
        assert result.optimized == [r"re:model\.layers\.(0|5|10|15|20)\.mlp\.down_proj"]

    def test_contiguous_uses_same_alternation(self):
        from layerpick.selection import optimize_selection
        selected = [f"model.layers.{i}.mlp.down_proj" for i in range(4, 10)]
        result = optimize_selection(selected, DOWN_PROJ_UNIVERSE)
        assert result.optimized == [r"re:model\.layers\.(4|5|6|7|8|9)\.mlp\.down_proj"]

    def test_single_instance_templates_stay_literal(self):
        universe = [
            "model.embed_tokens",
            "model.layers.0.self_attn.q_proj",
            "model.layers.0.mlp.down_proj",
            "model.norm",
            "lm_head",
        ]
        from layerpick.selection import optimize_selection
        result = optimize_selection(universe, universe)
        assert sorted(result.optimized) == sorted(universe)
        assert not any(item.startswith("re:") for item in result.optimized)

    def test_literals_before_templates(self):
        from layerpick.selection import optimize_selection
        universe = DOWN_PROJ_UNIVERSE + ["lm_head"]
        result = optimize_selection(DOWN_PROJ_UNIVERSE + ["lm_head"], universe)
        assert result.optimized[0] == "lm_head"
        assert result.optimized[1].startswith("re:")

    def test_empty_selection(self):
        from layerpick.selection import optimize_selection
        result = optimize_selection([], DOWN_PROJ_UNIVERSE)
        assert result.explicit == []
        assert result.optimized == []

    def test_over_matching_pattern_falls_back(self):
        """A wildcard that would also hit a vision tower is not emitted."""
        from layerpick.selection import optimize_selection
        text = [f"model.layers.{i}.mlp.down_proj" for i in range(4)]
        vision = [f"visual.model.layers.{i}.mlp.down_proj" for i in range(4)]
        result = optimize_selection(text, text + vision)
        assert result.optimized == text

    def test_template_uses_last_index(self):
        from layerpick.selection import to_template, Template
        parsed = to_template("model.layers.3.mlp.experts.7.w1")
        assert parsed == (Template("model.layers.3.mlp.experts.", ".w1"), 7)
        assert to_template("lm_head") is None
        assert to_template("model.layers.0") is None

    def test_escape_regex(self):
        from layerpick.selection import escape_regex
        assert escape_regex("a.b(c)[d]") == r"a\.b\(c\)\[d\]"
        assert escape_regex("a-b_c") == "a-b_c"

    def test_items_switch(self):
        from layerpick.selection import optimize_selection
        result = optimize_selection(DOWN_PROJ_UNIVERSE, DOWN_PROJ_UNIVERSE)
        assert result.items(use_regex=False) == DOWN_PROJ_UNIVERSE
        assert len(result.items()) == 1


# =============================================================================
# Ignore-List Parser Tests
# =============================================================================

class TestIgnoreParser:
    """Tests for resolving emitted text back into a selection."""

    def test_literal_and_regex(self):
        from layerpick.selection import parse_ignore_items
        text = 'ignore=[\n    "lm_head",\n    "re:model\\.layers\\.(1|3)\\.mlp\\.down_proj",\n]'
        universe = ["lm_head"] + DOWN_PROJ_UNIVERSE[:5]
        assert parse_ignore_items(text, universe) == [
            "lm_head",
            "model.layers.1.mlp.down_proj",
            "model.layers.3.mlp.down_proj",
        ]

    def test_stale_literal_dropped(self):
        from layerpick.selection import parse_ignore_items
        assert parse_ignore_items('ignore=["gone", "lm_head"]', ["lm_head"]) == ["lm_head"]

    def test_invalid_regex_skipped(self):
        from layerpick.selection import parse_ignore_items
        text = 'ignore=["re:model.(", "lm_head"]'
        assert parse_ignore_items(text, ["lm_head", "model.norm"]) == ["lm_head"]

    def test_single_quotes_and_dedup(self):
        from layerpick.selection import parse_ignore_items
        text = "ignore=['lm_head', 're:lm_.*']"
        assert parse_ignore_items(text, ["lm_head"]) == ["lm_head"]

    def test_first_bracket_only(self):
        from layerpick.selection import parse_ignore_items
        text = 'ignore=["lm_head"]\nother=["model.norm"]'
        assert parse_ignore_items(text, ["lm_head", "model.norm"]) == ["lm_head"]

    def test_no_list(self):
        from layerpick.selection import parse_ignore_items
        assert parse_ignore_items("nothing here", ["lm_head"]) == []

    @pytest.mark.parametrize("indices", [range(32), [0, 1, 2], [0, 5, 10, 15, 20], [7]])
    def test_round_trip_down_proj(self, indices):
        from layerpick.selection import optimize_selection, parse_ignore_items
        from layerpick.output import format_ignore_list
        selected = [DOWN_PROJ_UNIVERSE[i] for i in indices]
        text = format_ignore_list(optimize_selection(selected, DOWN_PROJ_UNIVERSE).optimized)
        assert set(parse_ignore_items(text, DOWN_PROJ_UNIVERSE)) == set(selected)

    def test_round_trip_mixed_selection(self):
        """Wildcard + alternation + literals all resolve back exactly."""
        from layerpick.selection import optimize_selection, parse_ignore_items
        from layerpick.output import format_ignore_list, format_recipe
        universe = llama_universe(8)
        selected = (
            [p for p in universe if p.endswith("mlp.down_proj")]
            + [f"model.layers.{i}.self_attn.q_proj" for i in (0, 2, 4, 6)]
            + ["lm_head", "model.layers.5.input_layernorm"]
        )
        items = optimize_selection(selected, universe).optimized
        assert len(items) < len(selected)
        for text in (format_ignore_list(items), format_recipe(items, kv_cache_scheme="FP8_HEAD")):
            assert set(parse_ignore_items(text, universe)) == set(selected)


# =============================================================================
# Output Text Tests
# =============================================================================

class TestFormatting:
    """Tests for ignore-list and recipe rendering."""

    def test_empty_ignore_list(self):
        from layerpick.output import format_ignore_list
        assert format_ignore_list([]) == "ignore=[]"

    def test_ignore_list_layout(self):
        from layerpick.output import format_ignore_list
        assert format_ignore_list(["lm_head", "model.norm"]) == (
            'ignore=[\n    "lm_head",\n    "model.norm",\n]'
        )

    def test_recipe_without_kv_cache(self):
        from layerpick.output import format_recipe
        expected = (
            "from llmcompressor.modifiers.quantization import GPTQModifier\n"
            "\n"
            "recipe = GPTQModifier(\n"
            '    targets="Linear",\n'
            '    scheme="W4A16",\n'
            "    ignore=[\n"
            '    "lm_head",\n'
            "],\n"
            ")"
        )
        assert format_recipe(["lm_head"]) == expected

    def test_smoothquant_import(self):
        from layerpick.output import format_recipe
        text = format_recipe([], modifier="SmoothQuantModifier", scheme="W8A16")
        assert text.startswith(
            "from llmcompressor.modifiers.smoothquant import SmoothQuantModifier\n"
        )
        assert "    ignore=[]," in text

    def test_kv_cache_presets(self):
        from layerpick.output import format_recipe
        fp8_head = format_recipe(["lm_head"], kv_cache_scheme="FP8_HEAD")
        assert '"strategy": "attn_head"' in fp8_head
        assert '"type": "float"' in fp8_head
        assert fp8_head.endswith('# vLLM: load with kv_cache_dtype="fp8"')

        int8 = format_recipe(["lm_head"], kv_cache_scheme="INT8_TENSOR")
        assert '"type": "int"' in int8
        assert int8.endswith('# vLLM: load with kv_cache_dtype="int8"')

        assert "kv_cache_scheme" not in format_recipe(["lm_head"], kv_cache_scheme="none")

    def test_unknown_modifier(self):
        from layerpick.output import format_recipe
        with pytest.raises(ValueError, match="Modifier"):
            format_recipe([], modifier="AWQ")


# =============================================================================
# Estimate Tests
# =============================================================================

class TestEstimates:
    """Tests for size estimates and formatters."""

    def test_format_bytes(self):
        from layerpick.output import format_bytes
        assert format_bytes(512) == "512 B"
        assert format_bytes(56.0) == "56 B"
        assert format_bytes(2048) == "2.0 KB"
        assert format_bytes(3 * 1024 ** 3) == "3.00 GB"

    def test_format_param_count(self):
        from layerpick.output import format_param_count
        assert format_param_count(999) == "999"
        assert format_param_count(1500) == "1.5K"
        assert format_param_count(7_200_000) == "7.2M"
        assert format_param_count(1_100_000_000) == "1.10B"

    def test_quantized_size(self):
        from layerpick.output import estimate_quantized_size
        est = estimate_quantized_size({"a": 100, "b": 300}, {"a"})
        assert est.total_params == 400
        assert est.ignored_params == 100
        assert est.quantized_params == 300
        assert est.fp16_bytes == 800
        assert est.w8_bytes == 500
        assert est.w4_bytes == 350

    def test_quantized_size_without_counts(self):
        from layerpick.output import estimate_quantized_size
        assert estimate_quantized_size({}, {"a"}) is None

    def test_kv_cache_gqa(self):
        from layerpick.output import estimate_kv_cache
        config = {
            "num_hidden_layers": 32,
            "hidden_size": 4096,
            "num_attention_heads": 32,
            "num_key_value_heads": 8,
        }
        estimates = estimate_kv_cache(config)
        assert [e.label for e in estimates] == ["32k", "64k", "128k"]
        elements = 2 * 32 * 8 * 128 * 32_768
        assert estimates[0].fp16_bytes == elements * 2
        assert estimates[0].fp8_bytes == elements
        assert estimates[0].linear_state_fp16 == 0

    def test_kv_cache_hybrid(self):
        from layerpick.output import estimate_kv_cache
        config = {
            "num_hidden_layers": 48,
            "full_attention_interval": 4,
            "hidden_size": 2048,
            "num_attention_heads": 16,
            "num_key_value_heads": 2,
            "head_dim": 256,
            "linear_num_key_heads": 16,
            "linear_key_head_dim": 128,
            "linear_value_head_dim": 128,
        }
        first = estimate_kv_cache(config)[0]
        linear_state = 36 * 16 * 128 * 128 * 2
        assert first.linear_state_fp16 == linear_state
        assert first.fp16_bytes == 2 * 12 * 2 * 256 * 32_768 * 2 + linear_state

    def test_kv_cache_text_config(self):
        from layerpick.output import estimate_kv_cache
        nested = {"text_config": {
            "num_hidden_layers": 2, "hidden_size": 64, "num_attention_heads": 4,
        }}
        assert estimate_kv_cache(nested)[0].fp8_bytes == 2 * 2 * 4 * 16 * 32_768

    def test_kv_cache_hybrid_text_config(self):
        """Hybrid-attention fields nested under text_config are honoured."""
        from layerpick.output import estimate_kv_cache
        hybrid = {
            "num_hidden_layers": 48,
            "full_attention_interval": 4,
            "hidden_size": 2048,
            "num_attention_heads": 16,
            "num_key_value_heads": 2,
            "head_dim": 256,
            "linear_num_key_heads": 16,
            "linear_key_head_dim": 128,
            "linear_value_head_dim": 128,
        }
        flat = estimate_kv_cache(hybrid)
        nested = estimate_kv_cache({"architectures": ["X"], "text_config": hybrid})
        assert nested == flat
        assert nested[0].linear_state_fp16 > 0

    def test_kv_cache_missing_fields(self):
        from layerpick.output import estimate_kv_cache
        assert estimate_kv_cache({"hidden_size": 64}) is None


# =============================================================================
# Selection State Tests
# =============================================================================

class TestSelectionState:
    """Tests for immutable selection edits."""

    def test_set_selected_drops_unknown(self):
        from layerpick.selection import SelectionState
        state = SelectionState.for_universe(["a", "b"]).set_selected(["a", "zzz"])
        assert state.selected == frozenset({"a"})

    def test_reconcile_against_new_universe(self):
        from layerpick.selection import SelectionState
        state = SelectionState.for_universe(["a", "b", "c"]).select(["a", "c"])
        moved = state.reconcile(["b", "c", "d"])
        assert moved.selected == frozenset({"c"})
        assert moved.universe == ("b", "c", "d")
        # the old snapshot is unchanged
        assert state.selected == frozenset({"a", "c"})

    def test_with_universe_clears(self):
        from layerpick.selection import SelectionState
        state = SelectionState.for_universe(["a"]).select_all()
        assert len(state.with_universe(["a", "b"])) == 0

    def test_toggle_and_invert(self):
        from layerpick.selection import SelectionState
        state = SelectionState.for_universe(["a", "b", "c"])
        state = state.toggle("b")
        assert state.is_selected("b")
        assert state.invert().ordered() == ["a", "c"]
        assert not state.toggle("b").is_selected("b")
        assert len(state.toggle("nope")) == 1

    def test_pattern_edits(self):
        from layerpick.selection import SelectionState, QUICK_SELECT_PATTERNS
        state = SelectionState.for_universe(llama_universe(2))
        attn = state.select_pattern(QUICK_SELECT_PATTERNS["attention"])
        assert len(attn) == 8
        assert len(attn.deselect_pattern(r"q_proj")) == 6

    def test_select_range(self):
        from layerpick.selection import SelectionState
        state = SelectionState.for_universe(llama_universe(4))
        assert len(state.select_range(0, 1)) == 2 * len(LLAMA_LAYER_MODULES)
        assert len(state.select_range(1, 2, suffix_pattern="mlp")) == 6

    def test_ordered_follows_universe(self):
        from layerpick.selection import SelectionState
        state = SelectionState.for_universe(["a", "b", "c"]).select(["c", "a"])
        assert state.ordered() == ["a", "c"]

    def test_max_layer_index(self):
        from layerpick.selection import max_layer_index
        assert max_layer_index(llama_universe(8)) == 7
        assert max_layer_index(["lm_head"]) == 0


class TestAutoIgnore:
    """Tests for the staged auto-ignore heuristic."""

    def test_stage_one(self):
        from layerpick.selection import auto_ignore
        picked = auto_ignore(llama_universe(8), 7, stage=1)
        assert "lm_head" in picked
        assert "model.norm" in picked
        assert "model.embed_tokens" not in picked
        assert len(picked) == 2 + 2 * 8

    def test_moe_gate_not_swiglu_gate(self):
        from layerpick.selection import auto_ignore
        paths = ["model.layers.0.mlp.gate", "model.layers.0.mlp.gate_proj"]
        assert auto_ignore(paths, 0, stage=1) == ["model.layers.0.mlp.gate"]

    def test_stage_two_and_three(self):
        from layerpick.selection import auto_ignore
        universe = llama_universe(8)
        stage2 = auto_ignore(universe, 7, stage=2)
        # layers 0-2 and 5-7 whole, plus norms and o_proj of layers 3-4
        assert len(stage2) == 2 + 6 * 9 + 2 * 3
        assert "model.layers.3.self_attn.o_proj" in stage2
        assert "model.layers.3.mlp.up_proj" not in stage2

        stage3 = auto_ignore(universe, 7, stage=3)
        assert len(stage3) == len(stage2) + 6
        assert "model.layers.4.mlp.up_proj" in stage3

    def test_invalid_stage(self):
        from layerpick.selection import auto_ignore
        with pytest.raises(ValueError, match="stage"):
            auto_ignore(["lm_head"], 0, stage=4)


# =============================================================================
# Config Tests
# =============================================================================

class TestConfig:
    """Tests for the configuration system."""

    def test_default_config_validates(self):
        from layerpick.config import LayerPickConfig
        LayerPickConfig().validate()

    def test_yaml_round_trip(self, tmp_path):
        from layerpick.config import LayerPickConfig, RecipeConfig, SelectionConfig
        config = LayerPickConfig(
            recipe=RecipeConfig(output="recipe", kv_cache_scheme="FP8_TENSOR"),
            selection=SelectionConfig(auto_ignore_stage=2, patterns=["mlp"], layer_range=[0, 3]),
        )
        path = tmp_path / "config.yaml"
        config.to_yaml(path)
        loaded = LayerPickConfig.from_yaml(path)
        assert loaded.to_dict() == config.to_dict()

    def test_shipped_default_yaml(self):
        from layerpick.config import LayerPickConfig
        path = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"
        config = LayerPickConfig.from_yaml(path)
        assert config.optimizer.max_literal_indices == 3
        assert config.tree.weight_suffixes[0] == ".weight"

    def test_invalid_sort_order(self):
        from layerpick.config import TreeConfig
        with pytest.raises(ValueError, match="sort_order"):
            TreeConfig(sort_order="alphabetical").validate()

    def test_invalid_modifier(self):
        from layerpick.config import RecipeConfig
        with pytest.raises(ValueError, match="Modifier"):
            RecipeConfig(modifier="AWQModifier").validate()

    def test_invalid_pattern(self):
        from layerpick.config import SelectionConfig
        with pytest.raises(ValueError, match="pattern"):
            SelectionConfig(patterns=["("]).validate()

    def test_invalid_layer_range(self):
        from layerpick.config import SelectionConfig
        with pytest.raises(ValueError, match="layer_range"):
            SelectionConfig(layer_range=[5, 2]).validate()

    def test_missing_file(self, tmp_path):
        from layerpick.config import LayerPickConfig
        with pytest.raises(FileNotFoundError):
            LayerPickConfig.from_yaml(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path):
        from layerpick.config import LayerPickConfig
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ValueError, match="empty"):
            LayerPickConfig.from_yaml(path)

    def test_empty_section_uses_defaults(self, tmp_path):
        """A section whose keys are all commented out loads as defaults."""
        from layerpick.config import LayerPickConfig
        path = tmp_path / "partial.yaml"
        path.write_text(
            "recipe:\n"
            "  output: recipe\n"
            "selection:\n"
            "  # auto_ignore_stage: 2\n"
        )
        config = LayerPickConfig.from_yaml(path)
        assert config.recipe.output == "recipe"
        assert config.selection.auto_ignore_stage == 0
        assert config.tree.sort_order == "forward-pass"


# =============================================================================
# Checkpoint & Pipeline Tests
# =============================================================================

def write_checkpoint(directory: Path, n_layers: int = 2) -> None:
    """Write a tiny real safetensors checkpoint plus config.json."""
    import numpy as np
    from safetensors.numpy import save_file

    tensors = {
        "model.embed_tokens.weight": np.zeros((10, 4), dtype=np.float32),
        "model.norm.weight": np.zeros((4,), dtype=np.float32),
        "lm_head.weight": np.zeros((10, 4), dtype=np.float32),
    }
    for i in range(n_layers):
        for module in LLAMA_LAYER_MODULES:
            shape = (4,) if "layernorm" in module else (4, 4)
            tensors[f"model.layers.{i}.{module}.weight"] = np.zeros(shape, dtype=np.float32)
    save_file(tensors, str(directory / "model.safetensors"))

    config = {
        "num_hidden_layers": n_layers,
        "hidden_size": 4,
        "num_attention_heads": 2,
    }
    (directory / "config.json").write_text(json.dumps(config))


class TestCheckpoint:
    """Tests for reading local checkpoint metadata."""

    def test_weight_map_from_shard_headers(self, tmp_path):
        from layerpick.data import load_weight_map
        write_checkpoint(tmp_path)
        weight_map = load_weight_map(tmp_path)
        assert weight_map["lm_head.weight"] == "model.safetensors"
        assert len(weight_map) == 3 + 2 * len(LLAMA_LAYER_MODULES)

    def test_weight_map_from_index(self, tmp_path):
        from layerpick.data import load_weight_map
        index = {"metadata": {}, "weight_map": {"lm_head.weight": "pytorch_model.bin"}}
        (tmp_path / "pytorch_model.bin.index.json").write_text(json.dumps(index))
        assert load_weight_map(tmp_path) == {"lm_head.weight": "pytorch_model.bin"}

    def test_param_counts_from_headers(self, tmp_path):
        from layerpick.data import load_weight_map, load_tensor_param_counts
        write_checkpoint(tmp_path)
        counts = load_tensor_param_counts(tmp_path, load_weight_map(tmp_path))
        assert counts["lm_head.weight"] == 40
        assert counts["model.norm.weight"] == 4

    def test_bin_shards_give_no_counts(self, tmp_path):
        from layerpick.data import load_tensor_param_counts
        counts = load_tensor_param_counts(tmp_path, {"lm_head.weight": "pytorch_model.bin"})
        assert counts == {}

    def test_config(self, tmp_path):
        from layerpick.data import load_config
        assert load_config(tmp_path) is None
        write_checkpoint(tmp_path)
        assert load_config(tmp_path)["hidden_size"] == 4

    def test_missing_and_empty(self, tmp_path):
        from layerpick.data import load_weight_map
        with pytest.raises(FileNotFoundError):
            load_weight_map(tmp_path / "missing")
        with pytest.raises(ValueError, match="No index file"):
            load_weight_map(tmp_path)

    def test_index_without_weight_map(self, tmp_path):
        from layerpick.data import load_weight_map
        (tmp_path / "model.safetensors.index.json").write_text(json.dumps({"metadata": {}}))
        with pytest.raises(ValueError, match="weight_map"):
            load_weight_map(tmp_path)
        with pytest.raises(ValueError, match="weight_map"):
            load_weight_map(tmp_path / "model.safetensors.index.json")


class TestPipeline:
    """End-to-end tests through LayerPicker."""

    def test_end_to_end_literals(self):
        """Five single-instance modules, all selected → five literals."""
        from layerpick.pipeline import LayerPicker
        weight_map = {
            f"{p}.weight": "s"
            for p in (
                "model.embed_tokens",
                "model.layers.0.self_attn.q_proj",
                "model.layers.0.mlp.down_proj",
                "model.norm",
                "lm_head",
            )
        }
        picker = LayerPicker()
        view = picker.build_view(weight_map)
        state = picker.initial_selection(view).select_all()
        text = picker.render(view, state)
        for path in ("model.embed_tokens", "model.layers.0.self_attn.q_proj",
                     "model.layers.0.mlp.down_proj", "model.norm", "lm_head"):
            assert f'    "{path}",' in text
        assert "re:" not in text

    def test_load_and_round_trip(self, tmp_path):
        from layerpick.config import LayerPickConfig, SelectionConfig, RecipeConfig
        from layerpick.pipeline import LayerPicker
        write_checkpoint(tmp_path, n_layers=6)
        config = LayerPickConfig(
            selection=SelectionConfig(auto_ignore_stage=1, patterns=[r"down_proj"]),
            recipe=RecipeConfig(output="recipe"),
        )
        picker = LayerPicker(config)
        view = picker.load(tmp_path)

        assert [n.name for n in view.tree] == ["model", "lm_head"]
        assert find(view.tree, "lm_head").param_count == 40
        assert view.max_layer_index == 5

        state = picker.initial_selection(view)
        text = picker.render(view, state)
        assert r"re:model\.layers\.\d+\.mlp\.down_proj" in text
        assert picker.selection_from_text(view, text).selected == state.selected

    def test_size_and_kv_estimates(self, tmp_path):
        from layerpick.pipeline import LayerPicker
        write_checkpoint(tmp_path)
        picker = LayerPicker()
        view = picker.load(tmp_path)
        state = picker.initial_selection(view).select(["lm_head"])
        estimate = picker.size_estimate(view, state)
        assert estimate.ignored_params == 40
        assert estimate.total_params == sum(view.leaf_counts.values())
        assert picker.kv_cache_estimate(view)[0].label == "32k"

    def test_without_counts(self):
        from layerpick.pipeline import LayerPicker
        picker = LayerPicker()
        view = picker.build_view(llama_weight_map(2))
        assert view.leaf_counts == {}
        assert picker.size_estimate(view, picker.initial_selection(view)) is None
        assert picker.kv_cache_estimate(view) is None


# =============================================================================
# Script Tests
# =============================================================================

def import_make_ignore():
    scripts_dir = Path(__file__).resolve().parent.parent / "scripts"
    sys.path.insert(0, str(scripts_dir))
    import make_ignore
    return make_ignore


class TestMakeIgnoreScript:
    """Tests for config handling in scripts/make_ignore.py."""

    def test_missing_explicit_config_raises(self, tmp_path, monkeypatch):
        """A mistyped --config must fail, not fall back to an empty selection."""
        make_ignore = import_make_ignore()
        write_checkpoint(tmp_path)
        argv = ["make_ignore.py", str(tmp_path), "--config", str(tmp_path / "typo.yaml")]
        monkeypatch.setattr(sys, "argv", argv)
        with pytest.raises(FileNotFoundError):
            make_ignore.main()

    def test_default_config_is_shipped_yaml(self, tmp_path, monkeypatch):
        """Without --config the shipped default is used from any directory."""
        make_ignore = import_make_ignore()
        monkeypatch.chdir(tmp_path)
        assert make_ignore.resolve_config().selection.auto_ignore_stage == 1

    def test_explicit_config_is_applied(self, tmp_path, monkeypatch, capsys):
        from layerpick.config import LayerPickConfig, SelectionConfig
        make_ignore = import_make_ignore()
        write_checkpoint(tmp_path, n_layers=4)
        config_path = tmp_path / "stage1.yaml"
        LayerPickConfig(selection=SelectionConfig(auto_ignore_stage=1)).to_yaml(config_path)

        monkeypatch.setattr(sys, "argv", ["make_ignore.py", str(tmp_path), "--config", str(config_path)])
        make_ignore.main()
        out = capsys.readouterr().out
        assert '"lm_head",' in out
        assert r'"re:model\.layers\.\d+\.input_layernorm",' in out


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
