import json

from aimeta_backend.features.metadata.comfyui import (
    NodeRole,
    extract_dimensions_from_graph,
    extract_loras_from_graphs,
    extract_models_from_graphs,
    extract_prompt_from_graph,
    extract_sampler_numbers_from_graph,
    extract_scheduler_from_graph,
    graph_nodes,
    node_roles,
    parse_comfyui,
)
from aimeta_shared.types import MetadataFormat

PROMPT_GRAPH = {
    "3": {"class_type": "KSampler", "inputs": {"steps": 30, "cfg": 6, "seed": 7, "sampler_name": "dpmpp_2m", "scheduler": "karras"}},
    "4": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "sdxl.safetensors"}},
    "5": {"class_type": "EmptyLatentImage", "inputs": {"width": 1024, "height": 768, "batch_size": 1}},
    "6": {"class_type": "CLIPTextEncode", "inputs": {"text": "a dog", "clip": ["4", 1]}},
    "7": {"class_type": "CLIPTextEncode", "inputs": {"text": "blurry, bad anatomy", "clip": ["4", 1]}},
    "8": {"class_type": "LoraLoader", "inputs": {"lora_name": "detail.safetensors", "strength_model": 0.8}},
}

UI_WORKFLOW = {
    "nodes": [
        {"id": 1, "type": "CheckpointLoaderSimple", "widgets_values": ["sd15.safetensors"]},
        {"id": 2, "type": "LoraLoader", "widgets_values": ["style.safetensors", 1.0, 1.0]},
        {"id": 3, "type": "CLIPTextEncode", "inputs": [{"name": "clip", "link": 1}], "widgets_values": ["a castle"]},
        {"id": 4, "type": "CLIPTextEncode", "widgets_values": ["worst quality"]},
        {"id": 5, "type": "KSampler", "widgets_values": [123, "randomize", 25, 7.0, "euler", "normal", 1.0]},
        {"id": 6, "type": "EmptyLatentImage", "widgets_values": [512, 640, 1]},
    ],
    "links": [],
}


def test_node_roles_table():
    assert NodeRole.SAMPLER in node_roles("KSamplerAdvanced")
    assert NodeRole.TEXT_ENCODER in node_roles("CLIPTextEncodeSDXL")
    assert NodeRole.SEED in node_roles("Seed Everywhere")
    assert NodeRole.SIZE in node_roles("EmptyLatentImage")
    assert NodeRole.CHECKPOINT in node_roles("CheckpointLoaderSimple")
    assert NodeRole.LORA in node_roles("LoraLoaderModelOnly")
    assert node_roles("VAEDecode") == frozenset()
    assert node_roles("") == frozenset()


def test_prompt_graph_walk():
    meta = parse_comfyui({"nodes": []}, PROMPT_GRAPH)
    assert meta.format is MetadataFormat.COMFYUI
    cache = meta.normalized
    assert cache.prompt == "a dog"
    assert cache.negative_prompt == "blurry, bad anatomy"
    assert cache.steps == 30
    assert cache.cfg_scale == 6.0
    assert cache.seed == 7
    assert cache.scheduler == "dpmpp_2m"
    assert cache.models == ["sdxl.safetensors"]
    assert cache.model == "sdxl.safetensors"
    assert cache.loras == ["detail.safetensors"]
    assert (cache.width, cache.height) == (1024, 768)


def test_json_strings_are_decoded_and_kept_in_raw():
    meta = parse_comfyui(json.dumps(UI_WORKFLOW), json.dumps(PROMPT_GRAPH), "a dog\nSteps: 3")
    assert meta.raw["workflow"] == UI_WORKFLOW
    assert meta.raw["prompt"] == PROMPT_GRAPH
    assert meta.raw["parameters"] == "a dog\nSteps: 3"
    # execution graph is preferred over the UI graph
    assert meta.normalized.steps == 30


def test_ui_workflow_widget_values():
    meta = parse_comfyui(UI_WORKFLOW, None)
    cache = meta.normalized
    assert "prompt" not in meta.raw
    assert cache.models == ["sd15.safetensors"]
    assert cache.loras == ["style.safetensors"]
    assert cache.prompt == "a castle"
    assert cache.negative_prompt == "worst quality"
    assert cache.seed == 123
    assert cache.steps == 25
    assert cache.cfg_scale == 7.0
    assert cache.scheduler == "euler"
    assert (cache.width, cache.height) == (512, 640)


def test_invalid_json_keeps_raw_string():
    meta = parse_comfyui("{not json", None)
    assert meta.raw["workflow"] == "{not json"
    assert meta.normalized.prompt == ""
    assert meta.normalized.steps is None


def test_seed_links_are_skipped_and_seed_node_used():
    graph = {
        "1": {"class_type": "KSampler", "inputs": {"seed": ["9", 0], "steps": 10}},
        "9": {"class_type": "Seed (rgthree)", "inputs": {"seed": 99}},
    }
    assert parse_comfyui(None, graph).normalized.seed == 99


def test_unresolved_seed_link_leaves_seed_unset():
    graph = {"1": {"class_type": "KSampler", "inputs": {"seed": ["9", 0], "steps": 10}}}
    assert parse_comfyui(None, graph).normalized.seed is None


def test_string_sampler_values_are_parsed():
    graph = {"1": {"class_type": "KSampler", "inputs": {"steps": "12", "cfg": "4.5", "seed": "0"}}}
    cache = parse_comfyui(None, graph).normalized
    assert (cache.steps, cache.cfg_scale, cache.seed) == (12, 4.5, 0)


def test_first_size_node_wins():
    graph = {
        "1": {"class_type": "EmptyLatentImage", "inputs": {"width": 512, "height": 512}},
        "2": {"class_type": "LatentUpscale", "inputs": {"width": 1024, "height": 1024}},
    }
    cache = parse_comfyui(None, graph).normalized
    assert (cache.width, cache.height) == (512, 512)


def test_numeric_fallback_for_custom_nodes():
    graph = {"1": {"class_type": "CustomThing", "inputs": {"num_steps": 40, "guidance": 4.5, "noise_seed": 0}}}
    cache = parse_comfyui(None, graph).normalized
    assert cache.steps == 40
    assert cache.cfg_scale == 4.5
    assert cache.seed == 0


def test_numeric_fallback_parses_string_values():
    graph = {"1": {"class_type": "CustomThing", "inputs": {"num_steps": "40", "guidance": "4.5", "noise_seed": "9"}}}
    cache = parse_comfyui(None, graph).normalized
    assert (cache.steps, cache.cfg_scale, cache.seed) == (40, 4.5, 9)


def test_numeric_fallback_rejects_links_and_bools():
    graph = {"1": {"class_type": "CustomThing", "inputs": {"num_steps": ["2", 0], "guidance": True, "noise_seed": "x"}}}
    cache = parse_comfyui(None, graph).normalized
    assert (cache.steps, cache.cfg_scale, cache.seed) == (None, None, None)


def test_numeric_fallback_respects_ranges_and_exact_keys():
    graph = {"1": {"class_type": "CustomThing", "inputs": {"steps": 500, "strength_model": 0.8, "scale": 80}}}
    cache = parse_comfyui(None, graph).normalized
    assert cache.steps is None
    assert cache.cfg_scale is None


def test_fallback_never_overwrites_targeted_values():
    graph = {
        "1": {"class_type": "KSampler", "inputs": {"steps": 20, "cfg": 7}},
        "2": {"class_type": "CustomThing", "inputs": {"steps": 50, "cfg": 3}},
    }
    cache = parse_comfyui(None, graph).normalized
    assert (cache.steps, cache.cfg_scale) == (20, 7.0)


def test_text_fallback_scans_any_node():
    graph = {"1": {"class_type": "ShowText", "inputs": {"text": "a lighthouse"}}}
    assert parse_comfyui(None, graph).normalized.prompt == "a lighthouse"


def test_first_prompt_of_each_polarity_wins():
    graph = {
        "1": {"class_type": "CLIPTextEncode", "inputs": {"text": "first"}},
        "2": {"class_type": "CLIPTextEncode", "inputs": {"text": "second"}},
        "3": {"class_type": "CLIPTextEncode", "inputs": {"text": "ugly"}},
        "4": {"class_type": "CLIPTextEncode", "inputs": {"text": "negative stuff"}},
    }
    cache = parse_comfyui(None, graph).normalized
    assert cache.prompt == "first"
    assert cache.negative_prompt == "ugly"


def test_execution_graph_nested_in_workflow_chunk():
    meta = parse_comfyui({"prompt": PROMPT_GRAPH}, None)
    assert meta.normalized.prompt == "a dog"


def test_graph_nodes_handles_both_shapes():
    api_nodes = graph_nodes(PROMPT_GRAPH)
    assert [n.id for n in api_nodes][:2] == ["3", "4"]
    ui_nodes = graph_nodes(json.dumps(UI_WORKFLOW))
    assert ui_nodes[4].inputs["steps"] == 25
    assert graph_nodes("not a graph") == []
    assert graph_nodes(None) == []


def test_graph_level_extractors():
    assert extract_models_from_graphs(PROMPT_GRAPH, UI_WORKFLOW) == ["sdxl.safetensors", "sd15.safetensors"]
    assert extract_loras_from_graphs(PROMPT_GRAPH, UI_WORKFLOW) == ["detail.safetensors", "style.safetensors"]
    assert extract_scheduler_from_graph(UI_WORKFLOW) == "euler"
    assert extract_prompt_from_graph(PROMPT_GRAPH) == "a dog"
    assert extract_sampler_numbers_from_graph(PROMPT_GRAPH) == {"cfg_scale": 6.0, "steps": 30, "seed": 7}
    assert extract_dimensions_from_graph(UI_WORKFLOW) == (512, 640)
    assert extract_dimensions_from_graph({}) is None
