import json
import os

from cratebatch.tagger import DEFAULT_SYSTEM_PROMPT

CONFIG_PATH = os.environ.get(
    "CRATEBATCH_CONFIG",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "config.json"),
)

DEFAULT_CONFIG = {
    "creative_model": "claude-sonnet-4-5-20250929",
    "mechanical_model": "claude-3-5-haiku-20241022",
    "system_prompt": DEFAULT_SYSTEM_PROMPT,
    "scheduler_profile": "desktop",
    "chunk_size": None,
    "concurrency": None,
    "delay_between_requests": 0.0,
    "retry_chunk_size": 50,
    "retry_concurrency": 1,
    "max_escalation_levels": 2,
    "job_timeout": 0.0,
    "playlist_root_name": "AI_GENERATED",
}


def load_config():
    if os.path.exists(CONFIG_PATH):
        with open(CONFIG_PATH) as f:
            return {**DEFAULT_CONFIG, **json.load(f)}
    return dict(DEFAULT_CONFIG)


def save_config(config_dict):
    with open(CONFIG_PATH, "w") as f:
        json.dump(config_dict, f, indent=2)


def tiered_models(config):
    return {
        "creative": config.get("creative_model") or DEFAULT_CONFIG["creative_model"],
        "mechanical": config.get("mechanical_model") or DEFAULT_CONFIG["mechanical_model"],
    }
