"""
Configuration for the contact tag writer
Settings are read from a JSON file and merged over the defaults below.
"""

import base64
import binascii
import json
import os

from contact_token import build_user, record_for_node

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "config.json")

DEFAULTS = {
    # Active node; null when no device is connected
    "node_num": None,
    # User fields of the active node: id, long_name, short_name, public_key (base64)
    "user": None,
    "verified": True,
    "reader": "ACR1252",
    "repoll_delay": 0.5,
    "timeout": 60,
}


class ConfigError(ValueError):
    """Config file is unreadable or has invalid values."""
    pass


def load_config(config_path=DEFAULT_CONFIG_PATH):
    config = dict(DEFAULTS)
    if not os.path.exists(config_path):
        return config
    try:
        with open(config_path) as f:
            config.update(json.load(f))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config {config_path}: {e}") from e
    return config


def identity_from_config(config):
    """Serialized User bytes for the configured node, or None without one"""
    user = config.get("user")
    if not user:
        return None
    try:
        public_key = base64.b64decode(user.get("public_key", ""), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError(f"user.public_key is not base64: {e}") from e
    return build_user(
        user_id=user.get("id", ""),
        long_name=user.get("long_name", ""),
        short_name=user.get("short_name", ""),
        public_key=public_key,
    )


def record_from_config(config):
    node_num = config.get("node_num")
    if node_num is not None and not isinstance(node_num, int):
        raise ConfigError(f"node_num must be an integer, got {node_num!r}")
    return record_for_node(node_num, identity_from_config(config), verified=bool(config.get("verified", True)))
