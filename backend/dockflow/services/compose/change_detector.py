"""
Structural change detection between two descriptor texts.

Environment variable values churn (tokens, passwords, tuning knobs) without
the application's shape changing; only the shape is compared here.
"""
import copy
import logging
from typing import Any

import yaml

logger = logging.getLogger(__name__)

ENV_PLACEHOLDER = "<PLACEHOLDER>"


def mask_environment_values(node: Any) -> Any:
    """Recursively replace every environment value with a fixed placeholder, keeping keys."""
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "environment" and value:
                if isinstance(value, list):
                    node[key] = [
                        f"{item.split('=', 1)[0]}={ENV_PLACEHOLDER}"
                        if isinstance(item, str) and "=" in item else item
                        for item in value
                    ]
                elif isinstance(value, dict):
                    node[key] = {env_key: ENV_PLACEHOLDER for env_key in value}
            else:
                mask_environment_values(value)
    elif isinstance(node, list):
        for item in node:
            mask_environment_values(item)
    return node


def _canonical(content: str) -> str:
    # BaseLoader keeps every scalar as a string so numbers never drift
    parsed = yaml.load(content, Loader=yaml.BaseLoader)
    masked = mask_environment_values(copy.deepcopy(parsed))
    return yaml.dump(masked, sort_keys=True, indent=2, width=120, default_flow_style=False)


def has_structural_change(current: str, new: str) -> bool:
    """
    Decide whether a new descriptor differs meaningfully from the current one.

    Args:
        current: Currently installed descriptor text
        new: Candidate descriptor text

    Returns:
        True if anything other than environment variable values differs
    """
    if current == new:
        return False

    try:
        changed = _canonical(current) != _canonical(new)
    except yaml.YAMLError as e:
        logger.warning(f"Descriptor comparison fell back to text equality: {e}")
        return current != new

    if changed:
        logger.info("Structural changes detected in descriptor")
    else:
        logger.info("Only environment variable values differ, no structural changes")
    return changed
