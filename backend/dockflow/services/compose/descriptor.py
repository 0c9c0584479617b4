"""
Helpers for reading and editing compose descriptors.

Descriptors are plain dicts as produced by PyYAML. Services may use either
the list ("KEY=value") or mapping form for environment and labels, and the
short ("src:dst[:mode]") or long ({source, target}) form for volumes.
"""
from typing import Any, Dict, List, Optional

import yaml

from dockflow.core.exceptions import DescriptorValidationError


def load_descriptor(content: str) -> Dict[str, Any]:
    """
    Parse descriptor text into a mapping.

    Raises:
        DescriptorValidationError: If the text is not valid YAML or not a mapping
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise DescriptorValidationError(f"YAML parse error: {e}")
    if not isinstance(data, dict):
        raise DescriptorValidationError("descriptor must be a mapping")
    return data


def dump_descriptor(descriptor: Dict[str, Any]) -> str:
    """Serialize a descriptor, keeping key order."""
    return yaml.safe_dump(descriptor, sort_keys=False, default_flow_style=False)


def get_services(descriptor: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    services = descriptor.get("services")
    if not isinstance(services, dict) or not services:
        raise DescriptorValidationError("descriptor defines no services", field="services")
    return services


def set_env_var(service_config: Dict[str, Any], env_name: str, value: str) -> None:
    """Set an environment variable, preserving the list or mapping form."""
    environment = service_config.get("environment")
    if isinstance(environment, list):
        entry = f"{env_name}={value}"
        for index, item in enumerate(environment):
            if isinstance(item, str) and (item == env_name or item.startswith(f"{env_name}=")):
                environment[index] = entry
                return
        environment.append(entry)
        return
    if not isinstance(environment, dict):
        environment = {}
        service_config["environment"] = environment
    environment[env_name] = value


def get_label(service_config: Dict[str, Any], label: str) -> Optional[str]:
    labels = service_config.get("labels") or {}
    if isinstance(labels, dict):
        val = labels.get(label)
        return str(val) if val is not None else None
    if isinstance(labels, list):
        for item in labels:
            if isinstance(item, str) and item.startswith(f"{label}="):
                return item.split("=", 1)[1]
    return None


def set_label(service_config: Dict[str, Any], label: str, value: str) -> None:
    labels = service_config.get("labels")
    if isinstance(labels, list):
        entry = f"{label}={value}"
        for index, item in enumerate(labels):
            if isinstance(item, str) and item.startswith(f"{label}="):
                labels[index] = entry
                return
        labels.append(entry)
        return
    if not isinstance(labels, dict):
        labels = {}
        service_config["labels"] = labels
    labels[label] = value


def get_volumes(service_config: Dict[str, Any]) -> List[Any]:
    """Get the raw 'volumes' list for a service (short or long syntax)."""
    vols = service_config.get("volumes", [])
    if not isinstance(vols, list):
        return []
    return vols


def get_host_paths(descriptor: Dict[str, Any]) -> List[str]:
    """
    Absolute host paths bound into any service.

    Named volumes and relative paths are skipped; the result keeps first-seen order.
    """
    paths: List[str] = []
    services = descriptor.get("services") or {}
    for service_config in services.values():
        if not isinstance(service_config, dict):
            continue
        for vol in get_volumes(service_config):
            source = None
            if isinstance(vol, str):
                parts = vol.split(":")
                if len(parts) >= 2:
                    source = parts[0].strip()
            elif isinstance(vol, dict):
                if vol.get("type", "bind") == "bind":
                    source = vol.get("source")
            if isinstance(source, str) and source.startswith("/") and source not in paths:
                paths.append(source)
    return paths
