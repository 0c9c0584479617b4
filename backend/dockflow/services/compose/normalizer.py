"""
Compose normalization.

Turns a raw application descriptor into the shape the target platform
installs: container-only port exposure, resolved template placeholders,
main-service enrichment and a completed vendor metadata block.

normalize() is pure and idempotent for fixed settings: feeding its rich
output back in yields the same rich output.
"""
import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from dockflow.core.config import settings
from dockflow.core.exceptions import DescriptorValidationError
from dockflow.schemas.application import GlobalSettings
from dockflow.services.compose.descriptor import get_label, get_services, set_env_var, set_label

logger = logging.getLogger(__name__)

PRE_INSTALL_KEY = "pre-install-cmd"
APP_ID_ENV = "APP_ID"
DEFAULT_WEBUI_PORT = 80


@dataclass
class NormalizedDescriptor:
    """Both derived forms of a normalized descriptor."""
    rich: Dict[str, Any]
    clean: Dict[str, Any]
    app_id: str
    main_service: str
    metadata_key: str = "x-casaos"

    @property
    def pre_install_command(self) -> Optional[str]:
        command = self.rich.get(self.metadata_key, {}).get(PRE_INSTALL_KEY)
        if isinstance(command, str) and command.strip():
            return command
        return None

    @property
    def icon(self) -> Optional[str]:
        icon = self.rich.get(self.metadata_key, {}).get("icon")
        return str(icon) if icon else None


def _placeholder(name: str) -> re.Pattern:
    # ${NAME} or $NAME not followed by another identifier character
    return re.compile(r"\$\{" + name + r"\}|\$" + name + r"(?![A-Za-z0-9_])")


def _webui_port(metadata: Dict[str, Any]) -> int:
    raw = metadata.get("webui_port")
    try:
        return int(raw) if raw not in (None, "") else DEFAULT_WEBUI_PORT
    except (TypeError, ValueError):
        return DEFAULT_WEBUI_PORT


def build_substitutions(
    app_id: str,
    global_settings: GlobalSettings,
    webui_port: int = DEFAULT_WEBUI_PORT,
    app_token: Optional[str] = None,
    compose_ref_domain: bool = True,
) -> List[tuple]:
    """
    Placeholder patterns and their values for one application.

    The reference domain is "<app_id><separator><domain>", with ":<port>"
    appended when the declared UI port is not the default. With
    compose_ref_domain=False it is the bare configured domain, as used in
    the metadata volume list.
    """
    ref_domain = global_settings.ref_domain
    if compose_ref_domain:
        ref_domain = f"{app_id}{global_settings.ref_separator}{ref_domain}"
        if webui_port != DEFAULT_WEBUI_PORT:
            ref_domain = f"{ref_domain}:{webui_port}"

    values = [
        ("PUID", global_settings.puid),
        ("PGID", global_settings.pgid),
        ("APP_ID", app_id),
        ("AppID", app_id),
        ("REF_DOMAIN", ref_domain),
        ("REF_SCHEME", global_settings.ref_scheme),
        ("REF_PORT", global_settings.ref_port),
    ]
    if app_token:
        values.append(("API_HASH", app_token))
    return [(_placeholder(name), str(value)) for name, value in values]


def substitute(value: Any, substitutions: List[tuple]) -> Any:
    """Replace known placeholders in a string; other values pass through."""
    if not isinstance(value, str):
        return value
    for pattern, replacement in substitutions:
        value = pattern.sub(lambda _m, r=replacement: r, value)
    return value


def _container_port(mapping: Any) -> Optional[str]:
    """
    Container-side port of a port mapping.

    "8080:80" -> "80", "127.0.0.1:8080:80/udp" -> "80/udp", 9090 -> "9090",
    {"target": 80, "published": 8080} -> "80"
    """
    if isinstance(mapping, bool):
        return None
    if isinstance(mapping, int):
        return str(mapping)
    if isinstance(mapping, str):
        container = mapping.strip().split(":")[-1]
        return container or None
    if isinstance(mapping, dict) and mapping.get("target") is not None:
        return str(mapping["target"])
    return None


def rewrite_ports(service: Dict[str, Any]) -> None:
    """Convert published port mappings into a container-only expose list."""
    exposed: List[str] = []
    for entry in service.get("expose") or []:
        port = str(entry)
        if port not in exposed:
            exposed.append(port)

    ports = service.pop("ports", None)
    if isinstance(ports, list):
        for mapping in ports:
            port = _container_port(mapping)
            if port and port not in exposed:
                exposed.append(port)

    if exposed:
        service["expose"] = exposed


def _apply_to_service(service: Dict[str, Any], sub: Callable[[Any], Any]) -> None:
    environment = service.get("environment")
    if isinstance(environment, dict):
        for key, value in environment.items():
            environment[key] = sub(value)
    elif isinstance(environment, list):
        service["environment"] = [sub(item) for item in environment]

    volumes = service.get("volumes")
    if isinstance(volumes, list):
        rewritten = []
        for volume in volumes:
            if isinstance(volume, dict) and "source" in volume:
                volume = {**volume, "source": sub(volume["source"])}
            else:
                volume = sub(volume)
            rewritten.append(volume)
        service["volumes"] = rewritten

    for key in ("command", "entrypoint"):
        value = service.get(key)
        if isinstance(value, list):
            service[key] = [sub(item) for item in value]
        elif isinstance(value, str):
            service[key] = sub(value)

    if isinstance(service.get("working_dir"), str):
        service["working_dir"] = sub(service["working_dir"])

    labels = service.get("labels")
    if isinstance(labels, dict):
        for key, value in labels.items():
            labels[key] = sub(value)
    elif isinstance(labels, list):
        service["labels"] = [sub(item) for item in labels]


def resolve_main_service(services: Dict[str, Any], metadata: Dict[str, Any]) -> str:
    """Explicit metadata pointer when it names a declared service, else the first service."""
    pointer = metadata.get("main")
    if isinstance(pointer, str) and pointer in services:
        return pointer
    if pointer:
        logger.warning(f"Main service '{pointer}' is not declared, using first service")
    return next(iter(services))


def normalize(
    descriptor: Dict[str, Any],
    global_settings: GlobalSettings,
    local_image: Optional[str] = None,
    app_token: Optional[str] = None,
    metadata_key: Optional[str] = None,
) -> NormalizedDescriptor:
    """
    Normalize a descriptor for installation.

    Args:
        descriptor: Parsed descriptor (left untouched)
        global_settings: Snapshot of the identity and reference-domain values
        local_image: Locally built image tag for the main service, if any
        app_token: Per-application API token substituted for API_HASH
        metadata_key: Vendor metadata block key (defaults to settings.PLATFORM_METADATA_KEY)

    Returns:
        NormalizedDescriptor with rich and clean variants

    Raises:
        DescriptorValidationError: If the application id or services are missing
    """
    metadata_key = metadata_key or settings.PLATFORM_METADATA_KEY
    rich = copy.deepcopy(descriptor)

    app_id = rich.get("name")
    if not isinstance(app_id, str) or not app_id.strip():
        raise DescriptorValidationError("missing top-level 'name' (application id)", field="name")
    app_id = app_id.strip()
    rich["name"] = app_id

    services = get_services(rich)
    metadata = rich.get(metadata_key)
    if not isinstance(metadata, dict):
        metadata = {}
        rich[metadata_key] = metadata

    main = resolve_main_service(services, metadata)
    metadata["main"] = main

    substitutions = build_substitutions(app_id, global_settings, _webui_port(metadata), app_token)

    def sub(value):
        return substitute(value, substitutions)

    for name, service in services.items():
        if service is None:
            service = {}
            services[name] = service
        if not isinstance(service, dict):
            raise DescriptorValidationError(f"service '{name}' must be a mapping", field="services")

        set_env_var(service, APP_ID_ENV, app_id)
        rewrite_ports(service)
        _apply_to_service(service, sub)

    main_service = services[main]
    main_service["hostname"] = app_id
    main_service["user"] = f"{global_settings.puid}:{global_settings.pgid}"

    icon = metadata.get("icon") or get_label(main_service, "icon")
    if icon:
        set_label(main_service, "icon", icon)
        metadata["icon"] = icon

    if local_image:
        main_service["image"] = local_image
        main_service.pop("build", None)

    metadata["is_uncontrolled"] = False
    metadata["store_app_id"] = app_id

    if global_settings.ref_domain:
        exposed = main_service.get("expose") or []
        if exposed:
            port = str(exposed[0]).split("/")[0]
            metadata["hostname"] = f"{port}-{app_id}-{global_settings.ref_domain}"
            metadata["scheme"] = global_settings.ref_scheme or "https"
            metadata["port_map"] = "443" if metadata["scheme"] == "https" else "80"

    if isinstance(metadata.get("volumes"), list):
        volume_substitutions = build_substitutions(app_id, global_settings, compose_ref_domain=False)
        metadata["volumes"] = [substitute(volume, volume_substitutions) for volume in metadata["volumes"]]

    clean = copy.deepcopy(rich)
    clean[metadata_key].pop(PRE_INSTALL_KEY, None)

    logger.debug(f"Normalized descriptor for {app_id} (main service: {main})")
    return NormalizedDescriptor(
        rich=rich,
        clean=clean,
        app_id=app_id,
        main_service=main,
        metadata_key=metadata_key,
    )
