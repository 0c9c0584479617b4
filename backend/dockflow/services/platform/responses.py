"""
Decoding of the platform's app-listing responses.

The platform has no documented contract and answers in one of several
shapes depending on version and endpoint. Each known shape is a small
decoder; decode_app_listing() tries them in a fixed priority order and the
first one that matches wins:

  1. AppListShape       [ {...}, ... ]  or  {"data": [ {...}, ... ]}
  2. AppsFieldShape     {"data": {"apps": [ ... ]}}
  3. InstalledFieldShape {"data": {"installed": [ ... ]}}
  4. KeyedAppsShape     {"data": {"<app_id>": {...}, ...}}

Anything else (HTML error pages, empty bodies, invalid JSON) decodes to
no data rather than an error.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

ENVELOPE_KEYS = {"success", "message", "data", "code", "timestamp"}


@dataclass
class PlatformApp:
    """One application as reported by the platform."""
    app_id: str
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return (
            self.status == "running"
            or self.raw.get("state") == "running"
            or self.raw.get("running") is True
        )


@dataclass
class AppListing:
    """Decoded listing; shape is the name of the decoder that matched."""
    shape: str
    apps: List[PlatformApp] = field(default_factory=list)

    def app_ids(self) -> set:
        return {app.app_id for app in self.apps}

    def find(self, app_id: str) -> Optional[PlatformApp]:
        for app in self.apps:
            if app.app_id == app_id:
                return app
        return None


def _app_from_object(item: Any) -> Optional[PlatformApp]:
    if not isinstance(item, dict):
        return None
    app_id = item.get("name") or item.get("id") or item.get("title")
    if not app_id:
        return None
    status = item.get("status") or item.get("state")
    return PlatformApp(app_id=str(app_id), status=str(status) if status else None, raw=item)


def _apps_from_list(items: List[Any]) -> List[PlatformApp]:
    return [app for app in (_app_from_object(item) for item in items) if app is not None]


class AppListShape:
    name = "app_list"

    @staticmethod
    def match(payload: Any) -> Optional[List[PlatformApp]]:
        if isinstance(payload, list):
            return _apps_from_list(payload)
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            return _apps_from_list(payload["data"])
        return None


class AppsFieldShape:
    name = "apps_field"

    @staticmethod
    def match(payload: Any) -> Optional[List[PlatformApp]]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if isinstance(data, dict) and isinstance(data.get("apps"), list):
            return _apps_from_list(data["apps"])
        return None


class InstalledFieldShape:
    name = "installed_field"

    @staticmethod
    def match(payload: Any) -> Optional[List[PlatformApp]]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if isinstance(data, dict) and isinstance(data.get("installed"), list):
            return _apps_from_list(data["installed"])
        return None


class KeyedAppsShape:
    name = "keyed_apps"

    @staticmethod
    def match(payload: Any) -> Optional[List[PlatformApp]]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return None
        apps = []
        for key, value in data.items():
            if key in ENVELOPE_KEYS:
                continue
            info = value if isinstance(value, dict) else {}
            status = info.get("status") or info.get("state")
            apps.append(PlatformApp(app_id=str(key), status=str(status) if status else None, raw=info))
        return apps


SHAPES = (AppListShape, AppsFieldShape, InstalledFieldShape, KeyedAppsShape)


def decode_app_listing(body: Optional[str]) -> Optional[AppListing]:
    """
    Decode a listing response body.

    Returns:
        AppListing from the first matching shape, or None for no data
    """
    if not body or not body.strip():
        return None

    text = body.strip()
    if text.startswith("<"):
        logger.debug("Platform answered with an HTML page, treating as no data")
        return None

    try:
        payload = json.loads(text)
    except ValueError:
        logger.debug("Platform answered with invalid JSON, treating as no data")
        return None

    for shape in SHAPES:
        apps = shape.match(payload)
        if apps is not None:
            return AppListing(shape=shape.name, apps=apps)
    return None
