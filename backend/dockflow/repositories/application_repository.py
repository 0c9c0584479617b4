"""
File-backed JSON store for applications and the global settings record.

File structure:
  {DATA_DIR}/
    applications.json
    settings.json
    {app_name}/docker-compose.yml   (supplied descriptors)

Writes replace the whole file atomically (write to temp, then rename), so the
last writer wins. A missing or corrupt file yields defaults and is logged,
never raised.
"""
import json
import logging
import re
import threading
import time
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from dockflow.core.config import settings
from dockflow.core.exceptions import ApplicationAlreadyExistsError, ApplicationNotFoundError
from dockflow.schemas.application import Application, GlobalSettings, utcnow

logger = logging.getLogger(__name__)

APPLICATIONS_FILE = "applications.json"
SETTINGS_FILE = "settings.json"
DESCRIPTOR_FILE = "docker-compose.yml"


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while value:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
    return out or "0"


def generate_application_id(identifier: str) -> str:
    """
    Derive a stable-looking id from a source locator or name.

    "https://github.com/acme/My-App.git" -> "MyApp-<base36 millis>"
    """
    tail = re.sub(r"\.git$", "", identifier.strip()).rstrip("/").split("/")[-1]
    name_part = re.sub(r"[^A-Za-z0-9]", "", tail) or "app"
    return f"{name_part}-{_to_base36(int(time.time() * 1000))}"


class ApplicationRepository:
    """
    CRUD over Application records and the single GlobalSettings record.

    Every read goes to disk so that records edited by other processes are
    picked up; a process-local lock serializes read-modify-write cycles.
    """

    def __init__(self, data_dir: Optional[str] = None):
        """
        Initialize the repository.

        Args:
            data_dir: Directory holding the JSON files (defaults to settings.DATA_DIR)
        """
        self.data_dir = Path(data_dir or settings.DATA_DIR)
        self._lock = threading.RLock()

    @property
    def applications_path(self) -> Path:
        return self.data_dir / APPLICATIONS_FILE

    @property
    def settings_path(self) -> Path:
        return self.data_dir / SETTINGS_FILE

    def descriptor_path(self, app_name: str) -> Path:
        """Path of the supplied descriptor for an application."""
        safe_name = app_name.replace("/", "_").replace("\\", "_")
        return self.data_dir / safe_name / DESCRIPTOR_FILE

    # ------------------------------------------------------------------
    # Low-level file helpers
    # ------------------------------------------------------------------

    def _read_json(self, path: Path):
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {path}, falling back to defaults: {e}")
            return None

    def _write_json(self, path: Path, payload) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, default=str)
        temp_path.replace(path)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    def list(self) -> List[Application]:
        """Load all applications; unreadable entries are skipped."""
        with self._lock:
            raw = self._read_json(self.applications_path)
        if not isinstance(raw, list):
            return []

        applications = []
        for entry in raw:
            try:
                applications.append(Application.model_validate(entry))
            except PydanticValidationError as e:
                logger.warning(f"Skipping invalid application record: {e}")
        return applications

    def _save_all(self, applications: List[Application]) -> None:
        self._write_json(
            self.applications_path,
            [app.model_dump(mode="json") for app in applications],
        )
        logger.debug(f"Saved {len(applications)} applications to storage")

    def get(self, application_id: str) -> Optional[Application]:
        """Get an application by id, or None."""
        for app in self.list():
            if app.id == application_id:
                return app
        return None

    def get_or_raise(self, application_id: str) -> Application:
        app = self.get(application_id)
        if app is None:
            raise ApplicationNotFoundError(application_id)
        return app

    def add(self, application: Application) -> Application:
        """
        Persist a new application.

        Raises:
            ApplicationAlreadyExistsError: If the id or name is taken
        """
        with self._lock:
            applications = self.list()
            for existing in applications:
                if existing.id == application.id or existing.name == application.name:
                    raise ApplicationAlreadyExistsError(application.name)
            applications.append(application)
            self._save_all(applications)
        logger.info(f"Added application: {application.name} ({application.id})")
        return application

    def update(self, application_id: str, **changes) -> Application:
        """
        Apply field changes to an application and persist the whole record.

        Raises:
            ApplicationNotFoundError: If the application does not exist
        """
        with self._lock:
            applications = self.list()
            for index, app in enumerate(applications):
                if app.id == application_id:
                    data = app.model_dump()
                    data.update(changes)
                    data["updated_at"] = utcnow()
                    updated = Application.model_validate(data)
                    applications[index] = updated
                    self._save_all(applications)
                    return updated
        raise ApplicationNotFoundError(application_id)

    def remove(self, application_id: str) -> bool:
        """Remove an application record. Returns False if it did not exist."""
        with self._lock:
            applications = self.list()
            remaining = [app for app in applications if app.id != application_id]
            if len(remaining) == len(applications):
                return False
            self._save_all(remaining)
        logger.info(f"Removed application: {application_id}")
        return True

    # ------------------------------------------------------------------
    # Supplied descriptors
    # ------------------------------------------------------------------

    def read_descriptor(self, app_name: str) -> Optional[str]:
        path = self.descriptor_path(app_name)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write_descriptor(self, app_name: str, content: str) -> Path:
        path = self.descriptor_path(app_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".tmp")
        temp_path.write_text(content, encoding="utf-8")
        temp_path.replace(path)
        return path

    # ------------------------------------------------------------------
    # Global settings
    # ------------------------------------------------------------------

    def get_settings(self) -> GlobalSettings:
        """
        Load global settings: environment overrides > file > defaults.

        The combined record is written back on first run so the file exists.
        """
        with self._lock:
            raw = self._read_json(self.settings_path)
            from_file = raw if isinstance(raw, dict) else {}

            try:
                stored = GlobalSettings.model_validate(from_file)
            except PydanticValidationError as e:
                logger.error(f"Invalid settings record, using defaults: {e}")
                stored = GlobalSettings()

            final = stored.model_copy(update=settings.get_identity_overrides())

            if not self.settings_path.exists():
                self._write_json(self.settings_path, final.model_dump(mode="json"))
        return final

    def save_settings(self, global_settings: GlobalSettings) -> GlobalSettings:
        with self._lock:
            self._write_json(self.settings_path, global_settings.model_dump(mode="json"))
        logger.info("Saved global settings to storage")
        return global_settings


application_repository = ApplicationRepository()
