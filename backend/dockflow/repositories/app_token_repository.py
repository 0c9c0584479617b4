"""
File-backed store of per-application API tokens.

Tokens are substituted into descriptors (API_HASH) so an installed app can
call back into the engine. One token per (app name, application id) pair,
reused across re-installs.
"""
import json
import logging
import secrets
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from dockflow.core.config import settings
from dockflow.schemas.application import utcnow

logger = logging.getLogger(__name__)

TOKENS_FILE = "app-tokens.json"


class AppToken(BaseModel):
    app_name: str
    application_id: str
    token: str
    permissions: List[str] = Field(default_factory=lambda: ["read", "write"])
    created_at: datetime = Field(default_factory=utcnow)


class AppTokenRepository:
    """Get-or-create and remove app tokens."""

    def __init__(self, data_dir: Optional[str] = None):
        self.path = Path(data_dir or settings.DATA_DIR) / TOKENS_FILE
        self._lock = threading.RLock()

    def _load(self) -> List[AppToken]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return [AppToken.model_validate(entry) for entry in raw.get("tokens", [])]
        except (OSError, ValueError) as e:
            logger.error(f"Error loading app tokens: {e}")
            return []

    def _save(self, tokens: List[AppToken]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump({"tokens": [t.model_dump(mode="json") for t in tokens]}, f, indent=2)
        temp_path.replace(self.path)

    def get(self, app_name: str) -> Optional[AppToken]:
        for token in self._load():
            if token.app_name == app_name:
                return token
        return None

    def get_or_create(self, app_name: str, application_id: str) -> AppToken:
        """Return the existing token for this app, or persist a new 64-hex one."""
        with self._lock:
            tokens = self._load()
            for token in tokens:
                if token.app_name == app_name and token.application_id == application_id:
                    return token

            token = AppToken(
                app_name=app_name,
                application_id=application_id,
                token=secrets.token_hex(32),
            )
            tokens.append(token)
            self._save(tokens)
        logger.info(f"Created app token for {app_name}")
        return token

    def remove(self, app_name: str) -> bool:
        with self._lock:
            tokens = self._load()
            remaining = [t for t in tokens if t.app_name != app_name]
            if len(remaining) == len(tokens):
                return False
            self._save(remaining)
        logger.info(f"Removed app token for {app_name}")
        return True


app_token_repository = AppTokenRepository()
