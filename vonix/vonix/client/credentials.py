from __future__ import annotations

import logging
from pathlib import Path

from ..config import CFG_DIR

TOKEN_PATH = CFG_DIR / "token"

logger = logging.getLogger(__name__)


class TokenStore:
    """Bearer token kept on disk between runs, readable only by the owner."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or TOKEN_PATH
        self._token: str | None = None
        self._loaded = False

    @property
    def token(self) -> str | None:
        if not self._loaded:
            self._token = self._read()
            self._loaded = True
        return self._token

    def _read(self) -> str | None:
        if not self.path.exists():
            return None
        value = self.path.read_text().strip()
        return value or None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token.strip())
        try:
            self.path.chmod(0o600)
        except OSError as exc:  # pragma: no cover - platform dependent
            logger.warning("Unable to set permissions on %s: %s", self.path, exc)
        self._token = token.strip()
        self._loaded = True

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
        self._token = None
        self._loaded = True
        logger.info("chat.client credentials cleared")
