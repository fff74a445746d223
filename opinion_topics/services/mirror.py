"""Mirror store clients.

The mirror is a hierarchical key-value tree with last-write-wins per path.
Writes are multi-path updates: a mapping of slash-separated paths to values,
where None deletes the path.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from ..config import DEFAULT_MIRROR_TIMEOUT_SECONDS, AnalysisSettings
from ..exceptions import MirrorSyncError

logger = logging.getLogger(__name__)


class MirrorStore(ABC):
    """Write access to the mirror tree."""

    enabled = True

    @abstractmethod
    def update(self, updates: Dict[str, Any]) -> None:
        """Apply all path writes in one request.

        Raises:
            MirrorSyncError: if the write was not acknowledged
        """
        pass


class DisabledMirrorStore(MirrorStore):
    """Accepts and discards every write. Used when mirror sync is turned off."""

    enabled = False

    def update(self, updates: Dict[str, Any]) -> None:
        logger.debug(f"Mirror sync disabled, skipping {len(updates)} paths")


class RestMirrorStore(MirrorStore):
    """Mirror store reached over a Realtime-Database style REST API.

    A multi-path update is a PATCH of the root with path keys, applied
    atomically by the server.
    """

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout: float = DEFAULT_MIRROR_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self) -> str:
        return f"{self.base_url}/.json"

    def _params(self) -> dict:
        return {"auth": self.auth_token} if self.auth_token else {}

    def update(self, updates: Dict[str, Any]) -> None:
        if not updates:
            return
        payload = {path.strip("/"): value for path, value in updates.items()}
        try:
            response = self.session.patch(
                self._url(),
                json=payload,
                params=self._params(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise MirrorSyncError(f"Mirror update failed: {e}", paths=payload.keys()) from e


def build_mirror_store(settings: AnalysisSettings) -> MirrorStore:
    """Mirror store for the configured environment."""
    if settings.mirror_disable_sync:
        logger.info("Mirror sync disabled by MIRROR_DISABLE_SYNC")
        return DisabledMirrorStore()
    if not settings.mirror_url:
        logger.warning("MIRROR_URL not set - mirror writes will be skipped")
        return DisabledMirrorStore()
    return RestMirrorStore(
        settings.mirror_url,
        auth_token=settings.mirror_auth_token,
        timeout=settings.mirror_timeout_seconds,
    )
