"""
HTTP sink for collected signals.

Posts fingerprint snapshots and biometrics samples to the ingestion
service. Non-2xx responses and transport failures are raised as
SignalTransmissionError; callers decide whether to swallow them.
"""

from typing import Any, Dict, Optional
import requests
import structlog

from collector.core.models.config import TrackerConfig

logger = structlog.get_logger(__name__)


class SignalTransmissionError(Exception):
    """Raised when a signal could not be delivered to the ingestion service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HttpSignalSink:
    """Deliver signals to the ingestion endpoints over HTTP."""

    def __init__(self, config: TrackerConfig,
                 auth_token: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.config = config
        self.auth_token = auth_token
        self._session = session or requests.Session()

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = self.config.ingestion_base_url.rstrip('/') + path
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        try:
            r = self._session.post(url, headers=headers, json=payload,
                                   timeout=self.config.request_timeout_seconds)
        except requests.RequestException as e:
            raise SignalTransmissionError(f"POST {path} failed: {e}") from e

        if not 200 <= r.status_code < 300:
            raise SignalTransmissionError(f"POST {path} returned HTTP {r.status_code}",
                                          status_code=r.status_code)

        try:
            return r.json() if r.content else {}
        except ValueError:
            logger.debug("Non-JSON ingestion response", path=path, status_code=r.status_code)
            return {}

    def send_fingerprint(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(self.config.fingerprint_path, payload)

    def send_biometrics(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(self.config.biometrics_path, payload)

    def close(self) -> None:
        self._session.close()
