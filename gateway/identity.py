"""
Acting-identity resolution for ingestion requests.

Identity is injected into the ingestion service instead of being read
from a global auth client. Resolution is best-effort: any failure means
the request is treated as anonymous.
"""

from typing import Mapping, Optional, Protocol
import structlog

from gateway.errors import StorageError
from gateway.store import RecordStore

logger = structlog.get_logger(__name__)


class IdentityProvider(Protocol):
    def resolve(self, headers: Mapping[str, str]) -> Optional[str]:
        """Return the authenticated user id for a request, or None."""
        ...


class AnonymousIdentity:
    """Identity provider for deployments without authentication."""

    def resolve(self, headers: Mapping[str, str]) -> Optional[str]:
        return None


class BearerTokenIdentity:
    """Resolve `Authorization: Bearer <token>` through the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    def resolve(self, headers: Mapping[str, str]) -> Optional[str]:
        authorization = headers.get('authorization') or ''
        scheme, _, token = authorization.partition(' ')
        if scheme.lower() != 'bearer' or not token.strip():
            return None

        try:
            return self.store.resolve_token(token.strip())
        except StorageError as e:
            logger.warning("Identity lookup failed, treating request as anonymous", error=str(e))
            return None
