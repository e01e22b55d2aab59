"""
Service wiring shared by the API routes and the scheduler script.
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..core import config
from ..core.cache import CodeTableCache
from ..core.dao import KVStore, load_code_table
from ..core.status import StatusRegistry
from ..core.sync import SyncEngine, SyncLease, SyncRunner
from ..core.upstream import UpstreamClient
from util.logging import logger


class Services:
    """Store, cache, restriction lists and the single sync slot for one process."""

    def __init__(self, store: KVStore, client: Optional[UpstreamClient] = None,
                 cache_ttl_sec: float = config.CACHE_TTL_SEC):
        self.store = store
        self.client = client
        self.registry = StatusRegistry(store)
        self.cache = CodeTableCache(lambda: load_code_table(store), ttl_sec=cache_ttl_sec)
        self.sync_runner = SyncRunner(
            self._make_engine,
            on_success=lambda report: self.cache.invalidate(),
            lease=SyncLease(store),
        )

    def _make_engine(self) -> SyncEngine:
        if self.client is None:
            self.client = UpstreamClient()
        return SyncEngine(self.store, self.client)


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = Services(KVStore(config.DB_PATH))
    return _services


bearer = HTTPBearer(auto_error=False)


def _check_token(expected: Optional[str], credentials: Optional[HTTPAuthorizationCredentials], endpoint: str):
    if not expected or not expected.strip():
        logger.log_auth_failure(endpoint, "no token configured")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    if credentials is None or not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        logger.log_auth_failure(endpoint, "invalid or missing bearer token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def require_sync_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)):
    _check_token(config.SYNC_TOKEN, credentials, request.url.path)


def require_admin_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)):
    _check_token(config.ADMIN_TOKEN, credentials, request.url.path)
