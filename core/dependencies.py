"""Dependency injection providers for FastAPI"""

import re
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException

from config.settings import settings
from core.logging import logger, mask_client_id
from services.library_service import LibraryService
from services.orchestrator import AnalysisOrchestrator
from storage.backend import StorageBackend

_CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


# ========== Global Service Instances (Initialized at Startup) ==========
_storage_backend: Optional[StorageBackend] = None
_registry: Optional["OrchestratorRegistry"] = None


class OrchestratorRegistry:
    """
    One AnalysisOrchestrator per client id

    Orchestrators hold in-memory session state (current photo, result,
    one-shot flags); everything that must survive a reload lives in the
    client's stores and is restored through resume_from_snapshot().

    Bounded two ways: clients idle for `idle_ttl` seconds are dropped along
    with their ephemeral namespace, and beyond `max_clients` the least
    recently used orchestrator is dropped (its stores are kept, so the
    next request resumes from the snapshot). An orchestrator with an
    attempt in flight is never dropped.
    """

    def __init__(self, backend: StorageBackend, max_clients: Optional[int] = None,
                 idle_ttl: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.backend = backend
        self.max_clients = max_clients or settings.MAX_ACTIVE_CLIENTS
        self.idle_ttl = idle_ttl or settings.SESSION_TTL_SECONDS
        self._clock = clock
        self._orchestrators: "OrderedDict[str, AnalysisOrchestrator]" = OrderedDict()
        self._last_access: Dict[str, float] = {}
        self._lock = threading.Lock()

    def get(self, client_id: str) -> AnalysisOrchestrator:
        with self._lock:
            now = self._clock()
            self._evict_idle(now)

            orchestrator = self._orchestrators.get(client_id)
            if orchestrator is None:
                orchestrator = self._build(client_id)
                self._orchestrators[client_id] = orchestrator
            self._orchestrators.move_to_end(client_id)
            self._last_access[client_id] = now

            self._evict_overflow(keep=client_id)
        self.backend.touch(client_id)
        return orchestrator

    def discard(self, client_id: str) -> None:
        with self._lock:
            self._orchestrators.pop(client_id, None)
            self._last_access.pop(client_id, None)

    def __len__(self) -> int:
        return len(self._orchestrators)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._orchestrators

    def _evict_idle(self, now: float) -> None:
        for client_id in list(self._orchestrators):
            if now - self._last_access[client_id] < self.idle_ttl:
                break
            if self._orchestrators[client_id].is_busy:
                continue
            self._drop(client_id)
            self.backend.release(client_id)
            logger.info(f"🧹 유휴 세션 정리: {mask_client_id(client_id)}")

    def _evict_overflow(self, keep: str) -> None:
        while len(self._orchestrators) > self.max_clients:
            victim = next(
                (cid for cid, orch in self._orchestrators.items() if cid != keep and not orch.is_busy), None
            )
            if victim is None:
                return
            self._drop(victim)

    def _drop(self, client_id: str) -> None:
        del self._orchestrators[client_id]
        del self._last_access[client_id]

    def _build(self, client_id: str) -> AnalysisOrchestrator:
        from services.checkout_service import get_checkout_service
        from services.email_service import get_email_service
        from services.gemini_analysis_service import get_analysis_service
        from services.hairstyle_synthesis_service import get_synthesis_service
        from services.premium_gate import PremiumEntitlementGate
        from storage.local_store import LocalPersistenceStore
        from storage.session_snapshot import SessionSnapshotManager

        durable = self.backend.durable(client_id)
        orchestrator = AnalysisOrchestrator(
            store=LocalPersistenceStore(durable),
            snapshots=SessionSnapshotManager(self.backend.ephemeral(client_id)),
            gate=PremiumEntitlementGate(durable),
            analysis_service=get_analysis_service(),
            synthesis_service=get_synthesis_service(),
            checkout_service=get_checkout_service(),
            email_service=get_email_service(),
        )
        if orchestrator.resume_from_snapshot():
            logger.info(f"🔄 세션 복원: {mask_client_id(client_id)}")
        return orchestrator


# ========== Initialization Functions (Called from main.py) ==========
def init_services(backend: StorageBackend) -> None:
    """
    Initialize global service instances

    Called from main.py startup event
    """
    global _storage_backend, _registry

    _storage_backend = backend
    _registry = OrchestratorRegistry(backend)
    logger.info(f"✅ 의존성 주입 서비스 초기화 완료 (storage={backend.name})")


# ========== Dependency Providers (for FastAPI Depends) ==========
def get_storage_backend() -> StorageBackend:
    """Storage backend, created lazily when startup has not run (tests, Lambda cold start)"""
    global _storage_backend
    if _storage_backend is None:
        from storage import init_storage
        init_services(init_storage())
    return _storage_backend


def get_registry() -> OrchestratorRegistry:
    if _registry is None:
        get_storage_backend()
    return _registry


def get_client_id(x_client_id: Optional[str] = Header(None)) -> str:
    """
    Per-tab client id sent in the X-Client-Id header

    Raises:
        HTTPException: 400 when missing or malformed
    """
    if not x_client_id or not _CLIENT_ID_PATTERN.match(x_client_id):
        raise HTTPException(status_code=400, detail="X-Client-Id 헤더가 필요합니다 (8-64자 영숫자)")
    return x_client_id


def get_orchestrator(
    client_id: str = Depends(get_client_id),
    registry: OrchestratorRegistry = Depends(get_registry)
) -> AnalysisOrchestrator:
    return registry.get(client_id)


def get_library(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)) -> LibraryService:
    return LibraryService(orchestrator.store)


def reset_services() -> None:
    """Drop all singletons (tests)"""
    global _storage_backend, _registry
    _storage_backend = None
    _registry = None
