"""Hardened CRUD facade in front of the record store.

Every call runs the same pipeline: per-actor rate limit, recursive input
sanitization, injection screening of lookup parameters, a hard timeout, and
(for reads) removal of sensitive fields. Mutations are written to the audit
trail. Callers see four distinct failures: :class:`StorageRateLimitError`,
:class:`StorageValidationError`, :class:`StorageTimeoutError` and the generic
:class:`StorageError`; the underlying exception is only logged here.

A timed-out operation is not cancelled. Its thread may still finish after
the caller has been answered.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Protocol, TypeVar

from app_platform.config.rate_limit import ScopeLimit
from app_platform.rate_limit.window_limiter import RateLimiter
from app_platform.security.sanitizer import find_injection, sanitize_input
from domains.auth.exceptions import (
    AuthError,
    AuthorizationError,
    StorageError,
    StorageRateLimitError,
    StorageTimeoutError,
    StorageValidationError,
)
from domains.auth.models import ADMIN

logger = logging.getLogger(__name__)

T = TypeVar("T")

SENSITIVE_FIELDS: FrozenSet[str] = frozenset(
    {
        "password",
        "password_hash",
        "passwordhash",
        "mfasecret",
        "mfa_secret",
        "sessiontoken",
        "session_token",
        "ipwhitelist",
        "ip_whitelist",
    }
)
MAX_RESULTS_LIMIT = 1000
_COLLECTION_NAME = re.compile(r"^[a-z][a-z0-9_]{0,63}$")


class RecordStore(Protocol):
    def select(self, collection: str, filters: Optional[Mapping[str, Any]] = None, limit: int = 100) -> List[Dict[str, Any]]: ...

    def insert(self, collection: str, data: Mapping[str, Any]) -> Dict[str, Any]: ...

    def update(self, collection: str, record_id: str, changes: Mapping[str, Any]) -> Optional[Dict[str, Any]]: ...

    def delete(self, collection: str, record_id: str) -> bool: ...

    def ping(self) -> bool: ...


class Actor(Protocol):
    id: str
    type: str


def redact(value: Any) -> Any:
    """Recursively drop sensitive keys from mappings."""

    if isinstance(value, Mapping):
        return {
            k: redact(v)
            for k, v in value.items()
            if not (isinstance(k, str) and k.lower() in SENSITIVE_FIELDS)
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    return value


class SecureDataWrapper:
    def __init__(
        self,
        store: RecordStore,
        limiter: RateLimiter,
        limit: ScopeLimit,
        audit: Any,
        *,
        timeout_s: float = 30.0,
        max_results: int = MAX_RESULTS_LIMIT,
        max_workers: int = 8,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.limit = limit
        self.audit = audit
        self.timeout_s = timeout_s
        self.max_results = max_results
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="secure-store")
        self._lockdown_lock = threading.Lock()
        self._lockdown_reason: Optional[str] = None

    # --------------------- public API ---------------------
    def select(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]],
        *,
        actor: Actor,
        limit: int = 100,
        include_sensitive: bool = False,
    ) -> List[Dict[str, Any]]:
        self._preflight(actor, collection)
        clean_filters = sanitize_input(dict(filters or {}))
        self._screen(clean_filters)
        bounded = max(1, min(int(limit), self.max_results))

        rows = self._run("select", collection, lambda: self.store.select(collection, clean_filters, bounded))

        if include_sensitive:
            self._audit(actor, "storage_elevated_read", collection, rows=len(rows))
            return rows
        return [redact(row) for row in rows]

    def insert(self, collection: str, data: Mapping[str, Any], *, actor: Actor) -> Dict[str, Any]:
        self._preflight(actor, collection)
        clean = sanitize_input(dict(data))
        if "id" in clean:
            self._screen({"id": clean["id"]})

        created = self._run("insert", collection, lambda: self.store.insert(collection, clean))
        self._audit(actor, "storage_insert", collection, record_id=created.get("id"), fields=sorted(clean))
        return redact(created)

    def update(self, collection: str, record_id: str, changes: Mapping[str, Any], *, actor: Actor) -> Optional[Dict[str, Any]]:
        self._preflight(actor, collection)
        clean = sanitize_input(dict(changes))
        self._screen({"id": record_id})

        updated = self._run("update", collection, lambda: self.store.update(collection, record_id, clean))
        self._audit(actor, "storage_update", collection, record_id=record_id, fields=sorted(clean), found=updated is not None)
        return redact(updated) if updated is not None else None

    def delete(self, collection: str, record_id: str, *, actor: Actor) -> bool:
        self._preflight(actor, collection)
        self._screen({"id": record_id})

        deleted = self._run("delete", collection, lambda: self.store.delete(collection, record_id))
        self._audit(actor, "storage_delete", collection, record_id=record_id, found=deleted)
        return deleted

    def health_check(self) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            future = self._executor.submit(self.store.ping)
            future.result(timeout=self.timeout_s)
            status = "healthy"
        except Exception:  # noqa: BLE001
            logger.exception("Storage health check failed")
            status = "unhealthy"
        return {
            "status": status,
            "latency_ms": round((time.perf_counter() - start) * 1000.0, 3),
            "lockdown": self.lockdown_reason is not None,
        }

    def lockdown(self, reason: str) -> None:
        """Reject every non-administrator operation until the process restarts."""

        with self._lockdown_lock:
            self._lockdown_reason = reason
        logger.critical("Storage lockdown engaged: %s", reason)

    @property
    def lockdown_reason(self) -> Optional[str]:
        with self._lockdown_lock:
            return self._lockdown_reason

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # --------------------- internal helpers ---------------------
    def _preflight(self, actor: Actor, collection: str) -> None:
        key = f"storage:{actor.id}"
        if not self.limiter.check_and_record(key, self.limit.max_requests, self.limit.window_ms):
            raise StorageRateLimitError(retry_after=self.limiter.retry_after(key, self.limit.window_ms))

        if self.lockdown_reason is not None and actor.type != ADMIN:
            raise AuthorizationError("Service temporarily locked down")

        if not isinstance(collection, str) or not _COLLECTION_NAME.match(collection):
            raise StorageValidationError("Invalid collection")

    def _screen(self, params: Mapping[str, Any]) -> None:
        offending = find_injection(params)
        if offending is not None:
            raise StorageValidationError("Invalid query parameters detected", parameter=offending)

    def _run(self, operation: str, collection: str, fn: Callable[[], T]) -> T:
        future = self._executor.submit(fn)
        try:
            return future.result(timeout=self.timeout_s)
        except FutureTimeout:
            logger.error("Storage %s on %s timed out after %.1fs", operation, collection, self.timeout_s)
            raise StorageTimeoutError() from None
        except AuthError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Storage %s on %s failed", operation, collection)
            raise StorageError() from exc

    def _audit(self, actor: Actor, action: str, collection: str, **details: Any) -> None:
        self.audit.log_event(
            action,
            user_id=actor.id,
            user_type=actor.type,
            details={"collection": collection, **details},
        )
