"""
Request Telemetry for MUN Registration Application

Every data-service and auth-service call goes through RequestTracker.track,
which measures the call and appends exactly one record to the
``firebase_request_logs`` collection. Telemetry never aborts the call it
observes: failures to persist a record are logged and dropped.

Records carry the address of the client behind the current Flask request;
only calls made outside a request (startup, CLI) fall back to the
server's public IP.
"""

import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, TypeVar

import httpx
from flask import has_request_context, request, session

from .models import RequestLogRecord
from .repositories import DocumentStore

logger = logging.getLogger(__name__)

REQUEST_LOGS_COLLECTION = "firebase_request_logs"
IP_LOOKUP_ENDPOINTS = (
    "https://api.ipify.org?format=json",
    "https://api64.ipify.org?format=json",
)

T = TypeVar("T")

_UNRESOLVED = object()


class PublicIpResolver:
    """
    Resolves the process's public IP address once

    Concurrent callers share a single in-flight lookup; the result,
    including a failed lookup (None), is cached for the process lifetime.
    Endpoints are tried in order, each with its own timeout.
    """

    def __init__(
        self,
        endpoints: Sequence[str] = IP_LOOKUP_ENDPOINTS,
        timeout: float = 3.5,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.endpoints = tuple(endpoints)
        self.timeout = timeout
        self._transport = transport
        self._lock = threading.Lock()
        self._resolved: Any = _UNRESOLVED
        self._inflight: Optional[Future] = None

    @property
    def is_resolved(self) -> bool:
        return self._resolved is not _UNRESOLVED

    def resolve(self) -> Optional[str]:
        """
        Get the public IP address

        Returns:
            The address, or None if every endpoint failed
        """
        with self._lock:
            if self._resolved is not _UNRESOLVED:
                return self._resolved
            owner = self._inflight is None
            if owner:
                self._inflight = Future()
            inflight = self._inflight

        if owner:
            address = None
            try:
                address = self._lookup()
            finally:
                with self._lock:
                    self._resolved = address
                    self._inflight = None
                inflight.set_result(address)

        return inflight.result()

    def _lookup(self) -> Optional[str]:
        with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
            for endpoint in self.endpoints:
                address = self._fetch(client, endpoint)
                if address:
                    return address
        logger.warning("Public IP lookup failed on all %d endpoints", len(self.endpoints))
        return None

    @staticmethod
    def _fetch(client: httpx.Client, endpoint: str) -> Optional[str]:
        try:
            response = client.get(endpoint, headers={"Cache-Control": "no-store"})
            if not response.is_success:
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("IP lookup via %s failed: %s", endpoint, e)
            return None

        address = data.get("ip") if isinstance(data, dict) else None
        if isinstance(address, str) and address.strip():
            return address.strip()
        return None


_resolver: Optional[PublicIpResolver] = None
_resolver_lock = threading.Lock()


def get_ip_resolver(timeout: float = 3.5) -> PublicIpResolver:
    """Process-scoped resolver shared by every tracker"""
    global _resolver
    with _resolver_lock:
        if _resolver is None:
            _resolver = PublicIpResolver(timeout=timeout)
        return _resolver


def _flask_user_id() -> Optional[str]:
    if not has_request_context():
        return None
    account = session.get("account") or {}
    return account.get("uid")


def _flask_client_context() -> Tuple[Optional[str], Optional[str]]:
    if not has_request_context():
        return None, None
    return request.headers.get("User-Agent"), request.path


def _flask_client_ip() -> Optional[str]:
    """Address of the browser behind the current request, honoring X-Forwarded-For"""
    if not has_request_context():
        return None
    route = request.access_route
    return route[0] if route else request.remote_addr


class RequestTracker:
    """
    Wraps remote calls and persists one request log record per call
    """

    def __init__(
        self,
        store: DocumentStore,
        ip_resolver: Optional[PublicIpResolver] = None,
        user_id_provider: Callable[[], Optional[str]] = _flask_user_id,
        context_provider: Callable[[], Tuple[Optional[str], Optional[str]]] = _flask_client_context,
        ip_provider: Callable[[], Optional[str]] = _flask_client_ip,
    ):
        """
        Initialize request tracker

        Args:
            store: Untracked store the log records are written to
            ip_resolver: Public IP fallback for calls made outside a request,
                defaults to the process resolver
            user_id_provider: Returns the authenticated user's id, if any
            context_provider: Returns (user agent, page path)
            ip_provider: Returns the requesting client's address, if any
        """
        self.store = store
        self.ip_resolver = ip_resolver or get_ip_resolver()
        self.user_id_provider = user_id_provider
        self.context_provider = context_provider
        self.ip_provider = ip_provider

    def track(
        self,
        service: str,
        operation: str,
        call: Callable[[], T],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Run a remote call and log it

        Args:
            service: 'firestore' or 'auth'
            operation: Operation name, e.g. 'getAll'
            call: Zero-argument callable performing the request
            metadata: Free-form details stored with the record

        Returns:
            Whatever the call returns

        Raises:
            Any exception raised by the call, unchanged
        """
        start = time.monotonic()
        try:
            result = call()
        except Exception as e:
            self._persist(RequestLogRecord(
                service=service,
                operation=operation,
                status="error",
                duration_ms=self._elapsed_ms(start),
                metadata=metadata or {},
                error_message=str(e) or type(e).__name__
            ))
            raise

        self._persist(RequestLogRecord(
            service=service,
            operation=operation,
            status="success",
            duration_ms=self._elapsed_ms(start),
            metadata=metadata or {}
        ))
        return result

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    def _persist(self, record: RequestLogRecord) -> None:
        try:
            record.ip_address = self.ip_provider() or self.ip_resolver.resolve()
            record.user_id = self.user_id_provider()
            record.user_agent, record.page_path = self.context_provider()
            self.store.add(REQUEST_LOGS_COLLECTION, record.to_dict())
        except Exception:
            logger.exception(
                "Unable to persist request log for %s.%s", record.service, record.operation
            )
