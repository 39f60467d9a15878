"""
Session Manager - per-region requests.Session management

Provides:
- Per-region requests.Session with bearer authorization
- Per-region request serialization (thread-safety)
- Circuit breaker after consecutive failures
- Session cleanup

Does NOT provide (intentionally):
- Token acquisition or refresh
- Retry or exponential backoff
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Dict, Optional

import requests

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Manages per-region requests.Session objects for the Compute Ops API.

    The access token is supplied by the caller's authentication layer and is
    never modified here.
    """

    def __init__(
        self,
        access_token: str,
        verify_ssl: bool = True,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 300,
    ):
        """
        Initialize the session manager.

        Args:
            access_token: Bearer token for the Compute Ops API
            verify_ssl: Whether to verify SSL certificates
            circuit_breaker_threshold: Consecutive failures before a region is paused
            circuit_breaker_timeout: Seconds a region stays paused
        """
        self.access_token = access_token
        self.sessions: Dict[str, requests.Session] = {}
        self.locks: Dict[str, threading.Lock] = {}  # Per-region locks for serialization
        self.lock_lock = threading.Lock()  # Lock for creating per-region locks
        self.verify_ssl = verify_ssl
        self.circuit_breaker_threshold = circuit_breaker_threshold
        self.circuit_breaker_timeout = circuit_breaker_timeout
        self.consecutive_failures: Dict[str, int] = defaultdict(int)
        self.circuit_breaker_open_until: Dict[str, float] = {}

        if not verify_ssl:
            import urllib3
            urllib3.disable_warnings()

    def _get_lock(self, region: str) -> threading.Lock:
        with self.lock_lock:
            if region not in self.locks:
                self.locks[region] = threading.Lock()
            return self.locks[region]

    def get_session(self, region: str) -> requests.Session:
        """
        Get or create a requests.Session for a region.

        Note: This method is NOT thread-safe for direct use.
        Use make_request() for thread-safe requests.
        """
        if region not in self.sessions:
            session = requests.Session()
            session.verify = self.verify_ssl
            session.headers.update({
                'Authorization': f'Bearer {self.access_token}',
                'Accept': 'application/json',
            })
            self.sessions[region] = session
        return self.sessions[region]

    def close_all_sessions(self):
        """Close all active sessions."""
        for key in list(self.sessions.keys()):
            try:
                self.sessions[key].close()
            except Exception as e:
                logger.debug(f"Error closing session for {key}: {e}")
        self.sessions.clear()

    def is_circuit_open(self, region: str) -> bool:
        """Check if circuit breaker is open for this region"""
        if region in self.circuit_breaker_open_until:
            if time.time() < self.circuit_breaker_open_until[region]:
                return True
            del self.circuit_breaker_open_until[region]
            self.consecutive_failures[region] = 0
        return False

    def record_success(self, region: str):
        self.consecutive_failures[region] = 0
        self.circuit_breaker_open_until.pop(region, None)

    def record_failure(self, region: str, status_code: Optional[int]) -> bool:
        """
        Record a failed request.

        Client errors other than auth failures and throttling say nothing about
        service health and are not counted.

        Returns:
            True if the circuit breaker opened
        """
        if status_code is not None and 400 <= status_code < 500 and status_code not in (401, 403, 429):
            return False

        self.consecutive_failures[region] += 1
        if self.consecutive_failures[region] >= self.circuit_breaker_threshold:
            self.circuit_breaker_open_until[region] = time.time() + self.circuit_breaker_timeout
            return True
        return False

    def make_request(self, method: str, url: str, region: str, **kwargs) -> requests.Response:
        """
        Make a thread-safe HTTP request with per-region serialization.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            url: Full URL to request
            region: Region the URL belongs to (used to get/create session)
            **kwargs: Additional arguments for requests.request()

        Returns:
            requests.Response object
        """
        lock = self._get_lock(region)

        with lock:
            session = self.get_session(region)

            if 'timeout' not in kwargs:
                kwargs['timeout'] = (5, 30)  # 5s connect, 30s read

            return session.request(method, url, **kwargs)
