"""
Compute Ops Adapter

Transport for the orchestration engine: performs authenticated,
region-scoped REST calls and returns parsed JSON or raises a structured error.

All calls to the Compute Ops API go through this adapter to ensure:
- Circuit breaker protection per region
- Logging of every call with its response time
- Consistent error mapping via map_api_error
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

import requests

from ..session_manager import SessionManager
from . import endpoints
from .errors import CircuitBreakerOpenError, ErrorCodes, TransportError, map_api_error


class ComputeOpsAdapter:
    """
    Adapter that integrates Compute Ops API calls with our infrastructure.

    Only `make_request()` is used by the orchestration components, so any
    object exposing the same method can stand in for it.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        region: str,
        logger: Optional[logging.Logger] = None,
        base_url: Optional[str] = None,
        timeout: Tuple[int, int] = (5, 30),
    ):
        """
        Initialize the adapter.

        Args:
            session_manager: SessionManager holding the authenticated sessions
            region: Compute Ops region (e.g. us-west)
            logger: Logger instance for operation logging
            base_url: Override for the regional API host
            timeout: Tuple of (connect_timeout, read_timeout)
        """
        self.session_manager = session_manager
        self.region = region
        self.logger = logger or logging.getLogger(__name__)
        self.base_url = (base_url or endpoints.API_HOST_TEMPLATE.format(region=region)).rstrip('/')
        self.timeout = timeout

    def make_request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict] = None,
        operation_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Unified request method for all Compute Ops API calls.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            endpoint: API path (e.g. /compute-ops-mgmt/v1/jobs/{id})
            payload: Optional JSON payload for POST/PATCH
            operation_name: Human-readable operation name for logging

        Returns:
            dict: Response JSON data ({} for empty bodies)

        Raises:
            CircuitBreakerOpenError: If circuit breaker is open for this region
            NotFoundError: On HTTP 404 without a more specific signal
            TransportError: On any other HTTP or JSON failure
        """
        if self.session_manager.is_circuit_open(self.region):
            raise CircuitBreakerOpenError(self.region)

        method = method.upper()
        if method not in ('GET', 'POST', 'PATCH', 'DELETE'):
            raise ValueError(f"Unsupported HTTP method: {method}")

        url = f"{self.base_url}{endpoint}"
        operation_name = operation_name or f"{method} {endpoint}"

        request_kwargs: Dict[str, Any] = {'timeout': self.timeout}
        if payload is not None:
            request_kwargs['json'] = payload

        start_time = time.time()
        try:
            response = self.session_manager.make_request(method, url, self.region, **request_kwargs)
        except requests.exceptions.RequestException as e:
            response_time_ms = int((time.time() - start_time) * 1000)
            self.session_manager.record_failure(self.region, None)
            self.logger.error(f"{operation_name} failed after {response_time_ms}ms: {e}")
            raise TransportError(str(e), kind=ErrorCodes.CONNECTION)

        response_time_ms = int((time.time() - start_time) * 1000)
        status_code = response.status_code

        try:
            response_data = response.json() if response.text else {}
        except ValueError:
            response_data = None

        if status_code >= 400:
            if self.session_manager.record_failure(self.region, status_code):
                self.logger.warning(f"Circuit breaker opened for {self.region} after repeated failures")
            self.logger.warning(f"{operation_name} -> HTTP {status_code} ({response_time_ms}ms)")
            raise map_api_error(status_code, response_data if response_data is not None else response.text)

        self.session_manager.record_success(self.region)
        self.logger.debug(f"{operation_name} -> HTTP {status_code} ({response_time_ms}ms)")

        if response_data is None:
            raise TransportError(
                f"{operation_name} returned a non-JSON body",
                kind=ErrorCodes.INVALID_RESPONSE,
                status_code=status_code,
                response_body=response.text[:2000],
            )

        return response_data

    def close(self):
        """Release the pooled HTTP sessions."""
        self.session_manager.close_all_sessions()
