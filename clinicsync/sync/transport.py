"""
Transports that carry a batch of change entries to the reconciliation service.

HttpSyncTransport talks to the sync endpoint over HTTP. LocalSyncTransport
reconciles in-process and is only used when demo mode is switched on
explicitly; an HTTP failure is never answered with locally made-up data.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..errors import SyncTransportError
from ..models import ChangeEntry
from ..models.verdict import verdicts_to_response
from ..server.reconciliation import ReconciliationService
from ..utils.serialization import dumps

logger = logging.getLogger(__name__)


def _validate_response(body: Any) -> Dict[str, List[Dict[str, Any]]]:
    if not isinstance(body, dict):
        raise SyncTransportError("Sync response is not an object")
    synced = body.get("synced", [])
    conflicts = body.get("conflicts", [])
    if not isinstance(synced, list) or not isinstance(conflicts, list):
        raise SyncTransportError("Sync response has malformed synced/conflicts lists")
    return {"synced": synced, "conflicts": conflicts}


class HttpSyncTransport:
    """
    HTTPS client for the sync endpoint.

    One call sends one batch; there is no retry inside a call. Every request
    is bounded by ``timeout`` and any failure surfaces as SyncTransportError.
    """

    DEFAULT_BASE_URL = "http://localhost:8080"
    SYNC_PATH = "/api/sync"
    HEALTH_PATH = "/health"
    DEFAULT_TIMEOUT = 30.0  # seconds
    HEALTH_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        """
        Initialize the transport.

        Args:
            base_url: Root URL of the sync server
            api_key: Tenant-scoped credential sent as a bearer token
            timeout: Seconds before a sync request is abandoned
        """
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

    @property
    def sync_url(self) -> str:
        return self.base_url + self.SYNC_PATH

    def _build_headers(self) -> Dict[str, str]:
        """Build HTTP headers for the request."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "ClinicSync/0.1"
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def submit(self, entries: Sequence[ChangeEntry]) -> Dict[str, List[Dict[str, Any]]]:
        """
        Send a batch and return the decoded verdict lists.

        Args:
            entries: Pending entries in log order

        Returns:
            Dict with "synced" and "conflicts" lists

        Raises:
            SyncTransportError: On network failure, timeout, non-success
                                status or an unreadable response
        """
        data = dumps({"changes": [entry.to_wire() for entry in entries]})
        try:
            response = requests.post(
                self.sync_url,
                data=data.encode('utf-8'),
                headers=self._build_headers(),
                timeout=self.timeout
            )
        except requests.Timeout as e:
            logger.error(f"Sync request timed out after {self.timeout}s")
            raise SyncTransportError(f"Sync request timed out: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Error sending sync batch: {e}")
            raise SyncTransportError(f"Sync request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Sync endpoint returned {response.status_code}")
            raise SyncTransportError(
                f"Sync endpoint returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as e:
            raise SyncTransportError(f"Sync response is not valid JSON: {e}") from e
        return _validate_response(body)

    def is_available(self) -> bool:
        """Test if the sync server is reachable."""
        try:
            response = requests.get(
                self.base_url + self.HEALTH_PATH,
                headers=self._build_headers(),
                timeout=self.HEALTH_TIMEOUT
            )
            return response.status_code == 200
        except requests.RequestException:
            return False


class LocalSyncTransport:
    """
    In-process transport for demo and offline-simulation mode.

    Batches go straight to a ReconciliationService owned by the caller and
    come back in the same shape the HTTP endpoint produces.
    """

    def __init__(self, service: ReconciliationService, tenant: str):
        self.service = service
        self.tenant = tenant

    def submit(self, entries: Sequence[ChangeEntry]) -> Dict[str, List[Dict[str, Any]]]:
        # Round-trip through JSON so demo mode sees the same values the wire would carry.
        wire = json.loads(dumps([entry.to_wire() for entry in entries]))
        batch = [ChangeEntry.from_wire(item) for item in wire]
        verdicts = self.service.reconcile(self.tenant, batch)
        return verdicts_to_response(verdicts)

    def is_available(self) -> bool:
        return True
