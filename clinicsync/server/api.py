"""
HTTP endpoint for the reconciliation service.

Usage:
    python -m clinicsync.server.api

Endpoints:
    GET  /health                      - Health check, used as reachability probe
    POST /api/sync                    - Reconcile a batch of offline changes
    GET  /api/records/<entity_type>   - List the caller's records of one type

Every /api route needs ``Authorization: Bearer <api key>``; the key picks
the tenant whose key space the request works in.
"""

import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Optional, Tuple

from ..config.app_config import AppConfig, ServerConfig
from ..models import ChangeEntry
from ..models.verdict import verdicts_to_response
from ..utils.serialization import dumps
from .reconciliation import ReconciliationService
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class SyncHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the service and the credential table."""

    daemon_threads = True

    def __init__(
        self,
        server_address: Tuple[str, int],
        service: ReconciliationService,
        api_keys: Dict[str, str]
    ):
        super().__init__(server_address, SyncAPIHandler)
        self.service = service
        self.api_keys = dict(api_keys)


class SyncAPIHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the sync API."""

    server: SyncHTTPServer

    def _send_json_response(self, status_code: int, data: dict):
        """Send a JSON response."""
        body = dumps(data).encode('utf-8')
        self.send_response(status_code)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _tenant(self) -> Optional[str]:
        """Resolve the bearer token to a tenant, None if unknown."""
        header = self.headers.get('Authorization', '')
        scheme, _, token = header.partition(' ')
        if scheme.lower() != 'bearer' or not token:
            return None
        return self.server.api_keys.get(token.strip())

    def do_GET(self):
        """Handle GET requests."""
        if self.path in ('/health', '/api/health'):
            self._send_json_response(200, {'status': 'ok'})
            return

        if self.path.startswith('/api/records/'):
            tenant = self._tenant()
            if tenant is None:
                self._send_json_response(401, {'error': 'Unauthorized'})
                return
            entity_type = self.path[len('/api/records/'):].strip('/')
            if not entity_type or '/' in entity_type:
                self._send_json_response(404, {'error': 'Not found'})
                return
            records = self.server.service.store.list_records(tenant, entity_type)
            self._send_json_response(200, {'count': len(records), 'records': records})
            return

        self._send_json_response(404, {'error': 'Not found'})

    def do_POST(self):
        """Handle POST requests."""
        if self.path != '/api/sync':
            self._send_json_response(404, {'error': 'Not found'})
            return

        tenant = self._tenant()
        if tenant is None:
            self._send_json_response(401, {'error': 'Unauthorized'})
            return

        content_length = int(self.headers.get('Content-Length', 0))
        body = self.rfile.read(content_length)

        try:
            request = json.loads(body.decode('utf-8'))
            changes = request.get('changes') if isinstance(request, dict) else None
            if not isinstance(changes, list):
                raise ValueError("'changes' must be a list")
            batch = [ChangeEntry.from_wire(item) for item in changes]
        except (UnicodeDecodeError, ValueError) as e:
            logger.error(f"Invalid sync request: {e}")
            self._send_json_response(400, {'error': f'Invalid request: {e}'})
            return

        try:
            verdicts = self.server.service.reconcile(tenant, batch)
        except Exception as e:
            logger.exception(f"Error reconciling batch for {tenant}: {e}")
            self._send_json_response(500, {'error': str(e)})
            return

        self._send_json_response(200, verdicts_to_response(verdicts))

    def log_message(self, format, *args):
        """Override to use Python logging instead of stderr."""
        logger.debug(f"{self.address_string()} - {format % args}")


def create_server(config: ServerConfig, service: Optional[ReconciliationService] = None) -> SyncHTTPServer:
    """Build a server bound to the configured address without starting it."""
    if service is None:
        service = ReconciliationService(RecordStore(config.db_path))
    return SyncHTTPServer((config.host, config.port), service, config.api_keys)


def run_server(config: Optional[ServerConfig] = None):
    """Run the sync API server until interrupted."""
    config = config or AppConfig.from_env().server
    httpd = create_server(config)
    host, port = httpd.server_address[:2]
    logger.info(f"Sync API server running on http://{host}:{port}")
    logger.info(f"Serving {len(config.api_keys)} tenant credentials")
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        logger.info("Server shutting down...")
    finally:
        httpd.server_close()
        httpd.service.store.close()


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    run_server()
