"""HTTP API for the MAC whitelist.

Built on ``http.server``. A single endpoint dispatches on the ``action``
query parameter:

* **POST   ?action=check-access**  - authorize a device by its candidate addresses.
* **POST   ?action=add-mac**       - add an address (admin).
* **POST   ?action=update-access** - change an address's access tier (admin).
* **DELETE ?action=remove-mac**    - remove an address (admin).
* **POST   ?action=list-macs**     - list entries with statistics (admin).
* **POST   ?action=bulk-add**      - add many addresses at once (admin).
* **POST   ?action=access-log**    - recent access checks (admin).
* **GET    ?action=health**        - store status, no authentication.

Every response carries permissive CORS headers. Requests are rate limited
per client IP.

Start with::

    mac-whitelist serve --port 8080
"""

from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlsplit

from .allowlist import is_valid_mac, parse_tier
from .errors import ValidationError
from .ratelimit import RateLimiter
from .service import OperationResult, WhitelistService

logger = logging.getLogger(__name__)

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


class WhitelistHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        service: WhitelistService,
        rate_limiter: RateLimiter,
    ) -> None:
        super().__init__(address, _Handler)
        self.service = service
        self.rate_limiter = rate_limiter


# ------------------------------------------------------------------
# Request handler
# ------------------------------------------------------------------


class _Handler(BaseHTTPRequestHandler):
    server: WhitelistHTTPServer

    @property
    def service(self) -> WhitelistService:
        return self.server.service

    def _client_ip(self) -> str:
        forwarded = self.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return self.client_address[0] if self.client_address else "unknown"

    def _send_json(self, status: int, body: dict[str, Any]) -> None:
        payload = json.dumps(body).encode()
        self.send_response(status)
        for name, value in _CORS_HEADERS.items():
            self.send_header(name, value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def _send_result(self, result: OperationResult) -> None:
        self._send_json(result.status, result.to_dict())

    def _read_json(self) -> dict[str, Any] | None:
        """Parse request body as a JSON object; send 400 on failure."""
        try:
            length = int(self.headers.get("Content-Length", 0) or 0)
        except ValueError:
            self._send_json(400, {"success": False, "message": "Invalid JSON"})
            return None
        raw = self.rfile.read(length) if length > 0 else b""
        if not raw:
            return {}
        try:
            body = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            self._send_json(400, {"success": False, "message": "Invalid JSON"})
            return None
        if not isinstance(body, dict):
            self._send_json(400, {"success": False, "message": "Request body must be a JSON object"})
            return None
        return body

    # --- check-access ---------------------------------------------------

    def _handle_check_access(self, body: dict[str, Any], ip: str) -> None:
        result = self.service.check_access(
            body.get("macAddresses"), body.get("deviceInfo"), ip=ip
        )
        payload = result.to_dict()
        if result.status in (200, 403):
            payload["authorized"] = result.success
        self._send_json(result.status, payload)

    # --- add-mac ---------------------------------------------------------

    def _handle_add_mac(self, body: dict[str, Any], ip: str) -> None:
        self._send_result(self.service.add_mac(
            body.get("macAddress"),
            body.get("description"),
            body.get("accessType"),
            admin_key=body.get("adminKey"),
            ip=ip,
        ))

    # --- update-access ---------------------------------------------------

    def _handle_update_access(self, body: dict[str, Any], ip: str) -> None:
        self._send_result(self.service.update_access(
            body.get("macAddress"),
            body.get("accessType"),
            admin_key=body.get("adminKey"),
            ip=ip,
        ))

    # --- remove-mac ------------------------------------------------------

    def _handle_remove_mac(self, body: dict[str, Any], ip: str) -> None:
        self._send_result(self.service.remove_mac(
            body.get("macAddress"), admin_key=body.get("adminKey"), ip=ip
        ))

    # --- list-macs -------------------------------------------------------

    def _handle_list_macs(self, body: dict[str, Any], ip: str) -> None:
        self._send_result(self.service.list_macs(admin_key=body.get("adminKey"), ip=ip))

    # --- bulk-add --------------------------------------------------------

    def _handle_bulk_add(self, body: dict[str, Any], ip: str) -> None:
        items = body.get("macAddresses")
        # Malformed addresses or tiers reject the whole batch up front.
        if self.service.is_admin(body.get("adminKey")) and isinstance(items, list):
            for item in items:
                mac = item.get("macAddress") if isinstance(item, dict) else None
                if not is_valid_mac(mac):
                    self._send_json(400, {"success": False, "message": f"Invalid MAC address: {mac}"})
                    return
                try:
                    parse_tier(item.get("accessType"))
                except ValidationError:
                    self._send_json(400, {
                        "success": False,
                        "message": f"Invalid access type for {mac}: {item.get('accessType')}",
                    })
                    return
        self._send_result(self.service.bulk_add(items, admin_key=body.get("adminKey"), ip=ip))

    # --- access-log ------------------------------------------------------

    def _handle_access_log(self, body: dict[str, Any], ip: str) -> None:
        limit = body.get("limit")
        if limit is not None and not isinstance(limit, int):
            self._send_json(400, {"success": False, "message": "limit must be an integer"})
            return
        self._send_result(self.service.access_events(admin_key=body.get("adminKey"), limit=limit, ip=ip))

    # --- health ----------------------------------------------------------

    def _handle_health(self, body: dict[str, Any], ip: str) -> None:
        self._send_json(200, self.service.health())

    # --- Routing ---------------------------------------------------------

    _ROUTES: dict[str, tuple] = {
        "check-access": ("POST", "_handle_check_access"),
        "add-mac": ("POST", "_handle_add_mac"),
        "update-access": ("POST", "_handle_update_access"),
        "remove-mac": ("DELETE", "_handle_remove_mac"),
        "list-macs": ("POST", "_handle_list_macs"),
        "bulk-add": ("POST", "_handle_bulk_add"),
        "access-log": ("POST", "_handle_access_log"),
        "health": ("GET", "_handle_health"),
    }

    def _dispatch(self, method: str) -> None:
        ip = self._client_ip()
        security = self.service.security
        try:
            if not self.server.rate_limiter.allow(ip):
                security.log_event("RATE_LIMIT_EXCEEDED", ip=ip, level=logging.WARNING)
                self._send_json(429, {
                    "success": False,
                    "message": "Too many requests. Please try again later.",
                })
                return

            query = parse_qs(urlsplit(self.path).query)
            action = (query.get("action") or [None])[0]
            route = self._ROUTES.get(action or "")
            if route is None:
                security.log_event("INVALID_ACTION", ip=ip, action=action)
                self._send_json(400, {"success": False, "message": "Invalid action specified"})
                return

            expected_method, handler_name = route
            if method != expected_method:
                self._send_json(405, {"success": False, "message": "Method not allowed"})
                return

            body: dict[str, Any] | None = {}
            if method != "GET":
                body = self._read_json()
                if body is None:
                    return
            getattr(self, handler_name)(body, ip)
        except Exception as e:
            logger.exception("Unhandled error serving %s %s", method, self.path)
            security.log_event("API_ERROR", ip=ip, level=logging.ERROR, details=str(e))
            self._send_json(500, {"success": False, "message": "Internal server error"})

    def do_OPTIONS(self) -> None:  # noqa: N802
        self.send_response(200)
        for name, value in _CORS_HEADERS.items():
            self.send_header(name, value)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:  # noqa: N802
        self._dispatch("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch("POST")

    def do_DELETE(self) -> None:  # noqa: N802
        self._dispatch("DELETE")

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)


def create_server(
    service: WhitelistService,
    host: str = "0.0.0.0",
    port: int = 8080,
    rate_limiter: RateLimiter | None = None,
) -> WhitelistHTTPServer:
    """Create (but do not start) the whitelist HTTP server."""
    if rate_limiter is None:
        rate_limiter = RateLimiter(
            limit=service.settings.rate_limit,
            window_seconds=service.settings.rate_window_seconds,
        )
    return WhitelistHTTPServer((host, port), service, rate_limiter)
