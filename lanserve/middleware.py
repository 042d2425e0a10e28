"""
Request middleware wrapped around the file-serving handler.

A handler is a callable ``handler(request, response)``. ``request`` is the
``http.server`` request handler of the connection (``client_address``,
``command``, ``path``, ``request_version``, ``headers``) and ``response`` is a
response writer offering ``send_response``, ``send_header``, ``end_headers``,
``write``, ``flush`` and ``headers_sent``. Middleware takes a handler and
returns a new one, so layers compose by nesting.

Recovery sits outside tracing, so the 500 it sends for a faulting request is
written after the trace line: such a request is traced with the status and
length recorded before the fault (``0 0`` when nothing was written).
"""

import base64
import binascii
import hmac
import json
import logging
from functools import wraps

logger = logging.getLogger(__name__)

_DISCONNECT_ERRORS = (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)


class StatusRecorder:
    """Response writer that forwards everything and remembers status and body length."""

    def __init__(self, response):
        self.response = response
        self.status = 0
        self.length = 0

    @property
    def headers_sent(self):
        return self.response.headers_sent

    def send_response(self, code, message=None):
        self.status = code
        self.response.send_response(code, message)

    def send_header(self, keyword, value):
        self.response.send_header(keyword, value)

    def end_headers(self):
        self.response.end_headers()

    def write(self, data):
        if self.status == 0:
            self.status = 200
        written = self.response.write(data)
        self.length += written
        return written

    def flush(self):
        self.response.flush()


def remote_address(request) -> str:
    host, port = request.client_address[:2]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _quote(value) -> str:
    return json.dumps(value or "", ensure_ascii=False)


def with_tracing(next_handler):
    """Log one line per request once the wrapped handler is done, also when it raises."""

    @wraps(next_handler)
    def handler(request, response):
        recorder = StatusRecorder(response)
        try:
            next_handler(request, recorder)
        finally:
            logger.info(
                "%s [%s] %s %s %d %d %s",
                remote_address(request),
                request.command,
                _quote(request.path),
                request.request_version,
                recorder.status,
                recorder.length,
                _quote(request.headers.get("User-Agent")),
            )

    return handler


def send_plain(request, response, code, text, headers=()):
    """Send a short text/plain response."""
    body = (text + "\n").encode("utf-8")
    response.send_response(code)
    response.send_header("Content-Type", "text/plain; charset=utf-8")
    response.send_header("X-Content-Type-Options", "nosniff")
    for keyword, value in headers:
        response.send_header(keyword, value)
    response.send_header("Content-Length", str(len(body)))
    response.end_headers()
    if request.command != "HEAD":
        response.write(body)


def with_recovery(next_handler):
    """Turn any exception raised while handling a request into a 500 response."""

    @wraps(next_handler)
    def handler(request, response):
        try:
            next_handler(request, response)
        except _DISCONNECT_ERRORS:
            # Client disconnected - log quietly and continue
            logger.debug("Client %s disconnected while serving %s", remote_address(request), request.path)
            request.close_connection = True
        except Exception:
            logger.exception("panic while serving %s %s", request.command, request.path)
            if response.headers_sent:
                # The status line is already out, all we can do is drop the connection.
                request.close_connection = True
                return
            try:
                send_plain(request, response, 500, "Internal Server Error")
            except _DISCONNECT_ERRORS:
                logger.debug("Client %s disconnected before the error response", remote_address(request))

    return handler


def _credentials_match(header, username, password) -> bool:
    if not header:
        return False
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic":
        return False
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return False
    given_user, sep, given_password = decoded.partition(":")
    if not sep:
        return False
    user_ok = hmac.compare_digest(given_user.encode("utf-8"), username.encode("utf-8"))
    password_ok = hmac.compare_digest(given_password.encode("utf-8"), password.encode("utf-8"))
    return user_ok and password_ok


def with_basic_auth(next_handler, username, password, realm="lanserve"):
    """Require HTTP basic auth credentials before calling the wrapped handler."""

    @wraps(next_handler)
    def handler(request, response):
        if _credentials_match(request.headers.get("Authorization"), username, password):
            next_handler(request, response)
            return
        logger.debug("Rejected credentials from %s", remote_address(request))
        send_plain(
            request,
            response,
            401,
            "Unauthorized",
            headers=[("WWW-Authenticate", f'Basic realm="{realm}", charset="UTF-8"')],
        )

    return handler
