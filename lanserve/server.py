import functools
import http.server
import logging
import socket
import ssl
import sys
import threading
from typing import Optional

from .config import ServeConfig
from .errors import ServerError
from .middleware import with_basic_auth, with_recovery, with_tracing

logger = logging.getLogger(__name__)

_BaseHandler = http.server.BaseHTTPRequestHandler

HANDSHAKE_TIMEOUT = 10.0


class ConnectionWriter:
    """Response writer that talks to the client connection of a request handler."""

    def __init__(self, handler: "FileRequestHandler"):
        self.handler = handler
        self.headers_sent = False

    def send_response(self, code, message=None):
        # Headers of a response that was never completed are discarded.
        self.handler._headers_buffer = []
        self.handler.log_request(code)
        _BaseHandler.send_response_only(self.handler, code, message)
        _BaseHandler.send_header(self.handler, "Server", self.handler.version_string())
        _BaseHandler.send_header(self.handler, "Date", self.handler.date_time_string())

    def send_header(self, keyword, value):
        _BaseHandler.send_header(self.handler, keyword, value)

    def end_headers(self):
        _BaseHandler.end_headers(self.handler)
        self.headers_sent = True

    def write(self, data):
        written = self.handler.connection_wfile.write(data)
        return len(data) if written is None else written

    def flush(self):
        self.handler.connection_wfile.flush()


class FileRequestHandler(http.server.SimpleHTTPRequestHandler):
    """Serves a directory, passing every parsed request through the middleware chain.

    While a request is being handled, the output methods used by
    SimpleHTTPRequestHandler (send_response, send_header, end_headers and wfile)
    forward to the response writer handed to serve_files(), so every layer of
    the chain sees what the file serving writes.
    """

    def __init__(self, *args, app, **kwargs):
        self.app = app
        self._response = None
        super().__init__(*args, **kwargs)

    def setup(self):
        # TLS handshakes run here, in the connection's own thread, not in the accept loop.
        if isinstance(self.request, ssl.SSLSocket):
            self.request.settimeout(HANDSHAKE_TIMEOUT)
            self.request.do_handshake()
            self.request.settimeout(None)
        super().setup()

    def __getattr__(self, name):
        # Any method http.server looks up (do_POST, do_PUT, ...) enters the chain too.
        if name.startswith("do_"):
            return self._dispatch
        raise AttributeError(name)

    @property
    def wfile(self):
        if self._response is not None:
            return self._response
        return self.connection_wfile

    @wfile.setter
    def wfile(self, value):
        self.connection_wfile = value

    def send_response(self, code, message=None):
        if self._response is None:
            super().send_response(code, message)
        else:
            self._response.send_response(code, message)

    def send_header(self, keyword, value):
        if self._response is None:
            super().send_header(keyword, value)
        else:
            self._response.send_header(keyword, value)

    def end_headers(self):
        if self._response is None:
            super().end_headers()
        else:
            self._response.end_headers()

    def flush_headers(self):
        # Status line and headers always go straight to the connection.
        if hasattr(self, "_headers_buffer"):
            self.connection_wfile.write(b"".join(self._headers_buffer))
            self._headers_buffer = []

    def log_message(self, format, *args):
        """Route http.server's own messages into logging; requests are traced by middleware."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        self._dispatch()

    def do_HEAD(self):
        self._dispatch()

    def _dispatch(self):
        self.app(self, ConnectionWriter(self))

    def serve(self, response):
        """Serve the requested file or directory listing into ``response``."""
        self._response = response
        try:
            if self.command == "HEAD":
                super().do_HEAD()
            elif self.command == "GET":
                super().do_GET()
            else:
                self.send_error(http.HTTPStatus.NOT_IMPLEMENTED, f"Unsupported method ({self.command!r})")
        finally:
            self._response = None


def serve_files(request: FileRequestHandler, response):
    """Innermost handler: the standard file and directory listing serving."""
    request.serve(response)


def build_handler(config: ServeConfig, serve=serve_files):
    """Compose the middleware chain around ``serve``.

    Recovery is the outermost layer so faults in tracing's logging are caught too.
    """
    handler = serve
    if config.auth_enabled:
        handler = with_basic_auth(handler, config.username, config.password)
    return with_recovery(with_tracing(handler))


class ThreadingFileHTTPServer(http.server.ThreadingHTTPServer):
    def handle_error(self, request, client_address):
        """Log connection-level failures (failed handshakes, resets) instead of printing to stderr."""
        error = sys.exc_info()[1]
        if isinstance(error, OSError):
            logger.debug("Connection from %s failed: %s", client_address, error)
        else:
            logger.exception("Error handling connection from %s", client_address)


class IPv6ThreadingFileHTTPServer(ThreadingFileHTTPServer):
    address_family = socket.AF_INET6


def format_url(scheme: str, host: str, port: int) -> str:
    if ":" in host:
        host = f"[{host}]"
    return f"{scheme}://{host}:{port}/"


class FileServer:
    """Threaded HTTP(S) server for the configured directory."""

    def __init__(self, config: ServeConfig, ssl_context=None, handler=None):
        self.config = config
        self.ssl_context = ssl_context
        self.handler = handler or build_handler(config)
        self.httpd: Optional[http.server.ThreadingHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None

    @property
    def address(self):
        """The (host, port) the server is bound to."""
        if self.httpd is None:
            return self.config.bind_address, self.config.port
        return self.httpd.server_address[:2]

    def url_for(self, host: str) -> str:
        return format_url(self.config.scheme, host, self.address[1])

    @property
    def url(self) -> str:
        return self.url_for(self.address[0])

    def start(self):
        """Bind the listener and serve in a separate thread."""
        handler_class = functools.partial(FileRequestHandler, app=self.handler, directory=self.config.directory)
        server_class = IPv6ThreadingFileHTTPServer if ":" in self.config.bind_address else ThreadingFileHTTPServer
        try:
            self.httpd = server_class((self.config.bind_address, self.config.port), handler_class)
        except OSError as e:
            raise ServerError(f"Failed to bind {self.config.bind_address}:{self.config.port}: {e}") from e

        if self.ssl_context is not None:
            # Handshakes are done by FileRequestHandler.setup() in the per-connection thread.
            self.httpd.socket = self.ssl_context.wrap_socket(
                self.httpd.socket, server_side=True, do_handshake_on_connect=False
            )

        self.server_thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)
        self.server_thread.start()
        logger.debug("Server listening on %s", self.url)

    def wait(self):
        """Block until the server stops; KeyboardInterrupt still reaches the caller."""
        while self.server_thread is not None and self.server_thread.is_alive():
            self.server_thread.join(0.5)

    def stop(self):
        if self.httpd:
            self.httpd.shutdown()
            self.httpd.server_close()
            if self.server_thread:
                self.server_thread.join(timeout=5)
            self.httpd = None
            logger.info("Server stopped")
