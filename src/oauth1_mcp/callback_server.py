"""Local HTTP listener that captures the verifier from the provider redirect."""

import logging
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Protocol

from .exceptions import MismatchError

logger = logging.getLogger(__name__)

DEFAULT_PAGE = (
    b"<html><body><h1>Authorization complete</h1>"
    b"<p>You can close this window and return to the application.</p>"
    b"</body></html>"
)


class VerifierReceiver(Protocol):
    """Anything that accepts a captured verifier."""

    def set_verifier_received(self, request_token: str, verifier: str) -> None: ...


class _CallbackHandler(BaseHTTPRequestHandler):
    server_version = "OAuth1Callback/1.0"
    server: "_CallbackHTTPServer"

    def do_GET(self):
        query = urllib.parse.parse_qs(urllib.parse.urlparse(self.path).query)
        token = query.get("oauth_token", [""])[0]
        verifier = query.get("oauth_verifier", [""])[0]

        if not token or not verifier:
            self._reply(400, b"Missing oauth_token or oauth_verifier")
            return

        try:
            self.server.receiver.set_verifier_received(token, verifier)
        except MismatchError:
            self._reply(409, b"This authorization does not match the pending request")
            return

        self._reply(200, self.server.page(), content_type="text/html")

    def _reply(
        self, status: int, body: bytes, content_type: str = "text/plain"
    ) -> None:
        self.send_response(status)
        self.send_header("Content-Type", f"{content_type}; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.debug("Callback server: " + format, *args)


class _CallbackHTTPServer(HTTPServer):
    """HTTPServer carrying the receiver and doc root."""

    def __init__(self, address, receiver: VerifierReceiver, doc_root: str):
        super().__init__(address, _CallbackHandler)
        self.receiver = receiver
        self.doc_root = doc_root

    def page(self) -> bytes:
        index = Path(self.doc_root) / "index.html"
        try:
            return index.read_bytes()
        except OSError:
            return DEFAULT_PAGE


class VerifierCallbackServer:
    """Captures one OAuth redirect on a freshly bound local port.

    The server runs its accept loop on a daemon thread and hands the
    ``oauth_token``/``oauth_verifier`` pair to the receiver. It can be
    stopped and started again; every start binds a new ephemeral port.
    """

    def __init__(
        self,
        receiver: VerifierReceiver,
        host: str = "127.0.0.1",
        doc_root: str = "VerifierCallbackServer/",
        port: int = 0,
    ) -> None:
        self._receiver = receiver
        self._host = host
        self._doc_root = doc_root
        self._port = port
        self._server: _CallbackHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def url(self) -> str:
        """URL to pass as ``oauth_callback``; empty while stopped."""
        if self._server is None:
            return ""
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}/"

    def start(self) -> str:
        """Bind and start serving.

        Returns:
            The callback URL.
        """
        if self._server is None:
            self._server = _CallbackHTTPServer(
                (self._host, self._port), self._receiver, self._doc_root
            )
            self._thread = threading.Thread(
                target=self._server.serve_forever,
                name="oauth1-callback-server",
                daemon=True,
            )
            self._thread.start()
            logger.info("Verifier callback server listening on %s", self.url)
        return self.url

    def stop(self) -> None:
        """Stop serving and release the port."""
        if self._server is None:
            return
        server, thread = self._server, self._thread
        self._server = None
        self._thread = None
        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join()
        logger.info("Verifier callback server stopped")
