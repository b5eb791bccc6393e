from __future__ import annotations

import logging
from io import BytesIO
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterable
    from typing import Any

    from .storage import StoredFile

    StartResponse = Callable[..., Any]
    WSGIApp = Callable[[dict[str, Any], StartResponse], Iterable[bytes]]


logger = logging.getLogger(__name__)

ENVIRON_KEY = "multer.request"


def environ_headers(environ: dict[str, Any]) -> dict[str, str]:
    """Rebuild the request headers from a WSGI environ."""
    headers: dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            headers[key[5:].replace("_", "-").title()] = value
    if environ.get("CONTENT_TYPE"):
        headers["Content-Type"] = environ["CONTENT_TYPE"]
    if environ.get("CONTENT_LENGTH"):
        headers["Content-Length"] = environ["CONTENT_LENGTH"]
    return headers


class Request:
    """The request object a :class:`~multer.handler.BeforeHandler` works on,
    built from a WSGI environ.

    Without a ``Content-Length`` the body is treated as empty, unless the
    server set ``wsgi.input_terminated``.
    """

    def __init__(self, environ: dict[str, Any]) -> None:
        self.environ = environ
        self.headers = environ_headers(environ)

        stream = environ.get("wsgi.input")
        if stream is None or ("Content-Length" not in self.headers and not environ.get("wsgi.input_terminated")):
            stream = BytesIO(b"")
            self.headers.setdefault("Content-Length", "0")
        self.stream = stream

        self.body: dict[str, list[str]] = {}
        self.file: StoredFile | None = None
        self.files: Any = None

    @property
    def method(self) -> str:
        return self.environ.get("REQUEST_METHOD", "GET")

    @property
    def path(self) -> str:
        return self.environ.get("PATH_INFO", "/")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.method} {self.path}>"


def middleware(app: WSGIApp, handler: Callable[[Request], Any]) -> WSGIApp:
    """Wrap a WSGI app so that ``handler`` parses the body first.

    The parsed request is available to ``app`` as
    ``environ["multer.request"]``.  Errors from ``handler`` propagate to
    the server or to whatever error middleware wraps this one.
    """

    def wrapped(environ: dict[str, Any], start_response: StartResponse) -> Iterable[bytes]:
        request = Request(environ)
        handler(request)
        environ[ENVIRON_KEY] = request
        return app(environ, start_response)

    return wrapped
