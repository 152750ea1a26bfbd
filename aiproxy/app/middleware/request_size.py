"""Request body size limit middleware.

Limits the size of incoming request bodies so oversized prompts are refused
before they are buffered in memory. Enforced for both Content-Length and
chunked transfer encoding. Refusals use the regular failure envelope.
"""

from starlette.types import Message, Receive, Scope, Send

from aiproxy.app.exceptions import ValidationError
from aiproxy.app.services.envelope import encode_envelope, failure_envelope


class SizeLimitedStream:
    """A receive wrapper that counts body bytes as they are read."""

    class SizeExceededError(Exception):
        """Raised when request body exceeds size limit."""

    def __init__(self, receive: Receive, max_size: int):
        self._receive = receive
        self._max_size = max_size
        self._bytes_read = 0

    async def receive(self) -> Message:
        message = await self._receive()

        if message["type"] == "http.request":
            self._bytes_read += len(message.get("body", b""))
            if self._bytes_read > self._max_size:
                raise self.SizeExceededError(
                    f"Request body too large. Maximum allowed: {self._max_size} bytes"
                )

        return message


class RequestSizeLimitMiddleware:
    """ASGI middleware to limit request body size.

    Implemented as raw ASGI middleware so the receive callable is wrapped
    before Starlette's Request is constructed.

    Usage:
        app.add_middleware(RequestSizeLimitMiddleware, max_body_size=64 * 1024)
    """

    def __init__(self, app, max_body_size: int = 64 * 1024):
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Fast path: trust an explicit Content-Length for early rejection
        for name, value in scope.get("headers", []):
            if name.lower() == b"content-length":
                try:
                    if int(value.decode()) > self.max_body_size:
                        await self._send_rejection(send)
                        return
                except ValueError:
                    pass
                break

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        size_limited_receive = SizeLimitedStream(receive, self.max_body_size).receive

        try:
            await self.app(scope, size_limited_receive, tracking_send)
        except SizeLimitedStream.SizeExceededError:
            if response_started:
                raise
            await self._send_rejection(send)

    async def _send_rejection(self, send: Send) -> None:
        error = ValidationError(
            f"Request body too large. Maximum allowed: {self.max_body_size} bytes"
        )
        body = encode_envelope(failure_envelope(error)).encode()
        await send(
            {
                "type": "http.response.start",
                "status": error.status_code,
                "headers": [
                    [b"content-type", b"application/json"],
                    [b"content-length", str(len(body)).encode()],
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})
