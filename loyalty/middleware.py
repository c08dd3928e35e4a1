# loyalty/middleware.py
import gzip
import zlib

from starlette.datastructures import Headers
from starlette.responses import PlainTextResponse


class GunzipRequestMiddleware:
    """Inflate request bodies sent with ``Content-Encoding: gzip``.

    Responses are compressed by starlette's GZipMiddleware; this is the
    request side of the same contract.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        encoding = Headers(scope=scope).get("content-encoding", "")
        if "gzip" not in encoding.lower():
            await self.app(scope, receive, send)
            return

        chunks = []
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunks.append(message.get("body", b""))
            more_body = message.get("more_body", False)

        try:
            body = gzip.decompress(b"".join(chunks))
        except (OSError, EOFError, zlib.error):
            response = PlainTextResponse("Invalid gzip body", status_code=400)
            await response(scope, receive, send)
            return

        headers = [
            (name, value) for name, value in scope["headers"]
            if name not in (b"content-encoding", b"content-length")
        ]
        headers.append((b"content-length", str(len(body)).encode("latin-1")))
        scope = dict(scope, headers=headers)

        delivered = False

        async def receive_inflated():
            nonlocal delivered
            if not delivered:
                delivered = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, receive_inflated, send)
