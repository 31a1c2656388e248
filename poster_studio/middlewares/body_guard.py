from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger("poster-studio")

DATA_URL_RE = re.compile(r"data:image/(?:png|jpe?g|webp|gif);base64,[A-Za-z0-9+/=\s]{256,}", re.I)
LONG_BASE64_CHUNK_RE = re.compile(r"[A-Za-z0-9+/]{8000,}={0,2}")


class RejectHugeOrBase64(BaseHTTPMiddleware):
    """Reject JSON bodies that are oversized or smuggle images as inline base64.

    Images travel as multipart uploads; JSON payloads only carry ids and URLs.
    Multipart requests are left to the upload size checks.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        max_body_bytes: int = 2 * 1024 * 1024,
        disallow_base64: bool = True,
        path_prefix: str = "/api",
    ) -> None:
        super().__init__(app)
        self.max_body_bytes = max_body_bytes if max_body_bytes > 0 else None
        self.disallow_base64 = disallow_base64
        self.path_prefix = path_prefix.rstrip("/") + "/"

    def _watched(self, request: Request) -> bool:
        if request.method not in {"POST", "PUT", "PATCH"}:
            return False
        if not request.url.path.startswith(self.path_prefix) and self.path_prefix != "/":
            return False
        content_type = request.headers.get("content-type", "").lower()
        return "multipart/form-data" not in content_type

    def _too_large(self, content_length: int | None, body_len: int) -> bool:
        if self.max_body_bytes is None:
            return False
        if content_length and content_length > self.max_body_bytes:
            return True
        return body_len > self.max_body_bytes

    @staticmethod
    def _contains_base64_image(body: bytes) -> bool:
        text = body.decode(errors="ignore")
        return bool(DATA_URL_RE.search(text) or LONG_BASE64_CHUNK_RE.search(text))

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if not self._watched(request):
            return await call_next(request)

        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        start = time.time()

        content_length_header = request.headers.get("content-length")
        try:
            content_length = int(content_length_header) if content_length_header else None
        except ValueError:
            content_length = None

        if self._too_large(content_length, 0):
            body = b""
            reason = f"oversize:{content_length}"
        else:
            body = await request.body()
            reason = None
            if self._too_large(content_length, len(body)):
                reason = f"oversize:{len(body)}"
            elif self.disallow_base64 and self._contains_base64_image(body):
                reason = "base64"

        if reason:
            logger.warning(
                "[guard] rid=%s path=%s method=%s cl=%s reason=%s",
                rid,
                request.url.path,
                request.method,
                content_length_header,
                reason,
            )
            if reason.startswith("oversize"):
                return JSONResponse(
                    status_code=413,
                    content={"message": "Request body too large", "error": "payload_too_large"},
                )
            return JSONResponse(
                status_code=400,
                content={
                    "message": "Inline base64 images are not accepted; upload the file instead",
                    "error": "inline_base64_rejected",
                },
            )

        response = await call_next(request)
        logger.debug(
            "[guard] rid=%s done status=%s dur_ms=%s",
            rid,
            response.status_code,
            int((time.time() - start) * 1000),
        )
        return response


__all__ = ["RejectHugeOrBase64"]
