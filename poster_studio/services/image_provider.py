"""
Image generation adapter.

- OpenAI compatible: ``images.generate`` through the SDK, with a raw
  ``POST /v1/images/generations`` fallback when the SDK call signature breaks
- Vertex direct: ``POST {base}/generate`` returning image bytes
- No backend configured: a local placeholder image so the flow stays usable
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from typing import Any, Dict, Optional, Protocol, Tuple

import httpx
from openai import OpenAI
from PIL import Image, ImageDraw, ImageFont

from poster_studio.config import ImageAPIConfig, get_settings

logger = logging.getLogger(__name__)


class ImageProviderError(RuntimeError):
    """The collaborator failed, timed out or answered with something unusable."""


class ImageGenerator(Protocol):
    def generate(self, *, prompt: str, size: Optional[str] = None) -> bytes:
        ...


def _parse_size(size: Optional[str], default: str) -> Tuple[int, int]:
    s = (size or default or "").lower().replace("×", "x").strip()
    try:
        w, h = [int(x) for x in s.split("x")]
        return max(1, w), max(1, h)
    except ValueError:
        return 1024, 1024


def _decode_b64(b64: str) -> bytes:
    try:
        return base64.b64decode(b64)
    except (binascii.Error, ValueError) as exc:
        raise ImageProviderError("image backend returned invalid base64 payload") from exc


class ImageProvider:
    def __init__(self, config: ImageAPIConfig | None = None) -> None:
        config = config or get_settings().image_api
        self.base = config.base.rstrip("/")
        self.api_key = config.api_key
        self.kind = config.kind or "auto"
        self.proxy = config.proxy
        self.model = config.model
        self.default_size = config.default_size
        self.timeout = config.timeout

    @property
    def name(self) -> str:
        return self._decide_kind() if self.base else "placeholder"

    def generate(self, *, prompt: str, size: Optional[str] = None) -> bytes:
        w, h = _parse_size(size, self.default_size)

        if not self.base:
            return self._placeholder(prompt=prompt, width=w, height=h)

        kind = self._decide_kind()
        logger.info(
            "image generation requested",
            extra={"provider": kind, "prompt_len": len(prompt), "size": f"{w}x{h}"},
        )
        if kind == "openai":
            data = self._gen_openai(prompt=prompt, size=f"{w}x{h}")
        elif kind == "vertex":
            data = self._gen_vertex(prompt=prompt, size=f"{w}x{h}")
        else:
            raise ImageProviderError(f"Unknown IMAGE_API_KIND={kind}")

        if not data:
            raise ImageProviderError(f"{kind} backend returned no image data")
        return data

    # ---- openai compatible backend ----
    def _openai_root(self) -> str:
        return self.base if self.base.endswith("/v1") else f"{self.base}/v1"

    def _gen_openai(self, *, prompt: str, size: str) -> bytes:
        http_client: httpx.Client | None = None
        try:
            kwargs: Dict[str, Any] = {"api_key": self.api_key or "not-set", "base_url": self._openai_root()}
            if self.proxy:
                http_client = httpx.Client(proxy=self.proxy, timeout=self.timeout)
                kwargs["http_client"] = http_client
            client = OpenAI(**kwargs)
            params: Dict[str, Any] = {"model": self.model, "prompt": prompt, "size": size, "n": 1}
            if self.model.startswith("dall-e"):
                params["response_format"] = "b64_json"
            response = client.images.generate(**params)
        except TypeError as exc:
            logger.warning("OpenAI SDK images.generate failed, fallback to raw HTTP: %s", exc)
            return self._gen_openai_http(prompt=prompt, size=size)
        except Exception as exc:
            raise ImageProviderError(f"openai-compatible error: {exc}") from exc
        finally:
            if http_client is not None:
                http_client.close()

        items = getattr(response, "data", None) or []
        if not items:
            raise ImageProviderError("openai-compatible images.generate returned no data")
        first = items[0]
        b64 = getattr(first, "b64_json", None)
        if b64:
            return _decode_b64(b64)
        url = getattr(first, "url", None)
        if url:
            return self._download(url)
        raise ImageProviderError("openai-compatible response missing b64_json and url")

    def _gen_openai_http(self, *, prompt: str, size: str) -> bytes:
        url = f"{self._openai_root()}/images/generations"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "size": size,
            "n": 1,
        }
        if self.model.startswith("dall-e"):
            payload["response_format"] = "b64_json"

        try:
            with httpx.Client(proxy=self.proxy, timeout=self.timeout) as client:
                r = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise ImageProviderError(f"openai-compatible transport error: {exc}") from exc

        if r.status_code >= 400:
            raise ImageProviderError(f"openai-compatible HTTP {r.status_code}: {r.text[:200]}")
        try:
            first = r.json()["data"][0]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ImageProviderError("openai-compatible response missing data") from exc
        if first.get("b64_json"):
            return _decode_b64(first["b64_json"])
        if first.get("url"):
            return self._download(first["url"])
        raise ImageProviderError("openai-compatible response missing b64_json")

    # ---- vertex direct backend ----
    def _gen_vertex(self, *, prompt: str, size: str) -> bytes:
        url = f"{self.base}/generate"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {"prompt": prompt, "size": size}

        try:
            with httpx.Client(proxy=self.proxy, timeout=self.timeout) as client:
                r = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise ImageProviderError(f"vertex-direct transport error: {exc}") from exc
        if r.status_code >= 400:
            # failures come back as JSON, successes as raw bytes
            raise ImageProviderError(f"vertex-direct HTTP {r.status_code}: {r.text[:200]}")
        if not r.content:
            raise ImageProviderError("vertex-direct response was empty")
        return r.content

    def _download(self, url: str) -> bytes:
        try:
            with httpx.Client(proxy=self.proxy, timeout=self.timeout, follow_redirects=True) as client:
                r = client.get(url)
                r.raise_for_status()
        except httpx.HTTPError as exc:
            raise ImageProviderError(f"failed to download generated image: {exc}") from exc
        return r.content

    # ---- placeholder when no backend is configured ----
    def _placeholder(self, *, prompt: str, width: int, height: int) -> bytes:
        img = Image.new("RGB", (width, height), "#f2f2f2")
        draw = ImageDraw.Draw(img)
        msg = f"[PLACEHOLDER]\n{prompt[:80]}"
        try:
            font = ImageFont.truetype("arial.ttf", 20)
        except OSError:
            font = ImageFont.load_default()
        tw, th = draw.multiline_textbbox((0, 0), msg, font=font, align="center")[2:]
        draw.multiline_text(
            ((width - tw) / 2, (height - th) / 2),
            msg,
            fill="#333",
            font=font,
            align="center",
        )

        bio = io.BytesIO()
        img.save(bio, "PNG")
        return bio.getvalue()

    def _decide_kind(self) -> str:
        if self.kind in {"openai", "vertex"}:
            return self.kind
        # auto: infer from the base URL
        b = self.base.lower()
        if "/v1" in b or "openai" in b:
            return "openai"
        return "vertex"


_PROVIDER: Optional[ImageGenerator] = None


def get_provider() -> ImageGenerator:
    """Return the process-wide provider, building it from settings on first use."""

    global _PROVIDER
    if _PROVIDER is None:
        _PROVIDER = ImageProvider()
    return _PROVIDER


def set_provider(provider: Optional[ImageGenerator]) -> None:
    """Swap the provider (``None`` resets to the configured default)."""

    global _PROVIDER
    _PROVIDER = provider


__all__ = [
    "ImageGenerator",
    "ImageProvider",
    "ImageProviderError",
    "get_provider",
    "set_provider",
]
