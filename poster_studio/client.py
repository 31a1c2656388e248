"""HTTP client for the Poster Studio API.

The bearer token lives in an explicit :class:`TokenStore` rather than in
ambient global state, so scripts and tests decide where it is kept.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import httpx

logger = logging.getLogger(__name__)

FileSpec = Tuple[str, bytes, str]


class ApiClientError(Exception):
    """Non-2xx answer from the API, carrying the status and the envelope message."""

    def __init__(self, status: int, message: str, payload: Any = None) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message
        self.payload = payload


class Unauthorized(ApiClientError):
    pass


class BackgroundGenerationFailed(ApiClientError):
    def __init__(self, background: Dict[str, Any]) -> None:
        super().__init__(200, background.get("error") or "Background generation failed", background)
        self.background = background


class PollTimeout(ApiClientError):
    def __init__(self, background_id: str, attempts: int) -> None:
        super().__init__(0, f"Background {background_id} still pending after {attempts} attempts")
        self.background_id = background_id
        self.attempts = attempts


class TokenStore(Protocol):
    def get(self) -> Optional[str]: ...
    def set(self, token: str) -> None: ...
    def clear(self) -> None: ...


class MemoryTokenStore:
    def __init__(self, token: Optional[str] = None) -> None:
        self._token = token

    def get(self) -> Optional[str]:
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class FileTokenStore:
    """Keeps the token in a small JSON file, e.g. ``~/.poster-studio/token.json``."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()

    def get(self) -> Optional[str]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("token file unreadable: %s", exc)
            return None
        token = payload.get("access_token") if isinstance(payload, dict) else None
        return token or None

    def set(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"access_token": token}), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


@dataclass
class PosterProduct:
    """One product entry of an assembled poster."""

    article_number: str
    image: FileSpec
    price: Optional[Union[str, float]] = None


TERMINAL_BACKGROUND_STATES = {"ready", "failed"}


class PosterStudioClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        api_prefix: str = "/api",
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_prefix = api_prefix.rstrip("/")
        self.tokens: TokenStore = token_store or MemoryTokenStore()
        self._owns_client = http_client is None
        self.http = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self.http.close()

    def __enter__(self) -> "PosterStudioClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ---- transport ----
    def _headers(self) -> Dict[str, str]:
        token = self.tokens.get()
        return {"Authorization": f"Bearer {token}"} if token else {}

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self.http.request(
            method, f"{self.api_prefix}{path}", headers=self._headers(), **kwargs
        )
        if response.status_code in (401, 403):
            self.tokens.clear()
            raise Unauthorized(response.status_code, self._message(response), self._payload(response))
        if response.status_code >= 400:
            raise ApiClientError(response.status_code, self._message(response), self._payload(response))
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _payload(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    @classmethod
    def _message(cls, response: httpx.Response) -> str:
        payload = cls._payload(response)
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return response.reason_phrase or "Request failed"

    # ---- auth ----
    def login(self, username: str, password: str, totp_code: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"username": username, "password": password}
        if totp_code:
            body["totp_code"] = totp_code
        result = self.request("POST", "/auth/login", json=body)
        self.tokens.set(result["access_token"])
        return result["user"]

    def register(self, username: str, password: str) -> Dict[str, Any]:
        return self.request("POST", "/auth/register", json={"username": username, "password": password})

    def me(self) -> Dict[str, Any]:
        return self.request("GET", "/auth/me")

    def logout(self) -> None:
        try:
            self.request("POST", "/auth/logout")
        finally:
            self.tokens.clear()

    # ---- products ----
    def list_products(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"search": search} if search else None
        return self.request("GET", "/products", params=params)

    def create_product(self, name: str, **fields: Any) -> Dict[str, Any]:
        return self.request("POST", "/products", json={"name": name, **fields})

    def import_products(self, csv_data: bytes, filename: str = "products.csv") -> Dict[str, Any]:
        return self.request("POST", "/products/import", files={"file": (filename, csv_data, "text/csv")})

    # ---- backgrounds ----
    def list_backgrounds(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/backgrounds")

    def get_background(self, background_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/backgrounds/{background_id}")

    def generate_background(self, theme_text: str) -> Dict[str, Any]:
        return self.request("POST", "/backgrounds/generate", json={"theme_text": theme_text})

    def upload_background(self, image: FileSpec) -> Dict[str, Any]:
        return self.request("POST", "/backgrounds/upload", files={"file": image})

    def poll_background(
        self, background_id: str, *, interval: float = 2.0, max_attempts: int = 60
    ) -> Dict[str, Any]:
        """Fetch the background until it is terminal.

        Returns the ready background, raises :class:`BackgroundGenerationFailed`
        when it failed and :class:`PollTimeout` once ``max_attempts`` fetches
        saw it still pending. Transport errors propagate unchanged.
        """

        for attempt in range(1, max_attempts + 1):
            background = self.get_background(background_id)
            status = background.get("status")
            if status == "ready":
                return background
            if status == "failed":
                raise BackgroundGenerationFailed(background)
            logger.debug("background pending", extra={"background_id": background_id, "attempt": attempt})
            if attempt < max_attempts:
                self._sleep(interval)
        raise PollTimeout(background_id, max_attempts)

    # ---- templates ----
    def list_templates(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/templates")

    # ---- posters ----
    def list_posters(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/posters")

    def create_poster(
        self,
        *,
        background_id: str,
        template_key: str,
        sale_title: str,
        products: Sequence[PosterProduct],
        disclaimer: Optional[str] = None,
        dates: Optional[str] = None,
        store_logo: Optional[FileSpec] = None,
    ) -> Dict[str, Any]:
        data: Dict[str, str] = {
            "background_id": background_id,
            "template_key": template_key,
            "sale_title": sale_title,
        }
        files: List[Tuple[str, FileSpec]] = []
        for index, product in enumerate(products):
            data[f"artikel_nr_{index}"] = product.article_number
            if product.price is not None:
                data[f"sale_price_{index}"] = str(product.price)
            files.append((f"product_image_{index}", product.image))
        if disclaimer:
            data["disclaimer"] = disclaimer
        if dates:
            data["dates"] = dates
        if store_logo is not None:
            files.append(("store_logo", store_logo))
        return self.request("POST", "/posters", data=data, files=files)

    def create_draft_poster(self, *, template_key: str, sale_title: str, **fields: Any) -> Dict[str, Any]:
        body = {"template_key": template_key, "sale_title": sale_title, **fields}
        return self.request("POST", "/posters", json=body)

    def get_poster(self, poster_id: int) -> Dict[str, Any]:
        return self.request("GET", f"/posters/{poster_id}")

    def update_poster(self, poster_id: int, **fields: Any) -> Dict[str, Any]:
        return self.request("PATCH", f"/posters/{poster_id}", json=fields)

    def generate_poster_background(self, poster_id: int, theme_text: str) -> Dict[str, Any]:
        return self.request(
            "POST", f"/posters/{poster_id}/generate-background", json={"theme_text": theme_text}
        )

    def export_poster(
        self, poster_id: int, *, format: str = "png", resolution: str = "digital"
    ) -> Dict[str, Any]:
        return self.request(
            "POST", f"/posters/{poster_id}/export", json={"format": format, "resolution": resolution}
        )

    # ---- assets ----
    def asset_url(self, asset_id: int) -> str:
        return self.request("GET", f"/assets/{asset_id}/url")["url"]

    def upload_asset(self, image: FileSpec, *, kind: str = "product") -> Dict[str, Any]:
        return self.request("POST", "/assets/upload", data={"kind": kind}, files={"file": image})


__all__ = [
    "ApiClientError",
    "BackgroundGenerationFailed",
    "FileTokenStore",
    "MemoryTokenStore",
    "PollTimeout",
    "PosterProduct",
    "PosterStudioClient",
    "TokenStore",
    "Unauthorized",
]
