from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlparse

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from olxsync import olx_fields
from olxsync.exceptions import ApiError, AuthenticationError, NotFoundError, ValidationError
from olxsync.models import Shop
from olxsync.settings import settings

logger = logging.getLogger(__name__)

_SIZE_TOKEN = re.compile(r"(\d{2,4})x(\d{2,4})")


def _extract_error_message(data: Any, raw_body: str) -> str:
    """
    Pull a human readable message out of an OLX error body.

    Upstream is inconsistent: ``message``, ``error`` or a list/dict of
    ``errors``. Falls back to the raw body text.
    """
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        if isinstance(message, str) and message:
            return message
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            return str(errors[0])
        if isinstance(errors, dict) and errors:
            first = next(iter(errors.values()))
            if isinstance(first, list) and first:
                return str(first[0])
            return str(first)
    return raw_body or "Unknown error"


def _picture_key(url: str) -> str:
    """Identity of a logical picture, ignoring the size variant segment."""
    return _SIZE_TOKEN.sub("", url)


def select_preferred_image_urls(urls: list[str], preferred_variant: str | None = None) -> list[str]:
    """
    Collapse size variants of the same picture down to one URL.

    The configured variant wins, else the largest ``WxH`` token, else the
    first URL seen. Order of first appearance is kept.
    """
    preferred_variant = preferred_variant or settings.olx_preferred_image_variant
    groups: dict[str, list[str]] = {}
    for url in urls:
        if url:
            groups.setdefault(_picture_key(url), []).append(url)

    selected = []
    for variants in groups.values():
        chosen = next((u for u in variants if preferred_variant in u), None)
        if chosen is None:
            def area(u: str) -> int:
                match = _SIZE_TOKEN.search(u)
                return int(match.group(1)) * int(match.group(2)) if match else 0
            chosen = max(variants, key=area)
        selected.append(chosen)
    return selected


@dataclass
class TokenState:
    """Per-shop token ownership. ``generation`` bumps on every re-authentication."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    generation: int = 0


_token_states: dict[str, TokenState] = {}
_token_states_lock = threading.Lock()


def token_state_for(shop: Shop) -> TokenState:
    key = str(shop.id)
    with _token_states_lock:
        state = _token_states.get(key)
        if state is None:
            state = TokenState()
            _token_states[key] = state
        return state


class OlxClient:
    def __init__(
        self,
        shop: Shop,
        base_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._shop = shop
        self._base_url = (base_url or settings.olx_api_base_url).rstrip("/")
        self._timeout = timeout or httpx.Timeout(settings.olx_http_timeout, connect=10.0)
        self._transport = transport
        self._state = token_state_for(shop)

    @property
    def shop(self) -> Shop:
        return self._shop

    # ------------------------------------------------------------------ auth

    def authenticate(self) -> str:
        with self._state.lock:
            return self._authenticate_locked()

    def ensure_authenticated(self) -> str:
        with self._state.lock:
            if self._token_valid():
                return self._shop.olx_access_token
            return self._authenticate_locked()

    def _token_valid(self) -> bool:
        token = self._shop.olx_access_token
        expires_at = self._shop.olx_token_expires_at
        if not token or expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > datetime.now(timezone.utc)

    def _authenticate_locked(self) -> str:
        shop = self._shop
        if not shop.olx_configured:
            raise AuthenticationError("OLX credentials are not configured for this shop")

        body = {
            "username": shop.olx_username,
            "password": shop.olx_password,
            "device_name": settings.olx_device_name,
        }
        try:
            with self._client() as client:
                response = client.post(f"{self._base_url}/auth/login", json=body, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise ApiError(f"OLX auth request failed: {e}", url="/auth/login") from e

        data = self._handle_response(response, "/auth/login")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError("OLX auth response did not contain a token", url="/auth/login")

        shop.olx_access_token = token
        shop.olx_token_expires_at = datetime.now(timezone.utc) + timedelta(days=settings.olx_token_ttl_days)
        user_id = olx_fields.extract_int(data, "user_id")
        if user_id is not None:
            shop.olx_user_id = user_id
        user_name = olx_fields.extract(data, "user_name")
        if user_name:
            shop.olx_user_name = str(user_name)
        self._state.generation += 1
        logger.info(f"OLX authenticated shop={shop.id} generation={self._state.generation}")
        return token

    def _current_token(self) -> tuple[str, int]:
        with self._state.lock:
            if self._token_valid():
                token = self._shop.olx_access_token
            else:
                token = self._authenticate_locked()
            return token, self._state.generation

    # ------------------------------------------------------------------ transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport)

    def _handle_response(self, response: httpx.Response, endpoint: str) -> Any:
        status = response.status_code
        text = response.text or ""

        if status == 204:
            return {}

        try:
            data = response.json() if text.strip() else {}
        except ValueError:
            data = None

        if status in (200, 201):
            if data is None:
                raise ApiError(
                    f"Invalid JSON response from OLX: {text[:200]}",
                    status_code=status,
                    url=endpoint,
                    response_body=text,
                )
            return data

        message = _extract_error_message(data, text)
        if status in (401, 403):
            raise AuthenticationError(message, status_code=status, url=endpoint, response_body=text)
        if status == 404:
            raise NotFoundError(message, status_code=status, url=endpoint, response_body=text)
        if status == 422:
            raise ValidationError(message, status_code=status, url=endpoint, response_body=text)
        raise ApiError(f"HTTP {status}: {message}", status_code=status, url=endpoint, response_body=text)

    @retry(
        stop=stop_after_attempt(settings.olx_http_retry_count),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"OLX GET retry ({retry_state.attempt_number}): {retry_state.outcome.exception()}"
        ),
    )
    def _get_with_retry(self, client: httpx.Client, url: str, headers: dict, params: dict | None) -> httpx.Response:
        return client.get(url, headers=headers, params=params)

    def _send(
        self,
        method: str,
        endpoint: str,
        token: str,
        body: dict | None = None,
        params: dict | None = None,
        files: dict | None = None,
    ) -> Any:
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        try:
            with self._client() as client:
                if method == "GET":
                    response = self._get_with_retry(client, url, headers, params)
                elif files is not None:
                    response = client.request(method, url, headers=headers, params=params, files=files)
                else:
                    response = client.request(method, url, headers=headers, params=params, json=body)
        except httpx.HTTPError as e:
            raise ApiError(f"OLX {method} {endpoint} failed: {e}", url=endpoint) from e
        return self._handle_response(response, endpoint)

    def request(
        self,
        method: str,
        endpoint: str,
        body: dict | None = None,
        params: dict | None = None,
        files: dict | None = None,
    ) -> Any:
        token, generation = self._current_token()
        try:
            return self._send(method, endpoint, token, body=body, params=params, files=files)
        except AuthenticationError:
            # Another caller may have re-authenticated while this request was in flight.
            with self._state.lock:
                stale = generation != self._state.generation
                token = self._shop.olx_access_token
            if not stale or not token:
                raise
            logger.info(f"Retrying OLX {method} {endpoint} with refreshed token")
            return self._send(method, endpoint, token, body=body, params=params, files=files)

    def get(self, endpoint: str, params: dict | None = None) -> Any:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, body: dict | None = None) -> Any:
        return self.request("POST", endpoint, body=body)

    def put(self, endpoint: str, body: dict | None = None) -> Any:
        return self.request("PUT", endpoint, body=body)

    def delete(self, endpoint: str) -> Any:
        return self.request("DELETE", endpoint)

    # ------------------------------------------------------------------ endpoints

    def get_categories(self) -> Any:
        return self.get("/categories")

    def get_category(self, category_id: int) -> Any:
        return self.get(f"/categories/{category_id}")

    def get_category_attributes(self, category_id: int) -> Any:
        return self.get(f"/categories/{category_id}/attributes")

    def get_locations(self) -> Any:
        return self.get("/locations")

    def get_cities(self) -> Any:
        return self.get("/cities")

    def get_listing(self, listing_id: str | int) -> Any:
        return self.get(f"/listings/{listing_id}")

    def get_user_listings(self, page: int = 1, per_page: int | None = None) -> Any:
        username = self._shop.olx_user_name
        if not username:
            self.authenticate()
            username = self._shop.olx_user_name
        if not username:
            raise AuthenticationError("OLX username unknown; auth response carried no user")
        params = {"page": page, "per_page": per_page or settings.olx_listings_per_page}
        return self.get(f"/users/{username}/listings", params=params)

    def create_listing(self, payload: dict) -> Any:
        return self.post("/listings", payload)

    def update_listing(self, listing_id: str | int, payload: dict) -> Any:
        return self.put(f"/listings/{listing_id}", payload)

    def delete_listing(self, listing_id: str | int) -> Any:
        return self.delete(f"/listings/{listing_id}")

    def publish_listing(self, listing_id: str | int) -> Any:
        return self.post(f"/listings/{listing_id}/publish", {})

    def unpublish_listing(self, listing_id: str | int) -> Any:
        return self.post(f"/listings/{listing_id}/unpublish", {})

    def download_image(self, url: str) -> tuple[bytes, str]:
        with self._client() as client:
            response = client.get(url, follow_redirects=True)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        return response.content, content_type

    def upload_images(self, listing_id: str | int, urls: list[str]) -> list[str]:
        """
        Download each source image and re-upload it to the listing.

        A failed image is logged and skipped; the successfully uploaded
        subset is returned.
        """
        uploaded = []
        for index, url in enumerate(select_preferred_image_urls(urls)):
            try:
                content, content_type = self.download_image(url)
                filename = urlparse(url).path.rsplit("/", 1)[-1] or f"image_{index}.jpg"
                files = {"image": (filename, content, content_type)}
                self.request("POST", f"/listings/{listing_id}/image-upload", files=files)
                uploaded.append(url)
            except Exception as e:
                logger.error(f"Failed to upload image {url} to listing {listing_id}: {e}")
        return uploaded
