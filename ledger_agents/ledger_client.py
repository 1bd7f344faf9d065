"""Bookkeeping REST API client."""

import base64
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from .config import config
from .errors import LedgerAPIError
from .models import PendingFile

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:[^;]+;base64,")


def strip_html(text: str) -> str:
    """Remove HTML markup the ledger service embeds in error messages."""
    text = re.sub(r"<br\s*/?>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", "", text)
    return re.sub(r"\s+", " ", text).strip()


def _error_message(response: httpx.Response) -> str:
    """Build a readable message from an error response body."""
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"

    if isinstance(data, list):
        return "; ".join(strip_html(str(e.get("message", e)) if isinstance(e, dict) else str(e)) for e in data)

    if not isinstance(data, dict):
        return strip_html(str(data))

    message = (
        data.get("error_description")
        or data.get("message")
        or data.get("error")
        or "Unknown error from ledger API"
    )
    message = strip_html(str(message))

    field_errors = data.get("errors") or []
    if field_errors:
        details = "; ".join(
            f"'{e.get('field', '?')}': {strip_html(str(e.get('message', '')))}"
            for e in field_errors if isinstance(e, dict)
        )
        message += f". Field errors: {details}"
    return message


def decode_file_data(file: PendingFile) -> bytes:
    """Decode base64 file data, accepting data URLs."""
    return base64.b64decode(_DATA_URL_PREFIX.sub("", file.data))


class LedgerClient:
    """
    Async client for the bookkeeping service.

    All entity paths are scoped to one company:
    ``{base_url}/companies/{company_slug}{path}``.
    """

    def __init__(
        self,
        company_slug: str,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.company_slug = company_slug
        self.base_url = (base_url or config.ledger_api_url).rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.ledger_timeout)
        self._headers = {"Authorization": f"Bearer {access_token or config.ledger_api_token}"}

    async def close(self):
        """Close HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url}/companies/{self.company_slug}{path}"

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        **kwargs,
    ) -> Any:
        """
        Make a request and return the decoded JSON body.

        Raises LedgerAPIError on any non-2xx response. Created resources
        without a body are fetched from the Location header.
        """
        if params:
            params = {k: v for k, v in params.items() if v is not None and v != ""}
        if isinstance(json, dict):
            json = {k: v for k, v in json.items() if v is not None}

        try:
            response = await self.client.request(
                method, self._url(path), params=params, json=json, headers=self._headers, **kwargs,
            )
        except httpx.TimeoutException as e:
            raise LedgerAPIError(f"Ledger API timed out: {e}") from e

        if response.status_code == 429:
            raise LedgerAPIError("Ledger API rate limit reached. Please wait a moment and try again.", 429)

        if response.is_error:
            message = _error_message(response)
            logger.error(f"Ledger API error {response.status_code} on {method} {path}: {message}")
            raise LedgerAPIError(f"Ledger API error ({response.status_code}): {message}", response.status_code)

        if response.status_code == 204 or not response.content.strip():
            location = response.headers.get("Location")
            if response.status_code == 201 and location:
                return await self._fetch_location(location)
            return {}

        try:
            return response.json()
        except ValueError:
            return {}

    async def _fetch_location(self, location: str) -> Any:
        """Fetch a newly created resource from its Location header."""
        url = httpx.URL(self.base_url).join(location)
        response = await self.client.get(url, headers=self._headers)
        if response.is_error:
            logger.warning(f"Could not fetch created resource at {location}: {response.status_code}")
            return {"location": location}
        return response.json()

    async def get(self, path: str, **params) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, json=body)

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request("PUT", path, json=body)

    async def patch(self, path: str, body: Any = None, **params) -> Any:
        return await self.request("PATCH", path, params=params, json=body)

    async def delete(self, path: str, **params) -> Any:
        return await self.request("DELETE", path, params=params)

    # ========================================================================
    # Endpoints used by the core
    # ========================================================================

    async def list_journal_entries(
        self,
        date_from: str,
        date_to: str,
        page: int = 0,
        page_size: int = 100,
    ) -> List[Dict[str, Any]]:
        """List journal entries (with lines) in a date range, one page."""
        data = await self.get(
            "/journalEntries", dateGe=date_from, dateLe=date_to, page=page, pageSize=page_size,
        )
        return data if isinstance(data, list) else []

    async def list_bank_accounts(self, active_only: bool = True) -> List[Dict[str, Any]]:
        """List bank accounts, by default only active ones."""
        data = await self.get("/bankAccounts", inactive="false" if active_only else None)
        accounts = data if isinstance(data, list) else []
        if active_only:
            accounts = [a for a in accounts if not a.get("inactive")]
        return accounts

    async def list_accounts(self, page: int = 0, page_size: int = 100) -> List[Dict[str, Any]]:
        """List one page of the chart of accounts."""
        data = await self.get("/accounts", page=page, pageSize=page_size)
        return data if isinstance(data, list) else []

    async def upload_attachment(
        self,
        path: str,
        file: PendingFile,
        fields: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Upload a pending file as a multipart attachment."""
        data = {"filename": file.name, **(fields or {})}
        files = {"file": (file.name, decode_file_data(file), file.mime_type)}
        result = await self.request("POST", path, data=data, files=files)
        return result if isinstance(result, dict) else {}
