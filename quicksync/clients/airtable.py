# quicksync/clients/airtable.py
from typing import Optional
from urllib.parse import quote

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..config import HTTP_TIMEOUT

AIRTABLE_API = "https://api.airtable.com/v0"


class AirtableApiError(RuntimeError):
    """Airtable integration error."""


class RateLimited(Exception): pass


class AirtableClient:
    """Reads one record and writes sync status back onto it."""

    def __init__(self, token: str, base_id: str, *, session: Optional[requests.Session] = None,
                 base_url: str = AIRTABLE_API):
        if not (token and base_id):
            raise AirtableApiError("Missing AIRTABLE_TOKEN/AIRTABLE_BASE_ID")
        self._base = f"{base_url.rstrip('/')}/{base_id}"
        self._headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        self._session = session or requests.Session()

    def _url(self, table: str, record_id: str) -> str:
        return f"{self._base}/{quote(table, safe='')}/{quote(record_id, safe='')}"

    @retry(
        reraise=True,
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        retry=retry_if_exception_type(RateLimited),
    )
    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        r = self._session.request(method, url, headers=self._headers, timeout=HTTP_TIMEOUT, **kwargs)
        if r.status_code == 429:
            raise RateLimited(r.text)
        return r

    def get_record(self, table: str, record_id: str) -> Optional[dict]:
        try:
            r = self._request("GET", self._url(table, record_id))
        except (requests.RequestException, RateLimited) as e:
            raise AirtableApiError(f"GET record {record_id} failed: {e}") from e
        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise AirtableApiError(f"GET record {record_id} failed {r.status_code}: {r.text}")
        body = r.json() or {}
        return {"id": body.get("id", record_id), "fields": body.get("fields") or {}}

    def update_record(self, table: str, record_id: str, fields: dict) -> dict:
        try:
            r = self._request("PATCH", self._url(table, record_id), json={"fields": fields, "typecast": True})
        except (requests.RequestException, RateLimited) as e:
            raise AirtableApiError(f"PATCH record {record_id} failed: {e}") from e
        if r.status_code != 200:
            raise AirtableApiError(f"PATCH record {record_id} failed {r.status_code}: {r.text}")
        return r.json()
