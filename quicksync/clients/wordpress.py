# quicksync/clients/wordpress.py
import mimetypes
import os
from typing import Iterator, Optional
from urllib.parse import urlparse

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..config import HTTP_TIMEOUT
from ..errors import ConflictError, StoreError, TransportError
from ..utils.logger import debug, info, warn
from ..utils.security import basic_auth_header

SOURCE_URL_META = "quicksync_source_url"
# refused before anything was written; 502/503 may arrive after a create landed
RETRY_STATUSES = (429,)


def api_base(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/wp-json/wp/v2"


def rest_headers(credential: str) -> dict:
    return {"Content-Type": "application/json", "Authorization": basic_auth_header(credential)}


def _error_body(r: requests.Response) -> dict:
    try:
        body = r.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _describe(r: requests.Response) -> str:
    body = _error_body(r)
    return f"{r.status_code} {body.get('message') or r.text}"


# =========================================================
# Retry wrapper for writes (rate-limited requests only)
# =========================================================

class TransientWriteError(Exception): pass

@retry(
    reraise=True,
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=6),
    retry=retry_if_exception_type(TransientWriteError),
)
def _write_with_retry(session: requests.Session, method: str, url: str, **kwargs) -> requests.Response:
    r = session.request(method, url, timeout=HTTP_TIMEOUT, **kwargs)
    if r.status_code in RETRY_STATUSES:
        raise TransientWriteError(_describe(r))
    return r


class WordPressStore:
    """
    Term and media store backed by the WordPress REST API.

    Terms are read with `context=edit` so registered term meta (sku,
    profile_image, ...) is included in every term payload.
    """

    def __init__(self, base_url: str, taxonomy: str, credential: str,
                 session: Optional[requests.Session] = None):
        if not base_url:
            raise StoreError("Missing WP_BASE_URL")
        self.base = api_base(base_url)
        self.taxonomy = taxonomy
        self._headers = rest_headers(credential)
        self._session = session or requests.Session()

    # -----------------------------------------------------
    # HTTP plumbing
    # -----------------------------------------------------

    def _get(self, path: str, params: Optional[dict] = None) -> requests.Response:
        try:
            return self._session.get(f"{self.base}{path}", headers=self._headers,
                                     params=params, timeout=HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise TransportError(f"GET {path} failed: {e}") from e

    def _write(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = dict(self._headers)
        headers.update(kwargs.pop("headers", {}))
        try:
            return _write_with_retry(self._session, method, f"{self.base}{path}", headers=headers, **kwargs)
        except TransientWriteError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

    # -----------------------------------------------------
    # Capabilities
    # -----------------------------------------------------

    def current_user_can(self, capability: str) -> bool:
        r = self._get("/users/me", {"context": "edit"})
        if r.status_code in (401, 403):
            return False
        if r.status_code != 200:
            raise StoreError(f"users/me failed {_describe(r)}")
        caps = (r.json() or {}).get("capabilities") or {}
        return bool(caps.get(capability))

    # -----------------------------------------------------
    # Terms
    # -----------------------------------------------------

    def iter_terms(self) -> Iterator[dict]:
        page = 1
        while True:
            r = self._get(f"/{self.taxonomy}", {
                "hide_empty": "false", "per_page": 100, "page": page, "context": "edit",
            })
            if r.status_code != 200:
                raise StoreError(f"get_terms failed: {_describe(r)}")
            terms = r.json() or []
            yield from terms
            total_pages = int(r.headers.get("X-WP-TotalPages") or 1)
            if not terms or page >= total_pages:
                return
            page += 1

    def find_term_by_meta(self, key: str, value: str) -> Optional[dict]:
        for term in self.iter_terms():
            stored = (term.get("meta") or {}).get(key)
            if isinstance(stored, list):
                stored = stored[0] if stored else None
            if stored is not None and str(stored) == str(value):
                return term
        return None

    def find_term_by_slug(self, slug: str) -> Optional[dict]:
        if not slug:
            return None
        r = self._get(f"/{self.taxonomy}", {"slug": slug, "hide_empty": "false", "context": "edit"})
        if r.status_code != 200:
            raise StoreError(f"get_terms by slug failed: {_describe(r)}")
        terms = r.json() or []
        return terms[0] if terms else None

    def create_term(self, name: str, slug: str, description: str) -> dict:
        r = self._write("POST", f"/{self.taxonomy}", json={"name": name, "slug": slug, "description": description})
        if r.status_code in (200, 201):
            return r.json()
        body = _error_body(r)
        if body.get("code") == "term_exists":
            term_id = (body.get("data") or {}).get("term_id")
            raise ConflictError(body.get("message") or "A term with the name provided already exists.",
                                term_id=int(term_id) if term_id else None)
        raise StoreError(f"wp_insert_term failed: {_describe(r)}")

    def update_term(self, term_id: int, **fields) -> dict:
        r = self._write("POST", f"/{self.taxonomy}/{term_id}", json=fields)
        if r.status_code == 200:
            return r.json()
        body = _error_body(r)
        if body.get("code") in ("duplicate_term_slug", "term_exists"):
            raise ConflictError(body.get("message") or "Slug already in use.")
        raise StoreError(f"wp_update_term failed: {_describe(r)}")

    def update_term_meta(self, term_id: int, key: str, value) -> None:
        r = self._write("POST", f"/{self.taxonomy}/{term_id}", json={"meta": {key: value}})
        if r.status_code != 200:
            raise StoreError(f"update_term_meta {key} failed: {_describe(r)}")

    def delete_term(self, term_id: int) -> None:
        r = self._write("DELETE", f"/{self.taxonomy}/{term_id}", params={"force": "true"})
        if r.status_code == 404:
            debug(f"[terms] {term_id} already gone")
            return
        if r.status_code != 200:
            raise StoreError(f"wp_delete_term failed: {_describe(r)}")
        info(f"[terms] deleted {self.taxonomy} {term_id}")

    # -----------------------------------------------------
    # Media
    # -----------------------------------------------------

    def find_attachment_by_url(self, url: str) -> Optional[int]:
        stem = os.path.splitext(os.path.basename(urlparse(url).path))[0]
        if not stem:
            return None
        r = self._get("/media", {"search": stem, "per_page": 100, "context": "edit"})
        if r.status_code != 200:
            warn(f"[media] search failed for {url}: {_describe(r)}")
            return None
        for item in r.json() or []:
            source = (item.get("meta") or {}).get(SOURCE_URL_META)
            if item.get("source_url") == url or source == url:
                return int(item["id"])
        return None

    def sideload_image(self, url: str) -> int:
        try:
            dl = self._session.get(url, timeout=HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise TransportError(f"download failed for {url}: {e}") from e
        if dl.status_code != 200:
            raise TransportError(f"download failed for {url}: HTTP {dl.status_code}")

        filename = os.path.basename(urlparse(url).path) or "profile-image"
        content_type = (dl.headers.get("Content-Type") or "").split(";")[0].strip()
        if not content_type or content_type == "application/octet-stream":
            content_type = mimetypes.guess_type(filename)[0] or ""
        if not content_type.startswith("image/"):
            raise StoreError(f"{url} is not an image ({content_type or 'unknown type'})")
        if not os.path.splitext(filename)[1]:
            filename += mimetypes.guess_extension(content_type) or ""

        r = self._write("POST", "/media", data=dl.content, headers={
            "Content-Type": content_type,
            "Content-Disposition": f'attachment; filename="{filename}"',
        })
        if r.status_code not in (200, 201):
            raise StoreError(f"media upload failed for {url}: {_describe(r)}")
        attachment_id = int(r.json()["id"])

        # lets find_attachment_by_url match the original URL next time
        meta = self._write("POST", f"/media/{attachment_id}", json={"meta": {SOURCE_URL_META: url}})
        if meta.status_code != 200:
            debug(f"[media] could not tag {attachment_id} with source url: {_describe(meta)}")
        info(f"[media] sideloaded {url} -> attachment {attachment_id}")
        return attachment_id

    @staticmethod
    def term_url(term: dict) -> str:
        return term.get("link") or ""
