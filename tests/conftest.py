"""
Shared test fixtures.

FakeStore stands in for WordPressStore: same method names, terms and media
kept in dicts, results returned as copies the way the REST API would.
"""

import copy
import sys
from pathlib import Path
from unittest.mock import MagicMock

# Add project root to Python path
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

import pytest

from quicksync import create_app
from quicksync.errors import ConflictError, TransportError
from quicksync.utils.security import basic_auth_header


# ===================
# FAKE TERM / MEDIA STORE
# ===================

class FakeStore:
    """In-memory taxonomy + media library."""

    def __init__(self, capabilities=("edit_posts",)):
        self.capabilities = set(capabilities)
        self.terms: dict[int, dict] = {}
        self.media: dict[int, dict] = {}
        self.meta_writes: list[tuple] = []
        self.sideloaded: list[str] = []
        self.slug_lookups = 0
        self.fail_sideload = False
        self._next_id = 100

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    # helpers for arranging state
    def add_term(self, name, slug, description="", **meta) -> dict:
        term_id = self._new_id()
        self.terms[term_id] = {
            "id": term_id,
            "name": name,
            "slug": slug,
            "description": description,
            "link": f"https://example.org/author-speaker/{slug}/",
            "meta": dict(meta),
        }
        return copy.deepcopy(self.terms[term_id])

    def add_media(self, source_url) -> int:
        media_id = self._new_id()
        self.media[media_id] = {"id": media_id, "source_url": source_url}
        return media_id

    # store interface
    def current_user_can(self, capability):
        return capability in self.capabilities

    def find_term_by_meta(self, key, value):
        for term in self.terms.values():
            stored = term["meta"].get(key)
            if stored is not None and str(stored) == str(value):
                return copy.deepcopy(term)
        return None

    def find_term_by_slug(self, slug):
        self.slug_lookups += 1
        for term in self.terms.values():
            if term["slug"] == slug:
                return copy.deepcopy(term)
        return None

    def create_term(self, name, slug, description):
        for term in self.terms.values():
            if term["slug"] == slug:
                raise ConflictError("A term with the name provided already exists.", term_id=term["id"])
        return self.add_term(name, slug, description)

    def update_term(self, term_id, **fields):
        if "slug" in fields:
            for term in self.terms.values():
                if term["id"] != term_id and term["slug"] == fields["slug"]:
                    raise ConflictError("Slug already in use.")
        term = self.terms[term_id]
        term.update(fields)
        term["link"] = f"https://example.org/author-speaker/{term['slug']}/"
        return copy.deepcopy(term)

    def update_term_meta(self, term_id, key, value):
        self.terms[term_id]["meta"][key] = value
        self.meta_writes.append((term_id, key, value))

    def delete_term(self, term_id):
        self.terms.pop(term_id, None)

    def find_attachment_by_url(self, url):
        for item in self.media.values():
            if item["source_url"] == url:
                return item["id"]
        return None

    def sideload_image(self, url):
        if self.fail_sideload:
            raise TransportError(f"download failed for {url}: HTTP 404")
        self.sideloaded.append(url)
        return self.add_media(url)

    @staticmethod
    def term_url(term):
        return term.get("link") or ""


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def app(store):
    factory = MagicMock(side_effect=lambda credential: store)
    app = create_app(config={"wordpress": {"base_url": "https://example.org"}}, store_factory=factory)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {"Authorization": basic_auth_header("api_sync:abcd efgh ijkl mnop")}


def make_response(status_code=200, body=None, headers=None, text=None, content=b""):
    """Mock requests.Response."""
    r = MagicMock()
    r.status_code = status_code
    r.headers = headers or {}
    if body is None and text is not None:
        r.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        r.json.return_value = body
    r.text = text if text is not None else ("" if body is None else repr(body))
    r.content = content
    return r
