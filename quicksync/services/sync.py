# quicksync/services/sync.py
import html
import threading
import weakref
from dataclasses import dataclass, field
from typing import Optional, Tuple, List

from ..config import SKU_META_KEY, PROFILE_IMAGE_META_KEY
from ..errors import (
    ConflictError,
    InvalidRequest,
    MissingKey,
    MissingRequiredField,
    QuickSyncError,
)
from ..utils.logger import debug, info, warn, error, preview
from ..utils.text import slugify
from .markup import strip_tags, to_safe_html

# =========================================================
# Per-SKU locks
# ---------------------------------------------------------
# Lookup-then-create is not atomic at the store. Serializing on the SKU
# makes a second concurrent sync of the same record wait and then find the
# term the first one created. Across processes the store's unique slug turns
# the race into a ConflictError, recovered below by adopting the term.
# =========================================================

# entries disappear once no sync holds the lock
_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()

def _lock_for(sku: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(sku)
        if lock is None:
            lock = threading.Lock()
            _locks[sku] = lock
        return lock

# =========================================================
# Payload
# =========================================================

# canonical field -> accepted input names, first non-empty wins
FIELD_ALIASES = {
    "name": ("name", "author_title"),
    "slug": ("slug",),
    "description": ("author_description", "description"),
    "as_description": ("as_description",),
    "news_description": ("news_description",),
    "profile_image": ("profile_image", "profile_image_link", "profile_image_url"),
    "status": ("status",),
}
HTML_META_FIELDS = ("as_description", "news_description")
# term meta that carries a copy of the description
DESCRIPTION_MIRRORS = ("as_description", "Description")
TRASH = "trash"


@dataclass
class SyncPayload:
    """
    Normalized request. `fields` holds only what the sender included;
    anything absent is left untouched on the term. Unknown keys are ignored.
    """
    sku: str
    record_id: Optional[str] = None
    fields: dict = field(default_factory=dict)

    @property
    def trashing(self) -> bool:
        return self.fields.get("status") == TRASH


def _clean(value) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def parse_payload(body) -> SyncPayload:
    if not isinstance(body, dict):
        raise InvalidRequest()
    raw_fields = body.get("fields") or {}
    if not isinstance(raw_fields, dict):
        raise InvalidRequest("Bad payload: fields must be a JSON object.")

    sku = _clean(body.get("sku")) or _clean(raw_fields.get("sku"))
    if not sku:
        raise MissingKey()

    fields = {}
    for canonical, names in FIELD_ALIASES.items():
        for name in names:
            value = _clean(raw_fields.get(name))
            if value is not None:
                fields[canonical] = value
                break

    record_id = _clean(body.get("recordId")) or _clean(body.get("airtableRecordId"))
    return SyncPayload(sku=sku, record_id=record_id, fields=fields)

# =========================================================
# Helpers
# =========================================================

def _meta_value(term: dict, key: str) -> Optional[str]:
    value = (term.get("meta") or {}).get(key)
    if isinstance(value, list):
        value = value[0] if value else None
    if value in (None, ""):
        return None
    return str(value)


def _check_owner(term: dict, sku: str) -> dict:
    """A term matched by slug may only be adopted if no other SKU owns it."""
    owner = _meta_value(term, SKU_META_KEY)
    if owner and owner != sku:
        raise ConflictError(
            f"Slug '{term.get('slug')}' already belongs to SKU {owner}.",
            term_id=term.get("id"),
        )
    return term


def find_term(store, sku: str, slug: Optional[str]) -> Tuple[Optional[dict], Optional[str]]:
    """Resolve by SKU meta first, then by slug for terms created before SKU-tagging."""
    term = store.find_term_by_meta(SKU_META_KEY, sku)
    if term:
        return term, "sku"
    if slug:
        term = store.find_term_by_slug(slug)
        if term:
            return _check_owner(term, sku), "slug"
    return None, None


def _desired_core(payload: SyncPayload) -> dict:
    fields = payload.fields
    core = {}
    if "name" in fields:
        name = strip_tags(fields["name"]).strip()
        if name:
            core["name"] = name
    if "slug" in fields and slugify(fields["slug"]):
        core["slug"] = slugify(fields["slug"])
    if "description" in fields:
        core["description"] = to_safe_html(fields["description"])
    return core


def _stored_core(term: dict, key: str) -> str:
    value = term.get(key) or ""
    # WordPress keeps names entity-encoded ("Tom &amp; Jerry")
    return html.unescape(value) if key == "name" else value


def _apply_core(store, term: dict, desired: dict) -> Tuple[dict, List[str]]:
    changes = {k: v for k, v in desired.items() if _stored_core(term, k) != v}
    if not changes:
        return term, []
    updated = store.update_term(term["id"], **changes)
    info(f"Updated term {term['id']} ({', '.join(changes)})")
    merged = {**term, **changes, **(updated or {})}
    return merged, list(changes)


def resolve_profile_image(store, value: Optional[str]) -> Optional[int]:
    """
    Attachment id for a profile image reference, or None.

    Numeric values are taken as an existing attachment id. URLs are matched
    against the media library before anything is downloaded. Failures are
    logged and swallowed so the rest of the sync still commits.
    """
    if not value:
        return None
    if value.isdigit():
        return int(value)
    if not value.lower().startswith(("http://", "https://")):
        warn(f"[media] ignoring profile image reference {value!r}")
        return None
    try:
        attachment_id = store.find_attachment_by_url(value)
        if attachment_id:
            debug(f"[media] {value} already in library as {attachment_id}")
            return attachment_id
        return store.sideload_image(value)
    except QuickSyncError as e:
        error(f"[media] media_sideload_image failed for {value}: {e.message}")
        return None

# =========================================================
# Core sync handler
# =========================================================

def trash_term(store, payload: SyncPayload) -> dict:
    term = store.find_term_by_meta(SKU_META_KEY, payload.sku)
    if term:
        store.delete_term(term["id"])
        info(f"Trashed term {term['id']} for SKU {payload.sku}")
    else:
        info(f"Trash requested for unknown SKU {payload.sku}, nothing to do")
    trashed = {
        "action": "trashed",
        "recordId": payload.record_id,
        "term_id": term["id"] if term else None,
    }
    return {"success": True, **trashed, "data": dict(trashed)}


def upsert_term(store, payload: SyncPayload) -> dict:
    sku = payload.sku
    desired = _desired_core(payload)
    lookup_slug = desired.get("slug") or slugify(desired.get("name", ""))
    term, matched_by = find_term(store, sku, lookup_slug)

    if term is None:
        if "name" not in desired:
            raise MissingRequiredField("author_title")
        desired.setdefault("slug", slugify(desired["name"]))
        try:
            term = store.create_term(desired["name"], desired["slug"], desired.get("description", ""))
            action = "created"
            core_changed = [k for k in ("name", "slug", "description") if desired.get(k)]
            info(f"Inserted new term {term['id']} for SKU {sku}")
        except ConflictError as e:
            # slug taken: adopt the holder and continue as an update
            existing = store.find_term_by_slug(desired["slug"])
            if not existing:
                raise ConflictError(
                    f"term_exists but could not resolve term for slug: {desired['slug']}",
                    term_id=e.term_id,
                ) from e
            term = _check_owner(existing, sku)
            info(f"[recover] slug '{desired['slug']}' taken, switching to update term {term['id']}")
            action = "updated"
            term, core_changed = _apply_core(store, term, desired)
    else:
        debug(f"Matched term {term['id']} for SKU {sku} by {matched_by}")
        action = "updated"
        term, core_changed = _apply_core(store, term, desired)

    term_id = term["id"]
    meta_changed = []

    desired_meta = {k: to_safe_html(payload.fields[k]) for k in HTML_META_FIELDS if k in payload.fields}
    if "description" in desired:
        for key in DESCRIPTION_MIRRORS:
            desired_meta.setdefault(key, desired["description"])
    if "status" in payload.fields:
        desired_meta["status"] = payload.fields["status"]
    for key, value in desired_meta.items():
        if _meta_value(term, key) == (value or None):
            continue
        store.update_term_meta(term_id, key, value)
        meta_changed.append(key)

    # join key, written on every sync
    if _meta_value(term, SKU_META_KEY) != sku:
        meta_changed.append(SKU_META_KEY)
    store.update_term_meta(term_id, SKU_META_KEY, sku)

    image_id = resolve_profile_image(store, payload.fields.get("profile_image"))
    if image_id is not None and _meta_value(term, PROFILE_IMAGE_META_KEY) != str(image_id):
        store.update_term_meta(term_id, PROFILE_IMAGE_META_KEY, image_id)
        meta_changed.append(PROFILE_IMAGE_META_KEY)

    info(f"Sync success for SKU {sku}: term {term_id} {action} core={core_changed} meta={meta_changed}")
    return {
        "success": True,
        "data": {
            "term_id": term_id,
            "term_url": store.term_url(term),
            "action": action,
            "recordId": payload.record_id,
            "changed_fields": {"core": core_changed, "meta": meta_changed},
        },
    }


def sync_term(store, body) -> dict:
    payload = parse_payload(body)
    info(f"Fields received for SKU {payload.sku}: {preview(payload.fields)}")
    with _lock_for(payload.sku):
        if payload.trashing:
            return trash_term(store, payload)
        return upsert_term(store, payload)
