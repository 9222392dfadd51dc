"""
Unit tests for the term upsert (reconciler) service.

Run: pytest tests/test_sync_service.py -v
"""

from unittest.mock import patch

import pytest

from quicksync.errors import (
    ConflictError,
    InvalidRequest,
    MissingKey,
    MissingRequiredField,
    StoreError,
)
from quicksync.services.sync import _lock_for, _locks, parse_payload, sync_term


def first_sync(store, sku="A1", **fields):
    fields = fields or {"name": "Jane Doe", "author_description": "# Bio\nHello"}
    return sync_term(store, {"recordId": "recA", "sku": sku, "fields": fields})


class TestParsePayload:

    def test_rejects_non_object_body(self):
        with pytest.raises(InvalidRequest):
            parse_payload(["sku", "A1"])

    def test_rejects_non_object_fields(self):
        with pytest.raises(InvalidRequest):
            parse_payload({"sku": "A1", "fields": "nope"})

    def test_missing_sku(self):
        with pytest.raises(MissingKey):
            parse_payload({"recordId": "recA", "fields": {"name": "Jane"}})

    def test_sku_may_ride_inside_fields(self):
        assert parse_payload({"fields": {"sku": "A1", "name": "Jane"}}).sku == "A1"

    def test_aliases_and_unknown_fields(self):
        payload = parse_payload({
            "airtableRecordId": "recB",
            "sku": "A1",
            "fields": {
                "author_title": "Jane",
                "profile_image_link": "https://cdn.example.org/jane.jpg",
                "favourite_colour": "blue",
            },
        })

        assert payload.record_id == "recB"
        assert payload.fields == {
            "name": "Jane",
            "profile_image": "https://cdn.example.org/jane.jpg",
        }

    def test_null_and_empty_values_are_omitted(self):
        payload = parse_payload({"sku": "A1", "fields": {"name": "Jane", "slug": "", "status": None}})

        assert payload.fields == {"name": "Jane"}


class TestCreate:

    def test_first_sync_creates_term(self, store):
        result = first_sync(store)

        data = result["data"]
        term = store.terms[data["term_id"]]
        assert result["success"] is True
        assert data["action"] == "created"
        assert term["name"] == "Jane Doe"
        assert term["slug"] == "jane-doe"
        assert term["description"] == "<h1>Bio</h1><p>Hello</p>"
        assert term["meta"]["sku"] == "A1"
        assert data["term_url"] == "https://example.org/author-speaker/jane-doe/"
        assert data["recordId"] == "recA"
        assert data["changed_fields"]["core"] == ["name", "slug", "description"]
        assert "sku" in data["changed_fields"]["meta"]

    def test_create_without_name_fails_without_mutation(self, store):
        with pytest.raises(MissingRequiredField):
            first_sync(store, author_description="orphan")

        assert store.terms == {}
        assert store.meta_writes == []

    def test_explicit_slug_is_sanitized(self, store):
        result = first_sync(store, name="Jane Doe", slug="Jane  Doe (Speaker)")

        assert store.terms[result["data"]["term_id"]]["slug"] == "jane-doe-speaker"

    def test_slug_conflict_on_create_is_adopted(self, store):
        legacy = store.add_term("Jane Doe", "jane-doe", description="<p>Old bio</p>")

        # lookup misses (another worker created it in between), create conflicts
        with patch.object(store, "find_term_by_slug", side_effect=[None, legacy]):
            result = first_sync(store, name="Jane Doe")

        assert result["data"]["action"] == "updated"
        assert result["data"]["term_id"] == legacy["id"]
        assert len(store.terms) == 1
        assert store.terms[legacy["id"]]["meta"]["sku"] == "A1"
        assert store.terms[legacy["id"]]["description"] == "<p>Old bio</p>"
        assert result["data"]["changed_fields"]["core"] == []

    def test_store_failure_propagates(self, store):
        with patch.object(store, "create_term", side_effect=StoreError("wp_insert_term failed: 500 boom")):
            with pytest.raises(StoreError):
                first_sync(store)


class TestUpdate:

    def test_identical_resync_reports_nothing(self, store):
        first_sync(store)

        result = first_sync(store)

        assert result["data"]["action"] == "updated"
        assert result["data"]["changed_fields"] == {"core": [], "meta": []}
        assert len(store.terms) == 1

    def test_omitted_name_is_left_untouched(self, store):
        created = first_sync(store)

        result = first_sync(store, author_description="# Bio\nHello again")

        term = store.terms[created["data"]["term_id"]]
        assert result["data"]["action"] == "updated"
        assert term["name"] == "Jane Doe"
        assert "name" not in result["data"]["changed_fields"]["core"]
        assert result["data"]["changed_fields"]["core"] == ["description"]

    def test_omitted_meta_is_left_untouched(self, store):
        first_sync(store, name="Jane Doe", as_description="Short bio", status="publish")

        first_sync(store, name="Jane Doe")

        term = next(iter(store.terms.values()))
        assert term["meta"]["as_description"] == "<p>Short bio</p>"
        assert term["meta"]["status"] == "publish"

    def test_rename_keeps_same_term(self, store):
        created = first_sync(store)

        result = first_sync(store, name="Jane Smith", slug="jane-smith")

        assert result["data"]["term_id"] == created["data"]["term_id"]
        assert len(store.terms) == 1
        assert store.terms[created["data"]["term_id"]]["slug"] == "jane-smith"
        assert result["data"]["changed_fields"]["core"] == ["name", "slug"]

    def test_legacy_term_adopted_by_slug_then_found_by_sku(self, store):
        legacy = store.add_term("Legacy Person", "legacy-person")

        result = sync_term(store, {"sku": "L1", "fields": {"name": "Legacy Person"}})

        assert result["data"]["action"] == "updated"
        assert result["data"]["term_id"] == legacy["id"]
        assert result["data"]["changed_fields"]["meta"] == ["sku"]

        store.slug_lookups = 0
        again = sync_term(store, {"sku": "L1", "fields": {"name": "Legacy Person"}})

        assert again["data"]["term_id"] == legacy["id"]
        assert store.slug_lookups == 0

    def test_slug_owned_by_other_sku_is_a_conflict(self, store):
        store.add_term("Jane Doe", "jane-doe", sku="B2")

        with pytest.raises(ConflictError):
            first_sync(store)

        assert len(store.terms) == 1

    def test_whitelisted_meta_written_only_when_changed(self, store):
        first_sync(store, name="Jane Doe", news_description="**News** bio", status="publish")
        store.meta_writes.clear()

        result = first_sync(store, name="Jane Doe", news_description="**News** bio", status="draft")

        assert result["data"]["changed_fields"]["meta"] == ["status"]
        written = [key for _, key, _ in store.meta_writes]
        assert "news_description" not in written
        assert "status" in written

    def test_sku_meta_always_written(self, store):
        first_sync(store)
        store.meta_writes.clear()

        first_sync(store)

        assert [key for _, key, _ in store.meta_writes] == ["sku"]

    def test_stored_entity_encoded_name_is_unchanged(self, store):
        store.add_term("Tom &amp; Jerry", "tom-jerry", sku="T1")

        result = sync_term(store, {"sku": "T1", "fields": {"name": "Tom & Jerry"}})

        assert result["data"]["changed_fields"]["core"] == []


class TestDescriptionMirror:

    def test_description_copied_to_mirror_meta(self, store):
        result = first_sync(store)

        term = store.terms[result["data"]["term_id"]]
        assert term["meta"]["as_description"] == "<h1>Bio</h1><p>Hello</p>"
        assert term["meta"]["Description"] == "<h1>Bio</h1><p>Hello</p>"
        assert {"as_description", "Description"} <= set(result["data"]["changed_fields"]["meta"])

    def test_unchanged_description_reports_no_mirror_change(self, store):
        first_sync(store)

        result = first_sync(store)

        assert result["data"]["changed_fields"]["meta"] == []

    def test_changed_description_reports_all_copies(self, store):
        first_sync(store)

        result = first_sync(store, author_description="New bio")

        assert result["data"]["changed_fields"]["core"] == ["description"]
        assert result["data"]["changed_fields"]["meta"] == ["as_description", "Description"]

    def test_explicit_as_description_wins(self, store):
        result = first_sync(store, name="Jane Doe", author_description="Long bio", as_description="Short bio")

        term = store.terms[result["data"]["term_id"]]
        assert term["meta"]["as_description"] == "<p>Short bio</p>"
        assert term["meta"]["Description"] == "<p>Long bio</p>"


class TestProfileImage:

    def test_known_url_is_not_downloaded_again(self, store):
        media_id = store.add_media("https://cdn.example.org/jane.jpg")

        result = first_sync(store, name="Jane Doe", profile_image_link="https://cdn.example.org/jane.jpg")

        term = store.terms[result["data"]["term_id"]]
        assert term["meta"]["profile_image"] == media_id
        assert store.sideloaded == []

    def test_unknown_url_is_sideloaded(self, store):
        result = first_sync(store, name="Jane Doe", profile_image_url="https://cdn.example.org/new.png")

        term = store.terms[result["data"]["term_id"]]
        assert store.sideloaded == ["https://cdn.example.org/new.png"]
        assert term["meta"]["profile_image"] in store.media
        assert "profile_image" in result["data"]["changed_fields"]["meta"]

    def test_same_url_twice_resolves_to_same_asset(self, store):
        first_sync(store, name="Jane Doe", profile_image_link="https://cdn.example.org/jane.jpg")

        result = first_sync(store, name="Jane Doe", profile_image_link="https://cdn.example.org/jane.jpg")

        assert len(store.sideloaded) == 1
        assert result["data"]["changed_fields"]["meta"] == []

    def test_download_failure_does_not_abort_sync(self, store):
        store.fail_sideload = True

        result = first_sync(store, name="Jane Doe", profile_image_link="https://cdn.example.org/gone.jpg")

        term = store.terms[result["data"]["term_id"]]
        assert result["success"] is True
        assert result["data"]["action"] == "created"
        assert "profile_image" not in term["meta"]
        assert term["meta"]["sku"] == "A1"

    def test_numeric_reference_is_an_attachment_id(self, store):
        result = first_sync(store, name="Jane Doe", profile_image="321")

        assert store.terms[result["data"]["term_id"]]["meta"]["profile_image"] == 321
        assert store.sideloaded == []


class TestTrash:

    def test_trash_known_sku_deletes_term(self, store):
        created = first_sync(store)

        result = sync_term(store, {"recordId": "recA", "sku": "A1", "fields": {"status": "trash"}})

        assert result["data"]["action"] == "trashed"
        assert result["data"]["recordId"] == "recA"
        assert result["data"]["term_id"] == created["data"]["term_id"]
        assert store.terms == {}
        assert result["action"] == "trashed"
        assert result["recordId"] == "recA"
        assert result["term_id"] == created["data"]["term_id"]

    def test_trash_unknown_sku_is_noop_success(self, store):
        result = sync_term(store, {"recordId": "recZ", "sku": "Z9", "fields": {"status": "trash"}})

        assert result["success"] is True
        assert result["data"]["action"] == "trashed"
        assert result["data"]["term_id"] is None
        assert result["action"] == "trashed"
        assert result["recordId"] == "recZ"
        assert result["term_id"] is None


class TestLocks:

    def test_same_sku_shares_a_lock(self):
        lock = _lock_for("A1")

        assert _lock_for("A1") is lock
        assert _lock_for("B2") is not lock

    def test_released_lock_is_dropped(self):
        lock = _lock_for("lock-gc-sku")
        assert "lock-gc-sku" in _locks

        del lock

        assert "lock-gc-sku" not in _locks
