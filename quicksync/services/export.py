# quicksync/services/export.py
"""
Author Quick Sync exporter.

Reads one Airtable record, squashes it into the sparse payload the tax-sync
endpoint expects, POSTs it with Basic auth and writes the outcome back onto
the record (Sync_Status / Sync_Response / term_id).

Empty cells are left out of the payload rather than sent as "" so the
endpoint can tell "leave as is" from "clear". A failed POST is recorded on
the record and not retried.
"""
import argparse
import json
from dataclasses import dataclass, asdict
from typing import Optional

import requests
from dotenv import load_dotenv

from .. import config as settings
from ..clients.airtable import AirtableClient, AirtableApiError
from ..config import HTTP_TIMEOUT, MAX_MESSAGE_LENGTH
from ..errors import MissingCredential, NotFound, QuickSyncError
from ..utils.logger import info, warn, error, preview
from ..utils.security import basic_auth_header
from ..utils.text import slugify, truncate

STATUS_SYNCED = "✅ Synced"
STATUS_FAILED = "❌ Failed"

# payload field -> record columns, first non-empty wins
RECORD_FIELDS = {
    "author_title": ("author_title",),
    "slug": ("author_slug",),
    "author_description": ("author_description_html", "author_description"),
    "as_description": ("as_description",),
    "news_description": ("news_description",),
    "profile_image_link": ("profile_image_link",),
    "profile_image": ("profile_image_wp_id",),
    "status": ("status",),
}


@dataclass
class ExportResult:
    ok: bool
    status: str
    message: str
    term_id: Optional[int] = None
    http_status: Optional[int] = None

    def as_dict(self) -> dict:
        return asdict(self)


def cell_as_string(value) -> str:
    """Flatten an Airtable cell the way the scripting API's getCellValueAsString does."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "checked" if value else ""
    if isinstance(value, list):
        return ", ".join(p for p in (cell_as_string(v) for v in value) if p)
    if isinstance(value, dict):
        return str(value.get("name") or value.get("url") or value.get("id") or "").strip()
    return str(value).strip()


def first_attachment_url(value) -> str:
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict) and item.get("url"):
                return item["url"]
        return ""
    return cell_as_string(value)


def build_payload(record: dict) -> dict:
    cells = record.get("fields") or {}
    fields = {}
    for out, columns in RECORD_FIELDS.items():
        for column in columns:
            raw = cells.get(column)
            text = first_attachment_url(raw) if out == "profile_image_link" else cell_as_string(raw)
            if text:
                fields[out] = text
                break

    if "slug" not in fields and fields.get("author_title"):
        derived = slugify(fields["author_title"])
        if derived:
            fields["slug"] = derived

    return {
        "recordId": record["id"],
        "sku": cell_as_string(cells.get("sku")),
        "fields": fields,
    }


def interpret_response(status_code: int, text: str) -> ExportResult:
    ok_status = 200 <= status_code < 300
    try:
        body = json.loads(text)
    except ValueError:
        # a 2xx we cannot read is not proof the term was written
        reason = "response was not JSON" if ok_status else "WordPress sync failed"
        return ExportResult(False, STATUS_FAILED, f"{status_code} {reason}: {text}", http_status=status_code)

    if not isinstance(body, dict):
        if ok_status:
            return ExportResult(True, STATUS_SYNCED, json.dumps(body), http_status=status_code)
        return ExportResult(False, STATUS_FAILED, f"{status_code}: {text}", http_status=status_code)

    if not ok_status or body.get("error") or body.get("success") is False:
        detail = body.get("message") or body.get("error") or text
        code = body.get("code")
        message = f"{status_code} {code}: {detail}" if code else f"{status_code}: {detail}"
        return ExportResult(False, STATUS_FAILED, message, http_status=status_code)

    term_id = (body.get("data") or {}).get("term_id") if isinstance(body.get("data"), dict) else None
    return ExportResult(True, STATUS_SYNCED, json.dumps(body), term_id=term_id, http_status=status_code)


def _write_back(airtable: AirtableClient, table: str, record_id: str, result: ExportResult):
    fields = {
        "Sync_Status": result.status,
        "Sync_Response": truncate(result.message, MAX_MESSAGE_LENGTH),
    }
    if result.term_id:
        fields["term_id"] = result.term_id
    airtable.update_record(table, record_id, fields)


def export_record(record_id: str, config: dict, airtable: AirtableClient,
                  table: Optional[str] = None, session: Optional[requests.Session] = None) -> ExportResult:
    credential = config.get("credential")
    if not credential:
        raise MissingCredential()
    endpoint = config.get("endpoint")
    if not endpoint:
        raise QuickSyncError("missing_endpoint", "Missing QUICKSYNC_ENDPOINT", 500)
    table = table or settings.airtable()["table"]

    record = airtable.get_record(table, record_id) if record_id else None
    if not record:
        raise NotFound("Record", record_id or "")

    payload = build_payload(record)
    info(f"QuickSync payload: {preview(json.dumps(payload))}")

    session = session or requests.Session()
    try:
        r = session.post(
            endpoint,
            json=payload,
            headers={"Content-Type": "application/json", "Authorization": basic_auth_header(credential)},
            timeout=HTTP_TIMEOUT,
        )
    except requests.RequestException as e:
        error(f"Sync FAILED -> {e}")
        result = ExportResult(False, STATUS_FAILED, f"Transport error: {e}")
    else:
        info(f"POST -> {endpoint} ({r.status_code})")
        info(f"Response body: {preview(r.text)}")
        result = interpret_response(r.status_code, r.text)
        if result.ok:
            info(f"Sync SUCCESS -> term {result.term_id}")
        else:
            warn(f"Sync FAILED -> {truncate(result.message, 500)}")

    _write_back(airtable, table, record["id"], result)
    return result


def main(argv=None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(
        prog="quicksync-export",
        description="Push one Author / Speaker record from Airtable to the WordPress tax-sync endpoint.",
    )
    parser.add_argument("record_id", help="Airtable record id (rec...)")
    parser.add_argument("--table", help="Airtable table name (default: AIRTABLE_TABLE)")
    args = parser.parse_args(argv)

    at = settings.airtable()
    try:
        client = AirtableClient(at["token"], at["base_id"])
        result = export_record(args.record_id, settings.exporter(), client, table=args.table or at["table"])
    except (QuickSyncError, AirtableApiError) as e:
        error(f"Sync script error: {e}")
        return 1

    print(json.dumps(result.as_dict(), ensure_ascii=False))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
