import os

SKU_META_KEY = "sku"
PROFILE_IMAGE_META_KEY = "profile_image"
REQUIRED_CAPABILITY = "edit_posts"
MAX_MESSAGE_LENGTH = 10000
HTTP_TIMEOUT = 30

DEFAULT_TAXONOMY = "author_speaker"
SYNC_ROUTE_PREFIX = "/wp-json/four12/v1"


def wordpress() -> dict:
    return {
        "base_url": (os.getenv("WP_BASE_URL") or "").rstrip("/"),
        "taxonomy": os.getenv("WP_TAXONOMY", DEFAULT_TAXONOMY),
        "name": "WP",
    }


def exporter() -> dict:
    base_url = (os.getenv("WP_BASE_URL") or "").rstrip("/")
    default_endpoint = f"{base_url}{SYNC_ROUTE_PREFIX}/tax-sync" if base_url else None
    return {
        "endpoint": os.getenv("QUICKSYNC_ENDPOINT", default_endpoint),
        # "api_sync:xxxx xxxx xxxx xxxx" (WordPress application password)
        "credential": os.getenv("QUICKSYNC_CREDENTIAL"),
        "taxonomy": os.getenv("WP_TAXONOMY", DEFAULT_TAXONOMY),
    }


def airtable() -> dict:
    return {
        "token": os.getenv("AIRTABLE_TOKEN"),
        "base_id": os.getenv("AIRTABLE_BASE_ID"),
        "table": os.getenv("AIRTABLE_TABLE", "author-speaker"),
        "name": "Airtable",
    }
