import re

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    return _NON_ALNUM.sub("-", (title or "").lower()).strip("-")


def truncate(text, limit: int = 10000) -> str:
    text = "" if text is None else str(text)
    return text[:limit]
