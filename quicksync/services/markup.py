# quicksync/services/markup.py
"""
Description normalization: Markdown or HTML in, allowlisted HTML out.

Input that already carries tags is only sanitized. Anything else is rendered
as Markdown with raw-HTML passthrough switched off, then sanitized as well.

The "already HTML" check is a heuristic: strip everything that looks like a
tag and see whether the text changed. Markdown that happens to contain a
tag-shaped fragment (e.g. "a <3 b > c") is therefore treated as HTML and is
not rendered. That is accepted behavior.
"""
import re

import bleach
import markdown

ALLOWED_TAGS = frozenset([
    "a", "abbr", "b", "blockquote", "br", "code", "del", "em", "h1", "h2",
    "h3", "h4", "h5", "h6", "hr", "i", "img", "li", "ol", "p", "pre", "s",
    "span", "strong", "sub", "sup", "table", "tbody", "td", "th", "thead",
    "tr", "u", "ul",
])
ALLOWED_ATTRIBUTES = {
    "a": ["href", "title", "rel", "target"],
    "abbr": ["title"],
    "img": ["src", "alt", "title", "width", "height"],
    "td": ["colspan", "rowspan"],
    "th": ["colspan", "rowspan"],
}
ALLOWED_PROTOCOLS = frozenset(["http", "https", "mailto"])

_TAG = re.compile(r"<[^>]*>")
_BLOCK = r"(?:h[1-6]|p|ul|ol|li|blockquote|pre|table|thead|tbody|tr|th|td|hr|div)"
# newline(s) the renderer puts between two block-level tags
_BLOCK_GAP = re.compile(r"(<(?:/)?" + _BLOCK + r"\b[^>]*>)\n+(?=</?" + _BLOCK + r"\b)")


def strip_tags(text: str) -> str:
    return _TAG.sub("", text)


def looks_like_html(text: str) -> bool:
    return strip_tags(text) != text


def _renderer() -> markdown.Markdown:
    md = markdown.Markdown(extensions=["tables", "fenced_code", "sane_lists"], output_format="html")
    # raw HTML is escaped instead of passed through
    md.preprocessors.deregister("html_block")
    md.inlinePatterns.deregister("html")
    return md


def render_markdown(text: str) -> str:
    return _BLOCK_GAP.sub(r"\1", _renderer().convert(text))


def sanitize(html: str) -> str:
    return bleach.clean(
        html,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
    )


def to_safe_html(text) -> str:
    if text is None:
        return ""
    text = str(text).strip()
    if not text:
        return ""
    html = text if looks_like_html(text) else render_markdown(text)
    return sanitize(html).strip()
