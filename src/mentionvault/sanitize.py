from __future__ import annotations

import re
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, CData, Comment, Declaration, Doctype, ProcessingInstruction

_DOUBLE_BREAK = re.compile(r"<br\s*/?>\s*<br\s*/?>", re.IGNORECASE)

ALLOWED_TAGS = {
    "address", "article", "aside", "footer", "header", "h1", "h2", "h3", "h4", "h5", "h6",
    "hgroup", "main", "nav", "section", "blockquote", "dd", "div", "dl", "dt", "figcaption",
    "figure", "hr", "li", "ol", "p", "pre", "ul", "a", "abbr", "b", "bdi", "bdo", "br",
    "cite", "code", "data", "dfn", "em", "i", "kbd", "mark", "q", "rb", "rp", "rt", "rtc",
    "ruby", "s", "samp", "small", "span", "strong", "sub", "sup", "time", "u", "var", "wbr",
    "caption", "col", "colgroup", "table", "tbody", "td", "tfoot", "th", "thead", "tr",
}
ALLOWED_ATTRIBUTES = {
    "a": {"href", "name", "target"},
}
URL_ATTRIBUTES = {"href"}
ALLOWED_SCHEMES = {"http", "https", "ftp", "mailto", "tel"}
# Dropped together with their text content.
NON_TEXT_TAGS = ["script", "style", "textarea", "option", "noscript"]
# Markup nodes that never reach stored HTML.
MARKUP_NODES = (Comment, CData, Declaration, Doctype, ProcessingInstruction)
# Mentions render below a post title, so headings are pushed down.
HEADING_MAP = {
    "h1": "h3",
    "h2": "h4",
    "h3": "h5",
    "h4": "h6",
    "h5": "h6",
    "h6": "h6",
}


def normalize_paragraphs(html: str) -> str:
    return _DOUBLE_BREAK.sub("</p><p>", f"<p>{html}</p>")


def sanitize_html(html: str | None) -> str:
    """Clean an untrusted HTML fragment received from the upstream feed.

    Double line breaks become paragraphs, unknown tags are unwrapped (their
    text survives), attributes are reduced to a small allow-list, headings
    are demoted, comments and declarations are removed, and empty paragraphs or empty Bridgy backlinks are dropped.
    """
    if not html:
        return ""
    soup = BeautifulSoup(normalize_paragraphs(html), "html.parser")
    for node in soup.find_all(string=lambda text: isinstance(text, MARKUP_NODES)):
        node.extract()
    for tag in soup.find_all(NON_TEXT_TAGS):
        if not tag.decomposed:
            tag.decompose()
    for tag in soup.find_all(True):
        if tag.name in HEADING_MAP:
            tag.name = HEADING_MAP[tag.name]
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue
        _filter_attributes(tag)
    for anchor in soup.find_all("a"):
        href = anchor.get("href") or ""
        if "brid.gy" in href and not anchor.get_text().strip():
            anchor.decompose()
    for paragraph in soup.find_all("p"):
        if paragraph.decomposed:
            continue
        if not paragraph.get_text().strip():
            paragraph.decompose()
    return str(soup)


def _filter_attributes(tag) -> None:
    allowed = ALLOWED_ATTRIBUTES.get(tag.name, set())
    for name in list(tag.attrs):
        if name not in allowed:
            del tag.attrs[name]
            continue
        if name in URL_ATTRIBUTES and not _is_allowed_url(str(tag.attrs[name])):
            del tag.attrs[name]


def _is_allowed_url(value: str) -> bool:
    scheme = urlsplit(value.strip()).scheme.lower()
    return not scheme or scheme in ALLOWED_SCHEMES
