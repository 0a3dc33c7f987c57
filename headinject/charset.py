"""
Decide whether a response body can be decoded and re-encoded without loss.

Two checks are available: one on the content-type header value and one on
the first chunk of the body, which looks for an HTML <meta> charset
declaration. Both only ever report an explicit, unsupported declaration;
missing or malformed declarations are not an error.
"""
import re

from mitmproxy.net.http.headers import parse_content_type

SUPPORTED_CHARSETS = frozenset(
    (
        "utf-8",
        "utf8",
        "iso-8859-1",
        "latin1",
        "latin-1",
        "us-ascii",
        "ascii",
    )
)

DEFAULT_CHARSET = "utf-8"

_header_charset = re.compile(r"charset\s*=\s*([^\s;]+)", re.IGNORECASE)
_meta_charset = re.compile(
    r"""<\s*meta[^>]+charset\s*=\s*['"]([^'"]*)['"][^>]*>""", re.IGNORECASE
)
_meta_http_equiv = re.compile(
    r"""<\s*meta[^>]+http-equiv\s*=\s*['"]\s*content-type[^>]*>""", re.IGNORECASE
)
_meta_content_charset = re.compile(r"""charset\s*=\s*([^\s"']*)""", re.IGNORECASE)


def _normalize(charset: str) -> str:
    return charset.strip().strip("'\"").strip().lower()


def is_supported(charset: str) -> bool:
    return _normalize(charset) in SUPPORTED_CHARSETS


def declared_charset(content_type: str | None) -> str | None:
    """
    Extract the charset parameter of a content-type value, lowercased.

        >>> declared_charset("text/html; charset=UTF-8")
        'utf-8'
    """
    if not content_type:
        return None
    parsed = parse_content_type(content_type)
    if parsed:
        for key, value in parsed[2].items():
            if key.lower() == "charset":
                return _normalize(value) or None
    # Not a type/subtype value, fall back to a plain search.
    if m := _header_charset.search(content_type):
        return _normalize(m.group(1)) or None
    return None


def sniff_charset(text: str) -> str | None:
    """
    Find a charset declared by a <meta charset="..."> or
    <meta http-equiv="Content-Type" content="...; charset=..."> tag.

    If both forms are present and one of them is unsupported, the
    unsupported one is returned so that callers err on the side of passthrough.
    """
    found = []
    if m := _meta_charset.search(text):
        found.append(_normalize(m.group(1)))
    if m := _meta_http_equiv.search(text):
        if c := _meta_content_charset.search(m.group(0)):
            found.append(_normalize(c.group(1)))
    for charset in found:
        if charset not in SUPPORTED_CHARSETS:
            return charset
    return found[0] if found else None


def header_allows(content_type: str | None) -> bool:
    """False only if the header declares a charset outside the supported set."""
    charset = declared_charset(content_type)
    return charset is None or charset in SUPPORTED_CHARSETS


def body_allows(text: str) -> bool:
    """False only if the markup declares a charset outside the supported set."""
    charset = sniff_charset(text)
    return charset is None or charset in SUPPORTED_CHARSETS
