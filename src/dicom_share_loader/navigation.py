"""Parsing of share links and their navigation parameters."""

from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from .models import ShareReference

TOKEN_PARAM = "shareToken"
PASSWORD_PARAM = "password"
SERIES_PARAM = "SeriesInstanceUID"
SOP_PARAM = "SOPInstanceUID"


@dataclass(frozen=True)
class NavigationContext:
    """Everything a share link tells the loader."""

    reference: ShareReference
    base_url: Optional[str] = None
    series_uids: tuple[str, ...] = field(default_factory=tuple)
    sop_uids: tuple[str, ...] = field(default_factory=tuple)


def split_uid_list(value: Optional[str]) -> tuple[str, ...]:
    """
    Split a comma-separated UID list, trimming whitespace and dropping empties.

    Examples:
        >>> split_uid_list("1.2.3, 1.2.4,,")
        ('1.2.3', '1.2.4')
    """
    if not value:
        return ()
    return tuple(uid.strip() for uid in value.split(",") if uid.strip())


def parse_share_link(link: str) -> Optional[NavigationContext]:
    """
    Parse a viewer URL (or a bare query string) into a NavigationContext.

    Handles:
    - Full links: "https://pacs.example.org/viewer?shareToken=abc&password=x"
    - Scheme-less links: "pacs.example.org/viewer?shareToken=abc"
    - Query strings: "?shareToken=abc&SeriesInstanceUID=1.2.3,1.2.4"
    - Bare tokens: "abc"

    Args:
        link: Share link, query string or bare token

    Returns:
        NavigationContext, or None if no share token is present
    """
    link = link.strip()
    if not link:
        return None

    parts = urlsplit(link)
    if parts.scheme in ("http", "https") and parts.netloc:
        base_url = f"{parts.scheme}://{parts.netloc}"
        query = parts.query
    elif "?" in link:
        # Scheme-less link such as "pacs.example.org/viewer?shareToken=abc"
        base_url = None
        query = link.split("?", 1)[1]
    elif "=" in link:
        base_url = None
        query = link
    else:
        return NavigationContext(reference=ShareReference(token=link))

    params = parse_qs(query, keep_blank_values=True)

    def first(name: str) -> Optional[str]:
        values = params.get(name)
        return values[0] if values else None

    token = first(TOKEN_PARAM)
    if not token:
        return None

    return NavigationContext(
        reference=ShareReference(token=token, passphrase=first(PASSWORD_PARAM) or ""),
        base_url=base_url,
        series_uids=split_uid_list(first(SERIES_PARAM)),
        sop_uids=split_uid_list(first(SOP_PARAM)),
    )
