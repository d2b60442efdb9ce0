from typing import Optional
from urllib.parse import urlsplit


def short_url(url: Optional[str], limit: int = 120) -> str:
    """Shorten a URL for log lines, dropping the query string when too long."""
    if not url:
        return "<empty>"
    if len(url) <= limit:
        return url
    parts = urlsplit(url)
    base = f"{parts.scheme}://{parts.netloc}{parts.path}" if parts.netloc else url
    if len(base) > limit:
        return base[: limit - 3] + "..."
    return f"{base}?..." if parts.query else base


def host_of(url: Optional[str]) -> str:
    if not url:
        return ""
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""
