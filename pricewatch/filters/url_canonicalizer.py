# pricewatch/filters/url_canonicalizer.py

"""Canonical dedup keys for tracked product URLs."""

import logging
import re
from collections.abc import Iterable
from urllib.parse import urlsplit

from pricewatch.models.run_summary import CanonicalUrlGroup
from pricewatch.models.tracked_item import TrackedItem

logger = logging.getLogger("pricewatch.filters")

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_WWW_RE = re.compile(r"^(?:www\.)+", re.IGNORECASE)
_DEFAULT_PORTS: frozenset[int] = frozenset({80, 443})


def canonicalize(raw_url: str) -> str:
    """Map a user-entered URL to the key used to share one extraction.

    ``http://www.a.com/p/?ref=x``, ``https://WWW.A.com/p`` and
    ``a.com/p`` all become ``https://a.com/p``: plain ``http`` folds
    into ``https``, ``www.`` prefixes, default ports, the query, the
    fragment and trailing slashes are dropped and the result is
    lower-cased.

    Never raises: input that cannot be parsed as a URL falls back to
    its trimmed, lower-cased form.
    """
    trimmed = raw_url.strip()
    candidate = trimmed
    if not _SCHEME_RE.match(candidate):
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        hostname = parts.hostname or ""
        port = parts.port
    except ValueError:
        return trimmed.lower()
    if not hostname:
        return trimmed.lower()

    host = _WWW_RE.sub("", hostname)
    if not host:
        return trimmed.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port not in _DEFAULT_PORTS:
        host = f"{host}:{port}"

    path = parts.path.rstrip("/") or "/"
    return f"https://{host}{path}".lower()


def group_by_canonical_url(
    items: Iterable[TrackedItem],
) -> list[CanonicalUrlGroup]:
    """Partition items by canonical URL, keeping repository order.

    Items with a blank URL are left out. Groups come back in the order
    their first member was seen.
    """
    groups: dict[str, CanonicalUrlGroup] = {}
    for item in items:
        if not item.url or not item.url.strip():
            continue
        key = canonicalize(item.url)
        group = groups.get(key)
        if group is None:
            group = CanonicalUrlGroup(canonical_key=key)
            groups[key] = group
        group.members.append(item)

    shared = sum(len(g.members) - 1 for g in groups.values())
    if shared:
        logger.info(
            "URL grouping folded %d items onto shared pages", shared,
        )
    return list(groups.values())
