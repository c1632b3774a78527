"""Proxy parsing and fixed per-worker assignment."""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from .models import ProxyDescriptor

LOGGER = logging.getLogger(__name__)


def parse_proxies(lines: Iterable[str]) -> list[ProxyDescriptor]:
    """Parse proxy URLs, skipping lines that do not describe an endpoint.

    Parameters
    ----------
    lines : iterable of str
        Proxy URLs (``scheme://[user:pass@]host:port``), already stripped of
        comments and blanks

    Returns
    -------
    list[ProxyDescriptor]
        Parsed proxies in input order
    """
    proxies: list[ProxyDescriptor] = []
    for line_num, line in enumerate(lines, 1):
        try:
            proxies.append(ProxyDescriptor.from_url(line))
        except ValueError as exc:
            LOGGER.warning("Skipping proxy #%d: %s", line_num, exc)
    return proxies


def assign_proxy(
    worker_index: int,
    proxies: Sequence[ProxyDescriptor],
) -> Optional[ProxyDescriptor]:
    """Round-robin assignment: worker ``i`` always gets ``proxies[i % P]``.

    A worker keeps its proxy for its whole lifetime. With no proxies every
    worker goes out over the default network path.
    """
    if not proxies:
        return None
    return proxies[worker_index % len(proxies)]
