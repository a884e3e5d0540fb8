"""Shopify Admin API catalog reader.

Fetches every product for one vendor (brand), following cursor pagination
via the Link response header. No caching: stock levels are what we monitor.
"""

import json
import logging
import re
from urllib.parse import quote

from curl_cffi import CurlError

from . import config
from .errors import UpstreamError
from .http_client import HttpClient

log = logging.getLogger(__name__)

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="?next"?')


def products_url(brand: str, page_size: int | None = None) -> str:
    """First-page listing URL for a brand."""
    limit = page_size or config.CATALOG_PAGE_SIZE
    return (
        f"https://{config.SHOPIFY_SHOP}/admin/api/{config.SHOPIFY_API_VERSION}"
        f"/products.json?vendor={quote(brand, safe='')}&limit={limit}"
    )


def next_page_url(link_header: str | None) -> str | None:
    """Extract the rel="next" URL from a Link header. Malformed → None."""
    if not link_header:
        return None
    for part in link_header.split(","):
        match = _NEXT_LINK_RE.search(part)
        if match:
            return match.group(1).strip()
    return None


def _auth_headers() -> dict:
    return {"X-Shopify-Access-Token": config.SHOPIFY_ACCESS_TOKEN}


def fetch_all_products(brand: str, client: HttpClient | None = None) -> list[dict]:
    """Return all products for brand across every page.

    Raises UpstreamError on any non-2xx page, transport failure, or
    unparseable body. Nothing is returned for a partially fetched brand.
    """
    if client is None:
        with HttpClient() as own_client:
            return fetch_all_products(brand, own_client)

    products: list[dict] = []
    url = products_url(brand)
    pages = 0

    while url:
        try:
            result = client.fetch(url, headers=_auth_headers())
        except CurlError as e:
            raise UpstreamError(None, f"{type(e).__name__}: {e}", url) from e

        if not result.ok:
            raise UpstreamError(result.status_code, result.reason, url)

        try:
            data = json.loads(result.content or b"{}")
        except json.JSONDecodeError as e:
            raise UpstreamError(result.status_code, "unparseable JSON body", url) from e

        page = data.get("products") or [] if isinstance(data, dict) else []
        products.extend(page)
        pages += 1
        url = next_page_url(result.headers.get("link"))

    log.info(f"Fetched {len(products)} products for {brand!r} ({pages} page(s))")
    return products
