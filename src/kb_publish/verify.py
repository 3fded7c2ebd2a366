from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from .http_client import FetchError, SiteClient

logger = logging.getLogger(__name__)

_LINK_RELS = {"stylesheet", "manifest", "icon", "apple-touch-icon", "modulepreload"}


@dataclass(frozen=True)
class AssetCheck:
    url: str
    status_code: int | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code is not None and (
            200 <= self.status_code < 300
        )


@dataclass
class SiteCheck:
    url: str
    status_code: int | None = None
    title: str = ""
    error: str | None = None
    assets: list[AssetCheck] = field(default_factory=list)

    @property
    def failures(self) -> list[AssetCheck]:
        return [a for a in self.assets if not a.ok]

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
            and not self.failures
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "ok": self.ok,
            "status_code": self.status_code,
            "title": self.title,
            "error": self.error,
            "assets_checked": len(self.assets),
            "failures": [
                {"url": a.url, "status_code": a.status_code, "error": a.error}
                for a in self.failures
            ],
        }


def _strip_fragment(url: str) -> str:
    return urlunparse(urlparse(url)._replace(fragment=""))


def _same_origin(a: str, b: str) -> bool:
    pa, pb = urlparse(a), urlparse(b)
    return (pa.scheme, (pa.netloc or "").lower()) == (pb.scheme, (pb.netloc or "").lower())


def extract_asset_urls(html: str, *, page_url: str) -> list[str]:
    """Same-origin script, stylesheet/icon and image references, deduplicated."""

    soup = BeautifulSoup(html, "html.parser")
    refs: list[str] = []

    for tag in soup.find_all("script", src=True):
        refs.append(str(tag["src"]))
    for tag in soup.find_all("link", href=True):
        rel = tag.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if any(str(r).lower() in _LINK_RELS for r in rel):
            refs.append(str(tag["href"]))
    for tag in soup.find_all("img", src=True):
        refs.append(str(tag["src"]))

    out: list[str] = []
    for ref in refs:
        ref = ref.strip()
        if not ref or ref.startswith(("data:", "javascript:")):
            continue
        absolute = _strip_fragment(urljoin(page_url, ref))
        if _same_origin(absolute, page_url):
            out.append(absolute)
    return list(dict.fromkeys(out))


def _extract_title(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(" ", strip=True)
    return ""


def verify_site(url: str, *, http: SiteClient, max_assets: int = 50) -> SiteCheck:
    """Smoke-test a deployed site: the page loads and its assets resolve."""

    check = SiteCheck(url=url)
    try:
        page = http.page(url)
    except FetchError as e:
        check.error = str(e)
        return check

    check.status_code = page.status_code
    if not page.ok:
        check.error = f"HTTP {page.status_code}"
        return check

    html = page.body.decode("utf-8", errors="replace")
    check.title = _extract_title(html)

    assets = extract_asset_urls(html, page_url=page.url or url)
    if len(assets) > max_assets:
        logger.info("Checking first %d of %d assets", max_assets, len(assets))
        assets = assets[:max_assets]

    for asset_url in assets:
        try:
            status = http.asset_status(asset_url)
        except FetchError as e:
            check.assets.append(AssetCheck(url=asset_url, status_code=None, error=str(e)))
            continue
        asset = AssetCheck(url=asset_url, status_code=status)
        check.assets.append(asset)
        if not asset.ok:
            logger.warning("Asset %s -> HTTP %s", asset_url, status)

    return check
