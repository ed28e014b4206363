"""
Page and link store.

Reads return detached ``PageRecord`` / ``LinkRecord`` snapshots so the
resolver never holds an ORM session. Every write passes link URLs through
``seal_url`` so gated URLs reach the database encrypted and ungated ones in
plaintext.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from linkgate.access import parse_amount
from linkgate.database import session_scope
from linkgate.encryption import UrlCipher, seal_url
from linkgate.errors import InvalidAmount, InvalidLinkItem, LinkConflict, NotFound
from linkgate.models import Link, Page

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkRecord:
    id: str
    page_id: str
    preset_id: str
    url: Optional[str]
    token_gated: bool = False
    required_tokens: List[str] = field(default_factory=list)
    title: Optional[str] = None
    order: int = 0

    @property
    def required_amount(self) -> Optional[str]:
        """First required amount; further entries are kept but not consulted."""
        if not self.required_tokens or self.required_tokens[0] is None:
            return None
        return str(self.required_tokens[0]).strip() or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "presetId": self.preset_id,
            "title": self.title,
            "url": self.url,
            "order": self.order,
            "tokenGated": self.token_gated,
            "requiredTokens": list(self.required_tokens),
        }


@dataclass(frozen=True)
class PageRecord:
    id: str
    slug: str
    wallet_address: str
    connected_token: Optional[str] = None
    token_symbol: Optional[str] = None
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "walletAddress": self.wallet_address,
            "connectedToken": self.connected_token,
            "tokenSymbol": self.token_symbol,
            "title": self.title,
        }


def _page_record(page: Page) -> PageRecord:
    return PageRecord(
        id=page.id,
        slug=page.slug,
        wallet_address=page.wallet_address,
        connected_token=page.connected_token or None,
        token_symbol=page.token_symbol,
        title=page.title,
    )


def _link_record(link: Link) -> LinkRecord:
    return LinkRecord(
        id=link.id,
        page_id=link.page_id,
        preset_id=link.preset_id,
        url=link.url,
        token_gated=bool(link.token_gated),
        required_tokens=[str(amount) for amount in (link.required_tokens or [])],
        title=link.title,
        order=link.order or 0,
    )


def public_view(page: PageRecord, links: Iterable[LinkRecord], is_owner: bool = False) -> Dict[str, Any]:
    """Page payload for rendering; gated URLs are withheld from non-owners."""
    items = []
    for link in links:
        if link.token_gated and not is_owner:
            link = replace(link, url=None)
        items.append(link.to_dict())
    return {**page.to_dict(), "items": items}


def validate_link_item(item: Any) -> Mapping[str, Any]:
    """Check one submitted link item and return it unchanged.

    ``presetId`` must be a non-empty string, ``id`` a non-empty string when
    given, ``title`` and ``url`` strings or null, ``order`` a non-negative
    integer, ``tokenGated`` a boolean and ``requiredTokens`` a list of amount
    strings.

    Raises:
        InvalidLinkItem: on the first field that does not fit.
    """
    if not isinstance(item, dict):
        raise InvalidLinkItem("Each link must be an object")

    preset_id = item.get("presetId")
    if not isinstance(preset_id, str) or not preset_id:
        raise InvalidLinkItem("presetId must be a non-empty string")

    if "id" in item and item["id"] is not None and (not isinstance(item["id"], str) or not item["id"]):
        raise InvalidLinkItem("id must be a non-empty string")

    for name in ("title", "url"):
        if item.get(name) is not None and not isinstance(item[name], str):
            raise InvalidLinkItem(f"{name} must be a string")

    order = item.get("order")
    if order is not None and (isinstance(order, bool) or not isinstance(order, int) or order < 0):
        raise InvalidLinkItem("order must be a non-negative integer")

    token_gated = item.get("tokenGated")
    if token_gated is not None and not isinstance(token_gated, bool):
        raise InvalidLinkItem("tokenGated must be a boolean")

    required_tokens = item.get("requiredTokens")
    if required_tokens is not None:
        if not isinstance(required_tokens, list) or not all(isinstance(amount, str) for amount in required_tokens):
            raise InvalidLinkItem("requiredTokens must be a list of strings")
        for amount in required_tokens:
            try:
                parse_amount(amount)
            except InvalidAmount as e:
                raise InvalidLinkItem(f"requiredTokens: {e}") from e

    return item


class PageStore:
    """SQLAlchemy-backed page/link store."""

    def __init__(self, session_factory, cipher: UrlCipher):
        self.session_factory = session_factory
        self.cipher = cipher

    def get_page(self, slug: str) -> Optional[PageRecord]:
        with session_scope(self.session_factory) as session:
            page = session.query(Page).filter_by(slug=slug).first()
            return _page_record(page) if page else None

    def get_links(self, slug: str) -> List[LinkRecord]:
        with session_scope(self.session_factory) as session:
            page = session.query(Page).filter_by(slug=slug).first()
            if page is None:
                raise NotFound(f"Page not found: {slug}")
            return [_link_record(link) for link in page.links]

    def get_link(self, slug: str, link_id: str) -> Optional[LinkRecord]:
        with session_scope(self.session_factory) as session:
            link = (
                session.query(Link)
                .join(Page, Link.page_id == Page.id)
                .filter(Page.slug == slug, Link.id == link_id)
                .first()
            )
            return _link_record(link) if link else None

    def create_page(
        self,
        slug: str,
        wallet_address: str,
        connected_token: Optional[str] = None,
        token_symbol: Optional[str] = None,
        title: Optional[str] = None,
    ) -> PageRecord:
        with session_scope(self.session_factory) as session:
            if session.query(Page).filter_by(slug=slug).first():
                raise ValueError(f"Slug already taken: {slug}")
            page = Page(
                slug=slug,
                wallet_address=wallet_address,
                connected_token=connected_token,
                token_symbol=token_symbol,
                title=title,
            )
            session.add(page)
            session.flush()
            logger.info(f"Created page {slug}")
            return _page_record(page)

    def save_links(self, slug: str, items: Iterable[Mapping[str, Any]]) -> List[LinkRecord]:
        """Replace a page's link list, sealing each URL for storage.

        Items use the API field names (``presetId``, ``tokenGated``,
        ``requiredTokens``...). Existing ids are preserved.

        Raises:
            InvalidLinkItem: an item fails :func:`validate_link_item`.
            LinkConflict: an id belongs to another page's link or repeats.
            NotFound: no page with ``slug``.
        """
        items = [validate_link_item(item) for item in items]
        ids = [item["id"] for item in items if item.get("id")]
        if len(ids) != len(set(ids)):
            raise LinkConflict("Link ids must be unique within a page")

        with session_scope(self.session_factory) as session:
            page = session.query(Page).filter_by(slug=slug).first()
            if page is None:
                raise NotFound(f"Page not found: {slug}")

            if ids:
                foreign = session.query(Link.id).filter(Link.id.in_(ids), Link.page_id != page.id).first()
                if foreign is not None:
                    raise LinkConflict(f"Link id belongs to another page: {foreign[0]}")

            page.links.clear()
            session.flush()

            for position, item in enumerate(items):
                token_gated = bool(item.get("tokenGated"))
                link = Link(
                    preset_id=item["presetId"],
                    title=item.get("title") or None,
                    url=seal_url(self.cipher, item.get("url") or None, token_gated),
                    order=position if item.get("order") is None else item["order"],
                    token_gated=token_gated,
                    required_tokens=list(item.get("requiredTokens") or []),
                )
                if item.get("id"):
                    link.id = item["id"]
                page.links.append(link)

            session.flush()
            logger.info(f"Saved {len(page.links)} links for page {slug}")
            return [_link_record(link) for link in page.links]
