"""
Gated Link Resolver

Request-time state machine behind a visitor opening a link:

    UNAUTHENTICATED -> (login) -> checking -> GRANTED | DENIED | CHECK_FAILED

Owners always see their own links. Ungated links resolve for everyone. Gated
links are decrypted only after the balance check passes. A failed check
(oracle down, rate limited with nothing cached) is reported as CHECK_FAILED,
never as DENIED, so an outage does not look like the visitor lacks tokens.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from linkgate import metrics
from linkgate.access import AccessDecisionEngine
from linkgate.analytics import ClickTracker
from linkgate.audit_logger import get_audit_logger
from linkgate.encryption import UrlCipher
from linkgate.errors import CipherError, InvalidAmount, NotFound, OracleError, RateLimited
from linkgate.identity import is_page_owner
from linkgate.pages import LinkRecord, PageRecord, PageStore

logger = logging.getLogger(__name__)

TOKEN_PLACEHOLDER = "[token]"


class ResolutionState(str, enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"
    CHECK_FAILED = "check_failed"
    UNAUTHENTICATED = "unauthenticated"
    UNAVAILABLE = "unavailable"


class AccessPath(str, enum.Enum):
    OWNER = "owner"
    UNGATED = "ungated"
    TOKEN = "token"


@dataclass(frozen=True)
class GateContext:
    """A link and its page, loaded once and reusable for re-checks."""

    page: PageRecord
    link: LinkRecord

    @property
    def is_gated(self) -> bool:
        return bool(self.link.token_gated and self.link.required_amount and self.page.connected_token)


@dataclass(frozen=True)
class ResolvedLink:
    state: ResolutionState
    link_id: str
    page_slug: str
    url: Optional[str] = None
    access: Optional[AccessPath] = None
    balance: Optional[str] = None
    required_amount: Optional[str] = None
    token_address: Optional[str] = None
    token_symbol: Optional[str] = None
    swap_url: Optional[str] = None
    retry_after: Optional[int] = None
    stale: bool = False
    reason: Optional[str] = None

    @property
    def has_access(self) -> bool:
        return self.state is ResolutionState.GRANTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "hasAccess": self.has_access,
            "linkId": self.link_id,
            "slug": self.page_slug,
            "url": self.url,
            "access": self.access.value if self.access else None,
            "balance": self.balance,
            "requiredAmount": self.required_amount,
            "tokenAddress": self.token_address,
            "tokenSymbol": self.token_symbol,
            "swapUrl": self.swap_url,
            "retryAfter": self.retry_after,
            "stale": self.stale,
            "reason": self.reason,
        }


class GatedLinkResolver:
    """Decides, per request, whether a link's real destination is revealed."""

    def __init__(
        self,
        store: PageStore,
        engine: AccessDecisionEngine,
        cipher: UrlCipher,
        click_tracker: Optional[ClickTracker] = None,
        swap_url_template: Optional[str] = "https://jup.ag/swap/SOL-{token}",
    ):
        self.store = store
        self.engine = engine
        self.cipher = cipher
        self.click_tracker = click_tracker
        self.swap_url_template = swap_url_template
        self.audit_logger = get_audit_logger()

    # -- loading -----------------------------------------------------------

    def load(self, page_slug: str, link_id: str) -> GateContext:
        """Fetch the page and link.

        Raises:
            NotFound: either is missing.
        """
        page = self.store.get_page(page_slug)
        if page is None:
            raise NotFound(f"Page not found: {page_slug}")
        link = self.store.get_link(page_slug, link_id)
        if link is None:
            raise NotFound(f"Link not found: {link_id}")
        return GateContext(page=page, link=link)

    # -- entry points ------------------------------------------------------

    def resolve(self, page_slug: str, link_id: str, visitor_wallet: Optional[str]) -> ResolvedLink:
        """Resolve a link for a visitor (``None`` for anonymous)."""
        context = self.load(page_slug, link_id)
        return self._decide(context, visitor_wallet, force_refresh=False)

    def check_again(self, context: GateContext, visitor_wallet: Optional[str]) -> ResolvedLink:
        """Repeat the decision for an already loaded link.

        Holdings are re-fetched (subject to the per-wallet rate limit) so a
        visitor who just acquired tokens is not answered from a cache entry
        that predates the purchase.
        """
        return self._decide(context, visitor_wallet, force_refresh=True)

    # -- internals ---------------------------------------------------------

    def _decide(self, context: GateContext, visitor_wallet: Optional[str], force_refresh: bool) -> ResolvedLink:
        page, link = context.page, context.link

        if not link.url:
            result = self._unavailable(context, "no_url")
        elif is_page_owner(page, visitor_wallet):
            self.audit_logger.log_owner_bypass(visitor_wallet, page.slug, link.id)
            result = self._reveal(context, AccessPath.OWNER)
        elif not context.is_gated:
            result = self._reveal(context, AccessPath.UNGATED)
        elif not visitor_wallet:
            # No balance check for anonymous traffic.
            result = self._gated_result(context, ResolutionState.UNAUTHENTICATED, reason="wallet_required")
        else:
            result = self._check(context, visitor_wallet, force_refresh)

        return self._finish(context, visitor_wallet, result)

    def _check(self, context: GateContext, visitor_wallet: str, force_refresh: bool) -> ResolvedLink:
        page, link = context.page, context.link
        try:
            decision = self.engine.evaluate(
                visitor_wallet,
                page.connected_token,
                link.required_amount,
                force_refresh=force_refresh,
            )
        except RateLimited as e:
            return self._gated_result(
                context, ResolutionState.CHECK_FAILED, reason="rate_limited", retry_after=e.retry_after
            )
        except OracleError as e:
            logger.warning(f"Balance check failed for {page.slug}/{link.id}: {e}")
            return self._gated_result(context, ResolutionState.CHECK_FAILED, reason="oracle_unavailable")
        except InvalidAmount as e:
            logger.error(f"Link {page.slug}/{link.id} has an invalid required amount: {e}")
            return self._gated_result(context, ResolutionState.CHECK_FAILED, reason="invalid_requirement")

        if not decision.has_access:
            return self._gated_result(
                context,
                ResolutionState.DENIED,
                balance=decision.balance,
                stale=decision.stale,
                swap_url=self._swap_url(page.connected_token),
            )

        return self._reveal(context, AccessPath.TOKEN, balance=decision.balance, stale=decision.stale)

    def _reveal(
        self,
        context: GateContext,
        access: AccessPath,
        balance: Optional[str] = None,
        stale: bool = False,
    ) -> ResolvedLink:
        page, link = context.page, context.link
        stored = link.url

        if self.cipher.has_record_shape(stored):
            try:
                url = self.cipher.decrypt(stored)
            except CipherError as e:
                self.audit_logger.log_decrypt_failure(page.slug, link.id, type(e).__name__)
                return self._unavailable(context, "decrypt_failed")
        else:
            if link.token_gated:
                # Gated row stored in plaintext; tolerated, but worth fixing at write time.
                logger.warning(f"Gated link {page.slug}/{link.id} is not stored encrypted")
            url = stored

        if not url:
            return self._unavailable(context, "no_url")

        if access is AccessPath.TOKEN:
            url = url.replace(TOKEN_PLACEHOLDER, page.connected_token or "")

        return ResolvedLink(
            state=ResolutionState.GRANTED,
            link_id=link.id,
            page_slug=page.slug,
            url=url,
            access=access,
            balance=balance,
            required_amount=link.required_amount if context.is_gated else None,
            token_address=page.connected_token if context.is_gated else None,
            token_symbol=page.token_symbol if context.is_gated else None,
            stale=stale,
        )

    def _gated_result(self, context: GateContext, state: ResolutionState, **extra: Any) -> ResolvedLink:
        return ResolvedLink(
            state=state,
            link_id=context.link.id,
            page_slug=context.page.slug,
            required_amount=context.link.required_amount,
            token_address=context.page.connected_token,
            token_symbol=context.page.token_symbol,
            **extra,
        )

    def _unavailable(self, context: GateContext, reason: str) -> ResolvedLink:
        return ResolvedLink(
            state=ResolutionState.UNAVAILABLE,
            link_id=context.link.id,
            page_slug=context.page.slug,
            reason=reason,
        )

    def _swap_url(self, token_address: Optional[str]) -> Optional[str]:
        if not self.swap_url_template or not token_address:
            return None
        return self.swap_url_template.format(token=token_address)

    def _finish(self, context: GateContext, visitor_wallet: Optional[str], result: ResolvedLink) -> ResolvedLink:
        metrics.link_resolutions.labels(state=result.state.value).inc()

        if context.is_gated and result.access is not AccessPath.OWNER:
            self.audit_logger.log_access_decision(
                visitor_wallet,
                context.page.slug,
                context.link.id,
                result.state.value,
                balance=result.balance,
                required=result.required_amount,
            )

        if result.state is ResolutionState.GRANTED and result.access is not AccessPath.OWNER:
            self._track_click(context)

        return result

    def _track_click(self, context: GateContext) -> None:
        if self.click_tracker is None:
            return
        try:
            self.click_tracker.record_click(context.page.slug, context.link.id, context.link.token_gated)
        except Exception as e:
            logger.warning(f"Click tracking failed for {context.page.slug}/{context.link.id}: {e}")
