"""Top-up deep links consumed by the frontend.

Links have the form ``<origin>/deeplink?chain=..&amount=..&address=..``.
When a signing secret is configured an HMAC-SHA256 ``sig`` parameter is
appended over the canonical query string.
"""

from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal, InvalidOperation
from urllib.parse import parse_qsl, quote, urlencode, urlsplit

DEEPLINK_PATH = "/deeplink"
PARAM_ORDER = ("chain", "amount", "address")
SIGNATURE_PARAM = "sig"


class DeepLinkError(ValueError):
    """Raised when a deep link cannot be parsed or verified."""


def format_amount(amount: Decimal) -> str:
    """Render an amount in plain decimal notation without trailing zeros."""
    return format(amount.normalize(), "f")


class DeepLinkBuilder:
    """Builds and parses top-up deep links for one frontend origin."""

    def __init__(self, origin: str, *, signing_secret: str | None = None) -> None:
        """Initialize the builder.

        Args:
            origin: Frontend origin, e.g. ``https://app.example``.
            signing_secret: Optional HMAC key for the ``sig`` parameter.
        """
        self.origin = origin.rstrip("/")
        self._secret = signing_secret.encode() if signing_secret else None

    @property
    def is_signed(self) -> bool:
        """Return True if built links carry a signature."""
        return self._secret is not None

    def _query(self, chain: str, amount: Decimal, address: str) -> str:
        return urlencode(
            [("chain", str(chain)), ("amount", format_amount(amount)), ("address", address)],
            quote_via=quote,
            safe="",
        )

    def _sign(self, query: str) -> str:
        return hmac.new(self._secret or b"", query.encode(), hashlib.sha256).hexdigest()

    def build(self, chain: str, suggested_amount: Decimal, address: str) -> str:
        """Build the deep link for a top-up.

        Args:
            chain: Chain alias.
            suggested_amount: Suggested top-up amount.
            address: Wallet to top up.

        Returns:
            Absolute URL.
        """
        query = self._query(chain, suggested_amount, address)
        if self._secret is not None:
            query = f"{query}&{SIGNATURE_PARAM}={self._sign(query)}"
        return f"{self.origin}{DEEPLINK_PATH}?{query}"

    def parse(self, url: str) -> tuple[str, Decimal, str]:
        """Decode a deep link back into ``(chain, amount, address)``.

        Raises:
            DeepLinkError: If the link is not a deep link or lacks parameters.
        """
        parts = urlsplit(url)
        if parts.path != DEEPLINK_PATH:
            raise DeepLinkError(f"Not a deep link path: {parts.path}")
        params = dict(parse_qsl(parts.query, keep_blank_values=True))
        missing = [name for name in PARAM_ORDER if name not in params]
        if missing:
            raise DeepLinkError(f"Deep link missing parameters: {', '.join(missing)}")
        try:
            amount = Decimal(params["amount"])
        except InvalidOperation:
            raise DeepLinkError(f"Invalid amount: {params['amount']!r}") from None
        return params["chain"], amount, params["address"]

    def verify(self, url: str) -> bool:
        """Check the ``sig`` parameter of a signed deep link."""
        if self._secret is None:
            return False
        query = urlsplit(url).query
        body, sep, signature = query.rpartition(f"&{SIGNATURE_PARAM}=")
        if not sep:
            return False
        return hmac.compare_digest(signature, self._sign(body))
