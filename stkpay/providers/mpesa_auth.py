"""
Daraja OAuth token provider

    GET /oauth/v1/generate?grant_type=client_credentials   (Basic auth)

Some Daraja deployments reject the token request unless it carries an
explicit ``Content-Type: application/json`` header. Rather than always sending
the workaround, the provider walks an ordered list of request strategies,
canonical first, and logs which one produced the token.
"""

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

import requests

from stkpay.errors import ConfigurationError, UpstreamUnavailable
from stkpay.utils.http import build_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenRequestStrategy:
    name: str
    headers: Dict[str, str] = field(default_factory=dict)


DEFAULT_STRATEGIES: Tuple[TokenRequestStrategy, ...] = (
    TokenRequestStrategy('canonical'),
    TokenRequestStrategy('json_content_type', {'Content-Type': 'application/json'}),
)


class DarajaTokenProvider:
    """Client-credential exchange against the Daraja OAuth endpoint."""

    TOKEN_PATH = '/oauth/v1/generate'

    # Tokens live for 3600s; stop using one this many seconds before expiry
    EXPIRY_MARGIN = 60

    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10,
        strategies: Sequence[TokenRequestStrategy] = DEFAULT_STRATEGIES,
    ):
        if not consumer_key or not consumer_secret:
            raise ConfigurationError(
                "M-Pesa consumer key and consumer secret must be configured"
            )
        if not strategies:
            raise ConfigurationError("At least one token request strategy is required")

        self.base_url = base_url.rstrip('/')
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.session = session or build_session()
        self.timeout = timeout
        self.strategies = tuple(strategies)

        self.last_strategy: Optional[str] = None
        self._access_token: Optional[str] = None
        self._token_expiry: float = 0.0

    @property
    def token_url(self) -> str:
        return f"{self.base_url}{self.TOKEN_PATH}?grant_type=client_credentials"

    def basic_auth_header(self) -> str:
        raw = f"{self.consumer_key}:{self.consumer_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("utf-8")

    def get_access_token(self) -> str:
        """
        Return a bearer token, reusing the one already held by this instance
        while it is still valid.

        Raises:
            UpstreamUnavailable: every strategy failed
        """
        if self._access_token and time.time() < self._token_expiry:
            return self._access_token

        failures = []
        for strategy in self.strategies:
            try:
                data = self._request_token(strategy)
            except UpstreamUnavailable as exc:
                logger.warning(
                    "M-Pesa token request with strategy '%s' failed: %s",
                    strategy.name, exc.message
                )
                failures.append(f"{strategy.name}: {exc.message}")
                continue

            expires_in = data["expires_in"]
            self._access_token = data["access_token"]
            self._token_expiry = time.time() + max(expires_in - self.EXPIRY_MARGIN, 0)
            self.last_strategy = strategy.name

            logger.info(
                "M-Pesa access token obtained using strategy '%s' (expires in %ds)",
                strategy.name, expires_in
            )
            return self._access_token

        raise UpstreamUnavailable(
            "Failed to obtain M-Pesa access token - " + "; ".join(failures)
        )

    def _request_token(self, strategy: TokenRequestStrategy) -> Dict[str, Any]:
        headers = {"Authorization": self.basic_auth_header(), **strategy.headers}

        try:
            resp = self.session.get(self.token_url, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise UpstreamUnavailable(f"token request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"network error - {exc}") from exc

        if not resp.ok:
            raise UpstreamUnavailable(f"HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamUnavailable("token response was not JSON") from exc

        if not isinstance(data, dict):
            raise UpstreamUnavailable("token response was not a JSON object")
        if not data.get("access_token"):
            raise UpstreamUnavailable("token response did not contain an access_token")

        try:
            expires_in = int(data.get("expires_in", 3600))
        except (TypeError, ValueError) as exc:
            raise UpstreamUnavailable(f"token response has a bad expires_in: {data.get('expires_in')!r}") from exc

        return {"access_token": data["access_token"], "expires_in": expires_in}
