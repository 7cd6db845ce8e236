"""Managed-identity bearer tokens with expiry-aware caching."""

import logging
import threading
import time
from collections.abc import Callable

from azure.core.credentials import AccessToken, TokenCredential
from azure.identity import DefaultAzureCredential, ManagedIdentityCredential

from .constants import COGNITIVE_SERVICES_SCOPE, TOKEN_REFRESH_MARGIN_SECONDS
from .settings import ProviderConfig

logger = logging.getLogger(__name__)


class ManagedIdentityTokenProvider:
    """Fetch bearer tokens just in time and reuse them until shortly before expiry.

    Instances are callable so they can be handed to ``AzureOpenAI`` as
    ``azure_ad_token_provider``. Tokens are never written back into a
    ProviderConfig.
    """

    def __init__(
        self,
        credential: TokenCredential,
        scope: str = COGNITIVE_SERVICES_SCOPE,
        *,
        refresh_margin: float = TOKEN_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credential = credential
        self._scope = scope
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._cached: AccessToken | None = None
        self._lock = threading.Lock()

    def _is_fresh(self, token: AccessToken | None) -> bool:
        return token is not None and token.expires_on - self._refresh_margin > self._clock()

    def get_token(self) -> str:
        cached = self._cached
        if self._is_fresh(cached):
            return cached.token  # type: ignore[union-attr]
        with self._lock:
            if not self._is_fresh(self._cached):
                self._cached = self._credential.get_token(self._scope)
                logger.info(
                    "Managed identity token acquired",
                    extra={"scope": self._scope, "expires_on": self._cached.expires_on},
                )
            return self._cached.token  # type: ignore[union-attr]

    def __call__(self) -> str:
        return self.get_token()


def build_token_provider(config: ProviderConfig) -> ManagedIdentityTokenProvider:
    client_id = config.extra.get("managed_identity_client_id")
    credential: TokenCredential
    if client_id:
        credential = ManagedIdentityCredential(client_id=client_id)
    else:
        credential = DefaultAzureCredential()
    return ManagedIdentityTokenProvider(credential)
