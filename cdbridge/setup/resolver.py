"""
Installation mapping resolver: setup handshake and per-request credentials.
"""
import secrets
from datetime import timedelta
from typing import List, Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from ..config import Settings
from ..errors import EventValidationError, SetupIntentExpired, SetupIntentNotFound
from ..logger import get_logger
from ..storage.database import DatabaseManager
from ..storage.models import InstallationMapping, SetupIntent, utcnow, valid_installation_id
from ..webhook.models import GitProvider
from .models import ResolvedCredentials, SetupRequest


logger = get_logger("setup")

STATE_BYTES = 16


def append_state(url: str, state: str) -> str:
    """Add (or replace) the state query parameter on a URL."""
    parts = urlsplit(url.strip())
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "state"]
    query.append(("state", state))
    return urlunsplit(parts._replace(query=urlencode(query)))


class InstallationResolver:
    """Binds installation ids to tenant credentials through a one-time setup intent."""

    def __init__(self, db: DatabaseManager, settings: Settings):
        """
        Initialize resolver.

        Args:
            db: Installation store
            settings: Process-wide defaults (never mutated)
        """
        self.db = db
        self.settings = settings

    @property
    def intent_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.setup_intent_ttl_minutes)

    def default_credentials(self, installation_id: Optional[int] = None) -> ResolvedCredentials:
        return ResolvedCredentials(
            endpoint=self.settings.ddash_endpoint.strip(),
            auth_token=self.settings.ddash_auth_token.strip(),
            webhook_secret=self.settings.ddash_webhook_secret.strip(),
            default_environment=self.settings.default_environment.strip(),
            installation_id=installation_id,
        )

    async def start_setup(self, request: SetupRequest) -> Tuple[SetupIntent, str]:
        """
        Create a setup intent and the URL the operator should be sent to.

        Args:
            request: Tenant credentials and the provider to bind once the installation completes

        Returns:
            Tuple of (stored intent, redirect URL carrying the state token)

        Raises:
            EventValidationError: If endpoint, token or secret is missing
        """
        endpoint = request.endpoint.strip()
        auth_token = request.auth_token.strip()
        webhook_secret = request.webhook_secret.strip()
        if not endpoint or not auth_token or not webhook_secret:
            raise EventValidationError("endpoint, auth_token, webhook_secret are required")

        intent = SetupIntent(
            state=secrets.token_hex(STATE_BYTES),
            provider=request.provider.value,
            organization_id=request.organization_id,
            organization_label=request.organization_label.strip(),
            endpoint=endpoint,
            auth_token=auth_token,
            webhook_secret=webhook_secret,
            default_environment=request.default_environment.strip() or self.settings.default_environment.strip(),
            expires_at=utcnow() + self.intent_ttl,
        )
        intent = await self.db.create_setup_intent(intent)

        # The install URL is the GitHub App install page; GitLab projects come back through the callback
        install_url = self.settings.install_url.strip()
        if install_url and request.provider == GitProvider.GITHUB:
            redirect_url = append_state(install_url, intent.state)
        else:
            redirect_url = f"{self.settings.setup_callback_path}?{urlencode({'state': intent.state})}"

        logger.info(f"{request.provider.value} setup intent created for organization {intent.organization_id or '-'}")
        return intent, redirect_url

    async def complete_setup(self, state: str, installation_id: Optional[int]) -> InstallationMapping:
        """
        Promote the setup intent for state into an enabled mapping.

        The mapping is stored under the provider the intent was started for.

        Raises:
            EventValidationError: If state is missing or installation_id is out of range
            SetupIntentNotFound: If the state is unknown or already used
            SetupIntentExpired: If the intent expired
        """
        state = (state or "").strip()
        if not state or installation_id is None:
            raise EventValidationError("missing state or installation_id")
        if not valid_installation_id(installation_id):
            raise EventValidationError("invalid installation_id")

        try:
            mapping = await self.db.promote_setup_intent(state, installation_id)
        except SetupIntentNotFound:
            logger.info(f"Setup callback for unknown state (installation {installation_id})")
            raise
        except SetupIntentExpired:
            logger.info(f"Setup callback for expired state (installation {installation_id})")
            raise

        logger.info(
            f"{mapping.provider} installation {installation_id} mapped to "
            f"organization {mapping.organization_id or '-'}"
        )
        return mapping

    async def resolve(self, provider: GitProvider, installation_id: Optional[int]) -> ResolvedCredentials:
        """
        Credentials for one inbound webhook.

        Only mappings stored for the sending provider apply. Enabled mappings
        override the defaults; missing or disabled mappings fall back to them.
        Store errors propagate.
        """
        credentials = self.default_credentials(installation_id)
        if not valid_installation_id(installation_id):
            return credentials

        mapping = await self.db.get_mapping(installation_id, provider.value)
        if mapping is None or not mapping.enabled:
            return credentials

        return credentials.model_copy(update={
            "endpoint": mapping.endpoint.strip(),
            "auth_token": mapping.auth_token.strip(),
            "webhook_secret": mapping.webhook_secret.strip(),
            "default_environment": mapping.default_environment.strip() or credentials.default_environment,
            "from_mapping": True,
        })

    async def revoke(
        self,
        provider: GitProvider,
        installation_id: int,
        organization_id: Optional[int] = None,
    ):
        """
        Delete a mapping, optionally only within one organization.

        Raises:
            MappingNotFound: If nothing matched
        """
        await self.db.delete_mapping(installation_id, organization_id, provider.value)
        logger.info(f"{provider.value} installation {installation_id} mapping revoked")

    async def list_mappings(
        self,
        organization_id: Optional[int] = None,
        provider: Optional[GitProvider] = None,
    ) -> List[InstallationMapping]:
        return await self.db.list_mappings(organization_id, provider.value if provider else None)
