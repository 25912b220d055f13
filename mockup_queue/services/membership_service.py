"""Membership service client: authenticates callers and reports their tier."""

from dataclasses import dataclass
import httpx
from mockup_queue.core.config import Settings
from mockup_queue.core.exceptions import MembershipError
from mockup_queue.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Member:
    user_id: str
    tier: str


class MembershipService:
    """Resolve a bearer token to a user id and subscription tier."""

    def __init__(self, settings: Settings):
        """Initialize membership client."""
        self.settings = settings
        self.base_url = settings.membership_api_url.rstrip("/")
        self.timeout = settings.membership_timeout

    async def authenticate(self, token: str) -> Member:
        """Authenticate a caller.

        In development without a configured membership URL the token itself
        is used as the user id.

        Args:
            token: Bearer token from the request

        Returns:
            Authenticated member

        Raises:
            MembershipError: If the token is missing or rejected
        """
        if not token:
            raise MembershipError("Missing bearer token")

        if not self.base_url:
            if not self.settings.is_development:
                raise MembershipError("Membership service is not configured")
            logger.debug("Using development identity", user_id=token)
            return Member(user_id=token, tier=self.settings.membership_dev_tier)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/me",
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise MembershipError("Invalid or expired token") from e
            logger.error(
                "Membership service error",
                status_code=e.response.status_code,
                error=str(e)
            )
            raise MembershipError("Membership service unavailable") from e
        except httpx.HTTPError as e:
            logger.error("Membership service unreachable", error=str(e))
            raise MembershipError("Membership service unavailable") from e

        user_id = data.get("user_id")
        tier = data.get("tier")
        if not user_id or not tier:
            raise MembershipError("Membership response missing user or tier")
        return Member(user_id=str(user_id), tier=str(tier))
