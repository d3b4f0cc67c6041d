"""
Client for the downstream user-profile service.

Registration creates the credential row locally and then asks the user
service to create the matching profile. Calls are authenticated with a
short-lived service token.
"""
import logging
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class UserServiceError(Exception):
    """Raised when the user service cannot create a profile."""
    pass


class UserServiceClient:
    """Thin httpx client for ``POST /internal/users``."""

    def __init__(self, base_url: str, service_token_factory: Callable[[], str], timeout: float = 5.0,
                 client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.service_token_factory = service_token_factory
        self.client = client or httpx.Client(timeout=timeout)

    # PUBLIC_INTERFACE
    def create_profile(self, auth_user_id: int, username: Optional[str]) -> Dict[str, Any]:
        """
        Create the profile that belongs to a newly registered user.

        Args:
            auth_user_id: ID of the user row in this service.
            username: Display name submitted at registration.

        Returns:
            The decoded JSON response (empty if the service returned no body).

        Raises:
            UserServiceError: On transport errors or non-2xx responses.
        """
        try:
            response = self.client.post(
                f"{self.base_url}/internal/users",
                json={"authUserId": auth_user_id, "username": username},
                headers={"X-Service-Token": self.service_token_factory()},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"User service call failed for user {auth_user_id}: {str(e)}")
            raise UserServiceError(f"User service unavailable: {str(e)}") from e
        return response.json() if response.content else {}

    def close(self) -> None:
        self.client.close()
