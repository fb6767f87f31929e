"""Storage interface for OAuth state, users, and sessions.

Implementations own their secondary indices (user by upstream login,
session by access token); callers only ever see primary records.
Absence is reported with a ``NotFoundError`` subclass, never ``None``;
infrastructure failures surface as ``StorageError``.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from mcpauth.oauth.types import (
    AccessToken,
    AuthorizationCode,
    AuthSession,
    PendingAuthorizationRequest,
    RefreshToken,
    RegisteredClient,
    User,
)


class StoreError(Exception):
    """Base class for store failures."""


class NotFoundError(StoreError):
    """The requested record does not exist."""


class TokenNotFoundError(NotFoundError):
    """No such authorization code, access token, or refresh token."""


class ClientNotFoundError(NotFoundError):
    """No such registered client."""


class UserNotFoundError(NotFoundError):
    """No such user."""


class SessionNotFoundError(NotFoundError):
    """No such session."""


class AuthRequestNotFoundError(NotFoundError):
    """No such pending authorization request."""


class StorageError(StoreError):
    """The backing store failed (I/O, driver, or serialization error)."""


class AuthStore(ABC):
    """Durable collections for the authorization server."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create collections and indices if missing."""

    @abstractmethod
    async def close(self) -> None:
        """Release underlying resources."""

    # Authorization codes
    @abstractmethod
    async def store_auth_code(self, code: AuthorizationCode) -> None: ...

    @abstractmethod
    async def get_auth_code(self, code: str) -> AuthorizationCode: ...

    @abstractmethod
    async def delete_auth_code(self, code: str) -> None: ...

    # Access tokens
    @abstractmethod
    async def store_access_token(self, token: AccessToken) -> None: ...

    @abstractmethod
    async def get_access_token(self, token: str) -> AccessToken: ...

    @abstractmethod
    async def delete_access_token(self, token: str) -> None: ...

    # Refresh tokens
    @abstractmethod
    async def store_refresh_token(self, token: RefreshToken) -> None: ...

    @abstractmethod
    async def get_refresh_token(self, token: str) -> RefreshToken: ...

    @abstractmethod
    async def delete_refresh_token(self, token: str) -> None: ...

    # Clients
    @abstractmethod
    async def store_client(self, client: RegisteredClient) -> None: ...

    @abstractmethod
    async def get_client(self, client_id: str) -> RegisteredClient: ...

    @abstractmethod
    async def delete_client(self, client_id: str) -> None: ...

    @abstractmethod
    async def list_clients(self) -> list[RegisteredClient]: ...

    # Users
    @abstractmethod
    async def store_user(self, user: User) -> None:
        """Write the user and its login index entry atomically."""

    @abstractmethod
    async def get_user(self, user_id: str) -> User: ...

    @abstractmethod
    async def get_user_by_github_login(self, login: str) -> User: ...

    @abstractmethod
    async def get_or_create_user(self, user: User) -> User:
        """Resolve ``user.github_login`` through the login index in one transaction.

        A known login keeps its stored id and github_id and takes the
        profile fields of ``user``. An unknown login is stored as ``user``.
        Returns the stored record.
        """

    # Sessions
    @abstractmethod
    async def store_session(self, session: AuthSession) -> None:
        """Write the session and its access-token index entry atomically."""

    @abstractmethod
    async def get_session(self, session_id: str) -> AuthSession: ...

    @abstractmethod
    async def get_session_by_access_token(self, token: str) -> AuthSession: ...

    @abstractmethod
    async def update_session_last_used(
        self, session_id: str, last_used: datetime
    ) -> None: ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> None: ...

    # Pending authorization requests
    @abstractmethod
    async def store_auth_request(self, request: PendingAuthorizationRequest) -> None: ...

    @abstractmethod
    async def get_auth_request(self, request_id: str) -> PendingAuthorizationRequest: ...

    @abstractmethod
    async def delete_auth_request(self, request_id: str) -> None: ...
