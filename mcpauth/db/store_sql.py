"""SQLAlchemy-backed implementation of the auth store."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mcpauth.core.settings import DatabaseSettings
from mcpauth.crypto.hashing import hash_token
from mcpauth.db.base import BaseEntity
from mcpauth.db.engine import build_engine
from mcpauth.db.models_oauth import (
    AccessTokenEntity,
    AuthorizationCodeEntity,
    OAuthClientEntity,
    PendingAuthRequestEntity,
    RefreshTokenEntity,
)
from mcpauth.db.models_session import AuthSessionEntity, SessionTokenIndexEntity
from mcpauth.db.models_user import UserEntity, UserLoginIndexEntity
from mcpauth.db.store import (
    AuthRequestNotFoundError,
    AuthStore,
    ClientNotFoundError,
    SessionNotFoundError,
    StorageError,
    TokenNotFoundError,
    UserNotFoundError,
)
from mcpauth.oauth.types import (
    AccessToken,
    AuthorizationCode,
    AuthSession,
    PendingAuthorizationRequest,
    RefreshToken,
    RegisteredClient,
    User,
)


def _login_key(login: str) -> str:
    """Upstream logins are case-insensitive."""
    return login.lower()


class SqlAuthStore(AuthStore):
    """Auth store over an async SQLAlchemy engine.

    Every public method is one transaction.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._factory() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            raise StorageError(f"storage operation failed: {exc}") from exc

    async def initialize(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(BaseEntity.metadata.create_all)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to create tables: {exc}") from exc

    async def close(self) -> None:
        await self._engine.dispose()

    # Authorization codes

    async def store_auth_code(self, code: AuthorizationCode) -> None:
        async with self._transaction() as session:
            await session.merge(
                AuthorizationCodeEntity(
                    code_hash=hash_token(code.code),
                    client_id=code.client_id,
                    redirect_uri=code.redirect_uri,
                    scope=code.scope,
                    code_challenge=code.code_challenge,
                    code_challenge_method=code.code_challenge_method,
                    resource=code.resource,
                    user_id=code.user_id,
                    expires_at=code.expires_at,
                    created_at=code.created_at,
                )
            )

    async def get_auth_code(self, code: str) -> AuthorizationCode:
        async with self._transaction() as session:
            entity = await session.get(AuthorizationCodeEntity, hash_token(code))
            if entity is None:
                raise TokenNotFoundError("authorization code not found")
            return AuthorizationCode(
                code=code,
                client_id=entity.client_id,
                redirect_uri=entity.redirect_uri,
                scope=entity.scope,
                code_challenge=entity.code_challenge,
                code_challenge_method=entity.code_challenge_method,
                resource=entity.resource,
                user_id=entity.user_id,
                expires_at=entity.expires_at,
                created_at=entity.created_at,
            )

    async def delete_auth_code(self, code: str) -> None:
        async with self._transaction() as session:
            await session.execute(
                delete(AuthorizationCodeEntity).where(
                    AuthorizationCodeEntity.code_hash == hash_token(code)
                )
            )

    # Access tokens

    async def store_access_token(self, token: AccessToken) -> None:
        async with self._transaction() as session:
            await session.merge(
                AccessTokenEntity(
                    token_hash=hash_token(token.token),
                    token_type=token.token_type,
                    client_id=token.client_id,
                    user_id=token.user_id,
                    scope=token.scope,
                    resource=token.resource,
                    expires_at=token.expires_at,
                    created_at=token.created_at,
                )
            )

    async def get_access_token(self, token: str) -> AccessToken:
        async with self._transaction() as session:
            entity = await session.get(AccessTokenEntity, hash_token(token))
            if entity is None:
                raise TokenNotFoundError("access token not found")
            return AccessToken(
                token=token,
                token_type=entity.token_type,
                client_id=entity.client_id,
                user_id=entity.user_id,
                scope=entity.scope,
                resource=entity.resource,
                expires_at=entity.expires_at,
                created_at=entity.created_at,
            )

    async def delete_access_token(self, token: str) -> None:
        async with self._transaction() as session:
            await session.execute(
                delete(AccessTokenEntity).where(
                    AccessTokenEntity.token_hash == hash_token(token)
                )
            )

    # Refresh tokens

    async def store_refresh_token(self, token: RefreshToken) -> None:
        async with self._transaction() as session:
            await session.merge(
                RefreshTokenEntity(
                    token_hash=hash_token(token.token),
                    client_id=token.client_id,
                    user_id=token.user_id,
                    scope=token.scope,
                    resource=token.resource,
                    expires_at=token.expires_at,
                    created_at=token.created_at,
                )
            )

    async def get_refresh_token(self, token: str) -> RefreshToken:
        async with self._transaction() as session:
            entity = await session.get(RefreshTokenEntity, hash_token(token))
            if entity is None:
                raise TokenNotFoundError("refresh token not found")
            return RefreshToken(
                token=token,
                client_id=entity.client_id,
                user_id=entity.user_id,
                scope=entity.scope,
                resource=entity.resource,
                expires_at=entity.expires_at,
                created_at=entity.created_at,
            )

    async def delete_refresh_token(self, token: str) -> None:
        async with self._transaction() as session:
            await session.execute(
                delete(RefreshTokenEntity).where(
                    RefreshTokenEntity.token_hash == hash_token(token)
                )
            )

    # Clients

    async def store_client(self, client: RegisteredClient) -> None:
        async with self._transaction() as session:
            await session.merge(OAuthClientEntity(**client.model_dump()))

    async def get_client(self, client_id: str) -> RegisteredClient:
        async with self._transaction() as session:
            entity = await session.get(OAuthClientEntity, client_id)
            if entity is None:
                raise ClientNotFoundError(f"client {client_id!r} not found")
            return RegisteredClient.model_validate(entity)

    async def delete_client(self, client_id: str) -> None:
        async with self._transaction() as session:
            await session.execute(
                delete(OAuthClientEntity).where(
                    OAuthClientEntity.client_id == client_id
                )
            )

    async def list_clients(self) -> list[RegisteredClient]:
        async with self._transaction() as session:
            stmt = select(OAuthClientEntity).order_by(OAuthClientEntity.created_at)
            result = await session.execute(stmt)
            return [RegisteredClient.model_validate(e) for e in result.scalars()]

    # Users

    async def store_user(self, user: User) -> None:
        async with self._transaction() as session:
            existing = await session.get(UserEntity, user.id)
            if existing is None:
                session.add(UserEntity(**user.model_dump()))
            else:
                existing.github_login = user.github_login
                existing.github_id = user.github_id
                existing.email = user.email
                existing.name = user.name
                existing.avatar_url = user.avatar_url
            await session.merge(
                UserLoginIndexEntity(
                    github_login=_login_key(user.github_login),
                    user_id=user.id,
                )
            )

    async def get_user(self, user_id: str) -> User:
        async with self._transaction() as session:
            entity = await session.get(UserEntity, user_id)
            if entity is None:
                raise UserNotFoundError(f"user {user_id!r} not found")
            return User.model_validate(entity)

    async def get_user_by_github_login(self, login: str) -> User:
        async with self._transaction() as session:
            index = await session.get(UserLoginIndexEntity, _login_key(login))
            if index is None:
                raise UserNotFoundError(f"no user for login {login!r}")
            entity = await session.get(UserEntity, index.user_id)
            if entity is None:
                raise UserNotFoundError(f"no user for login {login!r}")
            return User.model_validate(entity)

    async def get_or_create_user(self, user: User) -> User:
        try:
            return await self._get_or_create_user(user)
        except StorageError as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
        # another transaction indexed the login first; its row wins
        return await self._get_or_create_user(user)

    async def _get_or_create_user(self, user: User) -> User:
        key = _login_key(user.github_login)
        async with self._transaction() as session:
            index = await session.get(UserLoginIndexEntity, key)
            entity = await session.get(UserEntity, index.user_id) if index else None
            if entity is None:
                entity = UserEntity(**user.model_dump())
                session.add(entity)
                if index is None:
                    session.add(
                        UserLoginIndexEntity(github_login=key, user_id=user.id)
                    )
                else:
                    index.user_id = user.id
            else:
                entity.github_login = user.github_login
                entity.email = user.email
                entity.name = user.name
                entity.avatar_url = user.avatar_url
            await session.flush()
            return User.model_validate(entity)

    # Sessions

    async def store_session(self, auth_session: AuthSession) -> None:
        async with self._transaction() as session:
            await session.merge(AuthSessionEntity(**auth_session.model_dump()))
            await session.merge(
                SessionTokenIndexEntity(
                    access_token_hash=auth_session.access_token_hash,
                    session_id=auth_session.session_id,
                )
            )

    async def get_session(self, session_id: str) -> AuthSession:
        async with self._transaction() as session:
            entity = await session.get(AuthSessionEntity, session_id)
            if entity is None:
                raise SessionNotFoundError(f"session {session_id!r} not found")
            return AuthSession.model_validate(entity)

    async def get_session_by_access_token(self, token: str) -> AuthSession:
        async with self._transaction() as session:
            index = await session.get(SessionTokenIndexEntity, hash_token(token))
            if index is None:
                raise SessionNotFoundError("no session for access token")
            entity = await session.get(AuthSessionEntity, index.session_id)
            if entity is None:
                raise SessionNotFoundError("no session for access token")
            return AuthSession.model_validate(entity)

    async def update_session_last_used(
        self, session_id: str, last_used: datetime
    ) -> None:
        async with self._transaction() as session:
            entity = await session.get(AuthSessionEntity, session_id)
            if entity is None:
                raise SessionNotFoundError(f"session {session_id!r} not found")
            entity.last_used_at = last_used

    async def delete_session(self, session_id: str) -> None:
        async with self._transaction() as session:
            entity = await session.get(AuthSessionEntity, session_id)
            if entity is None:
                return
            await session.execute(
                delete(SessionTokenIndexEntity).where(
                    SessionTokenIndexEntity.access_token_hash
                    == entity.access_token_hash,
                    SessionTokenIndexEntity.session_id == session_id,
                )
            )
            await session.delete(entity)

    # Pending authorization requests

    async def store_auth_request(self, request: PendingAuthorizationRequest) -> None:
        async with self._transaction() as session:
            await session.merge(PendingAuthRequestEntity(**request.model_dump()))

    async def get_auth_request(self, request_id: str) -> PendingAuthorizationRequest:
        async with self._transaction() as session:
            entity = await session.get(PendingAuthRequestEntity, request_id)
            if entity is None:
                raise AuthRequestNotFoundError(
                    f"authorization request {request_id!r} not found"
                )
            return PendingAuthorizationRequest.model_validate(entity)

    async def delete_auth_request(self, request_id: str) -> None:
        async with self._transaction() as session:
            await session.execute(
                delete(PendingAuthRequestEntity).where(
                    PendingAuthRequestEntity.id == request_id
                )
            )


def create_store(db: DatabaseSettings | None = None) -> SqlAuthStore:
    """Build a store for the configured database."""
    return SqlAuthStore(build_engine(db or DatabaseSettings()))
