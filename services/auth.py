"""Service orchestrating login, refresh, logout and registration."""

import logfire

from functools import lru_cache

from fastapi import Request

from models.helpers import TokenType
from models.users import Credential
from schema.security import TokenClaims, TokenPair
from security.helpers import get_password_hash, validate_password_strength, verify_password
from security.refresh_token import RefreshTokenRevocationList
from security.tokens import TokenService
from security.transport import SessionTransport
from services.bridge import BlockingBridge
from services.credentials import CredentialStore
from utils.exceptions import (
    AuthenticationError,
    InvalidCredentials,
    NotAuthenticated,
    TokenRevoked,
)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return get_password_hash("dummy-password-0")


def _verify_unknown_account(password: str) -> bool:
    # Same hashing cost as checking a known account
    return verify_password(password, _dummy_hash())


class AuthService:
    """Glue between the token service, the credential store and the bridge."""

    def __init__(
        self,
        tokens: TokenService,
        store: CredentialStore,
        bridge: BlockingBridge,
        transport: SessionTransport,
        revocations: RefreshTokenRevocationList | None = None,
    ):
        self.tokens = tokens
        self.store = store
        self.bridge = bridge
        self.transport = transport
        self.revocations = revocations

    async def register(self, email: str, name: str, password: str) -> Credential:
        """Create a credential.

        Raises:
            WeakPassword: The password fails the strength rules.
            CredentialConflict: The email is already registered.
        """
        validate_password_strength(password)

        with logfire.span("Registering new credential"):
            password_hash = await self.bridge.run(get_password_hash, password)
            credential = Credential(email=email, name=name, password_hash=password_hash)
            created = await self.bridge.run(self.store.create, credential)
            logfire.info("Registered credential {subject}", subject=created.subject)
            return created

    async def authenticate(self, email: str, password: str) -> Credential:
        """Check an email/password pair against the store.

        Raises:
            InvalidCredentials: Unknown email, wrong password or inactive account.
        """
        credential = await self.bridge.run(self.store.get_by_email, email)

        if credential is None:
            await self.bridge.run(_verify_unknown_account, password)
            raise InvalidCredentials()

        if not await self.bridge.run(verify_password, password, credential.password_hash):
            raise InvalidCredentials()

        if not credential.is_active:
            raise InvalidCredentials()

        return credential

    async def login(self, email: str, password: str) -> TokenPair:
        credential = await self.authenticate(email, password)
        pair = self.tokens.issue(credential.subject)
        logfire.info("Subject {subject} logged in", subject=credential.subject)
        return pair

    async def refresh(self, refresh_token: str | None) -> TokenPair:
        """Rotate a refresh token into a new pair.

        Raises:
            NotAuthenticated: No refresh token was presented.
            TokenExpired, TokenMalformed, TokenTypeMismatch: The token failed validation.
            TokenRevoked: The revocation list is enabled and the token was already spent.
            InvalidCredentials: The subject no longer exists or is inactive.
        """
        if not refresh_token:
            raise NotAuthenticated("Refresh token required")

        claims = self.tokens.validate(refresh_token, TokenType.REFRESH)
        await self._require_active(claims.subject)
        if self.revocations is not None:
            await self._spend(claims)

        pair = self.tokens.rotate(refresh_token)
        logfire.info("Tokens refreshed for subject {subject}", subject=claims.subject)
        return pair

    async def logout(self, refresh_token: str | None) -> None:
        """Spend the presented refresh token when the revocation list is enabled."""
        if self.revocations is None or not refresh_token:
            return
        try:
            claims = self.tokens.validate(refresh_token, TokenType.REFRESH)
        except AuthenticationError:
            # Expired or unusable tokens cannot be replayed anyway
            return
        await self.bridge.run(self.revocations.claim, claims.jti, self._remaining(claims))
        logfire.info("Subject {subject} logged out", subject=claims.subject)

    async def authenticate_access_token(self, token: str | None) -> Credential:
        if not token:
            raise NotAuthenticated()
        claims = self.tokens.validate(token, TokenType.ACCESS)
        return await self._require_active(claims.subject)

    async def update_name(self, credential: Credential, name: str) -> Credential:
        return await self.bridge.run(self.store.update_name, credential.subject, name)

    async def check_ready(self) -> None:
        await self.bridge.run(self.store.ping)
        if self.revocations is not None:
            await self.bridge.run(self.revocations.ping)

    async def _spend(self, claims: TokenClaims) -> None:
        claimed = await self.bridge.run(self.revocations.claim, claims.jti, self._remaining(claims))
        if not claimed:
            logfire.warning(
                "Refresh token replay detected for subject {subject}", subject=claims.subject
            )
            raise TokenRevoked()

    async def _require_active(self, subject: str) -> Credential:
        credential = await self.bridge.run(self.store.get_by_subject, subject)
        if credential is None or not credential.is_active:
            raise InvalidCredentials("Account is not active")
        return credential

    def _remaining(self, claims: TokenClaims) -> int:
        return int(claims.expires_at - self.tokens.clock())


def get_auth_service(request: Request) -> AuthService:
    """Dependency returning the application's AuthService instance."""
    return request.app.state.auth_service
