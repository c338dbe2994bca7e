"""
auth/service.py -- AuthService: the use cases behind every auth endpoint.

AuthService composes the leaf components and is the only place where a
component error becomes a client-facing error:

  InvalidToken / TokenExpired / InvalidSignature
      -> Unauthorized  (access and refresh tokens)
      -> NotFound      (single-use tokens: verify-email, reset-password)
  StoreUnavailable / SigningError / MailDeliveryError -> InternalError
  sqlalchemy IntegrityError on insert                 -> Conflict

It owns no state. The store, token components and mailer are handed in by
the caller (API lifespan, CLI, tests), so there is no module-level session
handle to initialise or tear down.

Credential failures on login all produce the same generic Unauthorized so a
client cannot tell an unknown username from a wrong password. The dummy
bcrypt verification on unknown usernames keeps the timing equal too.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    BadRequest,
    Conflict,
    InternalError,
    InvalidHashError,
    NotFound,
    SigningError,
    StoreUnavailable,
    TokenError,
    Unauthorized,
)
from auth.models import PURPOSE_RESET_PASSWORD, PURPOSE_VERIFY_EMAIL, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.refresh import RefreshTokenLedger
from auth.single_use import SingleUseTokenManager
from auth.store import UserStore
from auth.tokens import AccessTokenIssuer
from core.config import Settings
from core.mailer import Mailer, MailDeliveryError

logger = logging.getLogger("authkeeper.auth")

_BAD_CREDENTIALS = "Invalid username or password."
_BAD_REFRESH = "Invalid or expired refresh token."
_BAD_SINGLE_USE = "Invalid token"


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    expires_in: int


def normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def _internal_on_failure(action: str) -> Iterator[None]:
    """Map infrastructure failures inside the block to InternalError."""
    try:
        yield
    except StoreUnavailable as exc:
        raise InternalError(f"Error {action}", detail="store_unavailable") from exc
    except SigningError as exc:
        raise InternalError(f"Error {action}", detail="signing_failed") from exc


class AuthService:
    """Login, refresh, logout, registration, email verification and password recovery."""

    def __init__(
        self,
        store: UserStore,
        access_tokens: AccessTokenIssuer,
        refresh_tokens: RefreshTokenLedger,
        single_use_tokens: SingleUseTokenManager,
        mailer: Mailer,
        base_url: str = "http://localhost:3000",
    ) -> None:
        self.store = store
        self.access_tokens = access_tokens
        self.refresh_tokens = refresh_tokens
        self.single_use_tokens = single_use_tokens
        self.mailer = mailer
        self.base_url = base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> LoginResult:
        """Check credentials, then issue an access token and a refresh token.

        A store error while looking the user up, an unknown username, a wrong
        password and a corrupted stored hash all end as the same Unauthorized.
        Only a failure to issue the tokens themselves is an InternalError.
        """
        try:
            user = self.store.get_by_username(username)
        except StoreUnavailable:
            logger.error("Login lookup failed for %r; rejecting as bad credentials", username)
            user = None

        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt.
            verify_password(password, DUMMY_HASH)
            raise Unauthorized(_BAD_CREDENTIALS)
        try:
            if not verify_password(password, user.hashed_password):
                raise Unauthorized(_BAD_CREDENTIALS)
        except InvalidHashError:
            logger.error("Stored password hash for user %s is malformed", user.id)
            raise Unauthorized(_BAD_CREDENTIALS) from None

        with _internal_on_failure("generating token"):
            access_token = self.access_tokens.issue(user.id)
            refresh_token = self.refresh_tokens.issue(user.id)
        logger.info("User %s logged in", user.id)
        return LoginResult(access_token, refresh_token, self.access_tokens.expires_in)

    def refresh(self, refresh_token: str) -> RefreshResult:
        """Exchange a refresh token for a new access token. The refresh token is not rotated."""
        try:
            with _internal_on_failure("validating refresh token"):
                user_id = self.refresh_tokens.validate(refresh_token)
        except TokenError as exc:
            raise Unauthorized(_BAD_REFRESH) from exc
        with _internal_on_failure("generating token"):
            access_token = self.access_tokens.issue(user_id)
        return RefreshResult(access_token, self.access_tokens.expires_in)

    def logout(self, refresh_token: str) -> None:
        """Revoke the refresh token. Unknown tokens are accepted silently."""
        with _internal_on_failure("revoking token"):
            self.refresh_tokens.revoke(refresh_token)

    def current_user(self, access_token: str) -> User:
        """Resolve a bearer access token to its user."""
        try:
            user_id = self.access_tokens.validate(access_token)
        except TokenError as exc:
            raise Unauthorized("Authentication required.") from exc
        with _internal_on_failure("retrieving user"):
            user = self.store.get_by_id(user_id)
        if user is None:
            raise Unauthorized("Authentication required.")
        return user

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str) -> User:
        """Create an unverified user and mail the verification link.

        The username/email lookups give a specific conflict message; the
        UNIQUE constraints catch the race where two registrations pass the
        lookups at the same time.
        """
        email = normalize_email(email)
        with _internal_on_failure("checking username"):
            if self.store.get_by_username(username) is not None:
                raise Conflict("Username already exists")
        with _internal_on_failure("checking email"):
            if self.store.get_by_email(email) is not None:
                raise Conflict("Email already exists")

        hashed = self._hash(password)
        user = User(username=username, email=email, hashed_password=hashed)
        try:
            with _internal_on_failure("registering user"):
                user.id = self.store.create_user(user)
        except IntegrityError as exc:
            raise Conflict("Username or email already exists") from exc

        with _internal_on_failure("issuing verification token"):
            token = self.single_use_tokens.issue(user.id, PURPOSE_VERIFY_EMAIL)
        logger.info("Registered user %s", user.id)

        try:
            self.mailer.send_verification_email(email, f"{self.base_url}/verify/{token}")
        except MailDeliveryError:
            # The account exists; the user can ask for a new link.
            logger.warning("Verification email for user %s was not delivered", user.id)

        with _internal_on_failure("retrieving user"):
            created = self.store.get_by_id(user.id)
        return created or user

    def verify_email(self, token: str) -> None:
        """Consume a verify_email token and mark the owner's email as verified."""
        user_id = self._consume(token, PURPOSE_VERIFY_EMAIL)
        with _internal_on_failure("updating user verification status"):
            consumed = self.store.mark_email_verified(user_id, token)
        if not consumed:
            raise NotFound(_BAD_SINGLE_USE)
        logger.info("Verified email for user %s", user_id)

    def resend_verification(self, email: str) -> None:
        """Issue a fresh verification link, replacing any outstanding one."""
        user = self._user_by_email(email)
        if user.email_verified:
            raise Conflict("Email already verified")
        with _internal_on_failure("issuing verification token"):
            token = self.single_use_tokens.issue(user.id, PURPOSE_VERIFY_EMAIL)
        try:
            self.mailer.send_verification_email(user.email, f"{self.base_url}/verify/{token}")
        except MailDeliveryError as exc:
            raise InternalError("Error sending email") from exc

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    def recover_password(self, email: str) -> None:
        """Mail a password reset link. Unknown emails are reported as NotFound."""
        user = self._user_by_email(email)
        with _internal_on_failure("storing reset token"):
            token = self.single_use_tokens.issue(user.id, PURPOSE_RESET_PASSWORD)
        try:
            self.mailer.send_password_reset_email(user.email, f"{self.base_url}/reset/{token}")
        except MailDeliveryError as exc:
            raise InternalError("Error sending email") from exc
        logger.info("Password recovery requested for user %s", user.id)

    def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset_password token, store the new hash, end existing sessions."""
        user_id = self._consume(token, PURPOSE_RESET_PASSWORD)
        hashed = self._hash(new_password)
        with _internal_on_failure("updating password"):
            if not self.store.reset_password(user_id, token, hashed):
                raise NotFound(_BAD_SINGLE_USE)
        logger.info("Password reset for user %s", user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _consume(self, token: str, purpose: str) -> str:
        try:
            with _internal_on_failure("retrieving user"):
                return self.single_use_tokens.consume(token, purpose)
        except TokenError as exc:
            raise NotFound(_BAD_SINGLE_USE) from exc

    def _user_by_email(self, email: str) -> User:
        with _internal_on_failure("retrieving user"):
            user = self.store.get_by_email(normalize_email(email))
        if user is None:
            raise NotFound("Email not found")
        return user

    @staticmethod
    def _hash(password: str) -> str:
        try:
            return hash_password(password)
        except ValueError as exc:
            raise BadRequest(str(exc)) from exc


def build_service(settings: Settings, store: UserStore, mailer: Mailer | None = None) -> AuthService:
    """Wire an AuthService from Settings around an already-open store."""
    return AuthService(
        store=store,
        access_tokens=AccessTokenIssuer(
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
            lifetime=timedelta(seconds=settings.access_token_expire_seconds),
        ),
        refresh_tokens=RefreshTokenLedger(store, lifetime=timedelta(seconds=settings.refresh_token_expire_seconds)),
        single_use_tokens=SingleUseTokenManager(
            store, lifetime=timedelta(seconds=settings.single_use_token_expire_seconds)
        ),
        mailer=mailer or Mailer.from_settings(settings),
        base_url=settings.base_url,
    )
