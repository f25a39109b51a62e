from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class UserProfile:
    id: str | None = None
    name: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    picture_url: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id or "unknown"

    @classmethod
    def from_userinfo(cls, payload: dict) -> "UserProfile":
        """Map an OIDC-style userinfo document onto a profile."""
        user_id = payload.get("id") or payload.get("sub")
        return cls(
            id=str(user_id) if user_id is not None else None,
            name=payload.get("name"),
            email=payload.get("email"),
            first_name=payload.get("given_name"),
            last_name=payload.get("family_name"),
            picture_url=payload.get("picture"),
        )

    @classmethod
    def from_payload(cls, payload: dict) -> "UserProfile":
        return cls(
            id=payload.get("id"),
            name=payload.get("name"),
            email=payload.get("email"),
            first_name=payload.get("firstName"),
            last_name=payload.get("lastName"),
            picture_url=payload.get("picture"),
        )

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "picture": self.picture_url,
        }


class AuthPhase(str, enum.Enum):
    SIGNED_OUT = "signed-out"
    AUTHENTICATING = "authenticating"
    SIGNED_IN = "signed-in"


@dataclass
class AuthState:
    is_authenticated: bool = False
    session_token: str | None = None
    refresh_token: str | None = None
    user: UserProfile | None = None
    is_authenticating: bool = False
    pending_csrf_state: str | None = None

    @property
    def phase(self) -> AuthPhase:
        if self.is_authenticating:
            return AuthPhase.AUTHENTICATING
        if self.is_authenticated and self.session_token:
            return AuthPhase.SIGNED_IN
        return AuthPhase.SIGNED_OUT

    def reset(self) -> None:
        self.is_authenticated = False
        self.session_token = None
        self.refresh_token = None
        self.user = None
        self.is_authenticating = False
        self.pending_csrf_state = None


@dataclass
class PersistedCredential:
    session_token: str
    refresh_token: str | None = None
    user: UserProfile | None = None
    is_authenticated: bool = True
    saved_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_payload(cls, payload: dict) -> "PersistedCredential":
        session_token = payload.get("sessionToken")
        if not isinstance(session_token, str) or not session_token:
            raise ValueError("Credential record missing sessionToken.")
        user = payload.get("user")
        return cls(
            session_token=session_token,
            refresh_token=payload.get("refreshToken"),
            user=UserProfile.from_payload(user) if isinstance(user, dict) else None,
            is_authenticated=bool(payload.get("isAuthenticated", False)),
            saved_at=str(payload.get("savedAt", "")),
        )

    def to_payload(self) -> dict:
        return {
            "sessionToken": self.session_token,
            "refreshToken": self.refresh_token,
            "user": self.user.to_payload() if self.user else None,
            "isAuthenticated": self.is_authenticated,
            "savedAt": self.saved_at,
        }


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")

        if not isinstance(access_token, str) or not access_token:
            raise ValueError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("Token response refresh_token must be a string.")

        return cls(access_token=access_token, refresh_token=refresh_token or None)


@dataclass
class UsageInfo:
    requests_remaining: int | None
    total_requests: int | None

    @classmethod
    def from_payload(cls, payload: dict) -> "UsageInfo":
        return cls(
            requests_remaining=payload.get("requests_remaining"),
            total_requests=payload.get("monthly_api_calls"),
        )

    def to_payload(self) -> dict:
        return {
            "requests_remaining": self.requests_remaining,
            "total_requests": self.total_requests,
        }


# What the callback server hands to the session: exactly one of these per flow.


@dataclass(frozen=True)
class CallbackCode:
    code: str
    state: str | None


@dataclass(frozen=True)
class CallbackProviderError:
    error: str
    description: str | None = None


@dataclass(frozen=True)
class CallbackMalformed:
    pass


CallbackResult = CallbackCode | CallbackProviderError | CallbackMalformed
