from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
import json
import logging
import threading
from urllib import error, parse, request

from app.core.config import CounselorProfile, Settings

logger = logging.getLogger(__name__)

_EXPIRY_MARGIN = timedelta(seconds=60)


class CredentialError(Exception):
    pass


@dataclass
class AccessToken:
    value: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at - _EXPIRY_MARGIN


class CounselorCredentialProvider:
    """Hands out a Google access token per counselor and refreshes it on demand.

    Tokens start from the configured ``access_token`` (if any) and are renewed
    through the OAuth refresh-token grant when missing, expired, or
    invalidated after a 401.
    """

    def __init__(
        self,
        *,
        profiles: Mapping[str, CounselorProfile],
        client_id: str = "",
        client_secret: str = "",
        oauth_token_url: str = "https://oauth2.googleapis.com/token",
        timeout_seconds: float = 10.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.profiles = dict(profiles)
        self.client_id = client_id
        self.client_secret = client_secret
        self.oauth_token_url = oauth_token_url
        self.timeout_seconds = timeout_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tokens: dict[str, AccessToken] = {}
        self._refresh_tokens: dict[str, str] = {}
        self._lock = threading.Lock()
        for counselor_id, profile in self.profiles.items():
            if profile.access_token.strip():
                self._tokens[counselor_id] = AccessToken(value=profile.access_token.strip())
            if profile.refresh_token.strip():
                self._refresh_tokens[counselor_id] = profile.refresh_token.strip()

    def get_access_token(self, counselor_id: str) -> str:
        if counselor_id not in self.profiles:
            raise CredentialError(f"No credentials configured for counselor {counselor_id!r}.")
        with self._lock:
            token = self._tokens.get(counselor_id)
            if token and not token.is_expired(self._clock()):
                return token.value
            token = self._refresh(counselor_id)
            self._tokens[counselor_id] = token
            return token.value

    def invalidate(self, counselor_id: str) -> None:
        with self._lock:
            self._tokens.pop(counselor_id, None)

    def can_refresh(self, counselor_id: str) -> bool:
        return bool(
            self._refresh_tokens.get(counselor_id, "").strip()
            and self.client_id.strip()
            and self.client_secret.strip()
        )

    def _refresh(self, counselor_id: str) -> AccessToken:
        if not self.can_refresh(counselor_id):
            raise CredentialError(
                f"Google Calendar refresh token flow is not configured for counselor {counselor_id!r}.",
            )
        body = parse.urlencode(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self._refresh_tokens[counselor_id],
                "grant_type": "refresh_token",
            },
        ).encode("utf-8")
        req = request.Request(
            self.oauth_token_url,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise CredentialError("Google OAuth refresh request timed out.") from exc
        except error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            raise CredentialError(
                f"Google OAuth refresh HTTP {exc.code}: {body_text or 'empty response body'}",
            ) from exc
        except error.URLError as exc:
            raise CredentialError(
                f"Google OAuth refresh connection error: {exc.reason}",
            ) from exc

        try:
            payload = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise CredentialError("Google OAuth refresh returned invalid JSON.") from exc

        if not isinstance(payload, dict):
            raise CredentialError("Google OAuth refresh response is not a JSON object.")
        new_access_token = payload.get("access_token")
        if not isinstance(new_access_token, str) or not new_access_token.strip():
            raise CredentialError("Google OAuth refresh did not include access_token.")
        rotated_refresh_token = payload.get("refresh_token")
        if isinstance(rotated_refresh_token, str) and rotated_refresh_token.strip():
            self._refresh_tokens[counselor_id] = rotated_refresh_token.strip()

        expires_at = None
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            expires_at = self._clock() + timedelta(seconds=expires_in)
        logger.info("Refreshed Google access token counselor=%s", counselor_id)
        return AccessToken(value=new_access_token.strip(), expires_at=expires_at)


def create_credential_provider(settings: Settings) -> CounselorCredentialProvider:
    return _create_credential_provider_cached(
        profiles_json=json.dumps(
            {key: profile.model_dump() for key, profile in settings.counselor_directory.items()},
            sort_keys=True,
        ),
        client_id=settings.google_calendar_client_id,
        client_secret=settings.google_calendar_client_secret,
        oauth_token_url=settings.google_calendar_oauth_token_url,
        timeout_seconds=settings.google_calendar_api_timeout_seconds,
    )


@lru_cache
def _create_credential_provider_cached(
    *,
    profiles_json: str,
    client_id: str,
    client_secret: str,
    oauth_token_url: str,
    timeout_seconds: float,
) -> CounselorCredentialProvider:
    profiles = {
        counselor_id: CounselorProfile.model_validate(raw_profile)
        for counselor_id, raw_profile in json.loads(profiles_json).items()
    }
    return CounselorCredentialProvider(
        profiles=profiles,
        client_id=client_id,
        client_secret=client_secret,
        oauth_token_url=oauth_token_url,
        timeout_seconds=timeout_seconds,
    )


def clear_credential_provider_cache() -> None:
    _create_credential_provider_cached.cache_clear()
