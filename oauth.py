"""
OAuth access-token verification.

Each supported platform exposes a "who am I" endpoint. A token is valid when
that endpoint answers 2xx and the body carries a user id; the id is returned
as an opaque string. Verification never raises: every failure comes back as
`VerificationResult(valid=False, error=...)`.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import requests
from pydantic import BaseModel

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 10.0  # seconds


class Platform(str, Enum):
    DISCORD = "discord"
    YOUTUBE = "youtube"
    SPOTIFY = "spotify"
    TWITCH = "twitch"
    TWITTER = "twitter"


class VerificationResult(BaseModel):
    valid: bool
    user_id: Optional[str] = None
    username: Optional[str] = None
    error: Optional[str] = None


# ============================================================
# Response shape helpers
# ============================================================

def _dig(data: Any, *path) -> Any:
    """Walk dict keys / list indexes, returning None on any miss."""
    cur = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or len(cur) <= key:
                return None
        elif not isinstance(cur, dict):
            return None
        cur = cur[key] if isinstance(key, int) else cur.get(key)
        if cur is None:
            return None
    return cur


@dataclass(frozen=True)
class PlatformSpec:
    url: str
    user_id: Callable[[Any], Any]
    username: Callable[[Any], Any]
    aux_header: Optional[str] = None

    @property
    def requires_client_id(self) -> bool:
        return self.aux_header is not None

    def headers(self, token: str, client_id: Optional[str] = None) -> Dict[str, str]:
        h = {"Authorization": f"Bearer {token}"}
        if self.aux_header and client_id:
            h[self.aux_header] = client_id
        return h


PLATFORMS: Dict[Platform, PlatformSpec] = {
    # { id: "123456789", username: "user" }
    Platform.DISCORD: PlatformSpec(
        url="https://discord.com/api/users/@me",
        user_id=lambda d: _dig(d, "id"),
        username=lambda d: _dig(d, "username"),
    ),
    # { items: [{ id: "UCxxxxx", snippet: { title: "Channel Name" } }] }
    Platform.YOUTUBE: PlatformSpec(
        url="https://www.googleapis.com/youtube/v3/channels?part=snippet&mine=true",
        user_id=lambda d: _dig(d, "items", 0, "id"),
        username=lambda d: _dig(d, "items", 0, "snippet", "title"),
    ),
    # { id: "user123", display_name: "User Name" }
    Platform.SPOTIFY: PlatformSpec(
        url="https://api.spotify.com/v1/me",
        user_id=lambda d: _dig(d, "id"),
        username=lambda d: _dig(d, "display_name"),
    ),
    # { data: [{ id: "123456", login: "username" }] }
    Platform.TWITCH: PlatformSpec(
        url="https://api.twitch.tv/helix/users",
        user_id=lambda d: _dig(d, "data", 0, "id"),
        username=lambda d: _dig(d, "data", 0, "login"),
        aux_header="Client-Id",
    ),
    # { data: { id: "123456789", username: "user" } }
    Platform.TWITTER: PlatformSpec(
        url="https://api.twitter.com/2/users/me",
        user_id=lambda d: _dig(d, "data", "id"),
        username=lambda d: _dig(d, "data", "username"),
    ),
}


def parse_platform(value) -> Platform:
    """Platform from its name; raises ValueError for anything unsupported."""
    if isinstance(value, Platform):
        return value
    try:
        return Platform(str(value).strip().lower())
    except ValueError:
        raise ValueError(
            f"Unsupported platform {value!r}; expected one of {[p.value for p in Platform]}"
        ) from None


def _fetch_profile(url: str, headers: Dict[str, str]) -> requests.Response:
    return requests.get(url, headers=headers, timeout=HTTP_TIMEOUT)


# ============================================================
# Public API
# ============================================================

async def verify_token(
    platform, token: str, *, client_id: Optional[str] = None
) -> VerificationResult:
    try:
        p = parse_platform(platform)
    except ValueError as e:
        return VerificationResult(valid=False, error=str(e))

    if not token or not token.strip():
        return VerificationResult(valid=False, error="Missing OAuth token")

    spec = PLATFORMS[p]
    if spec.requires_client_id and not client_id:
        return VerificationResult(valid=False, error=f"{p.value} client id required")

    try:
        r = await asyncio.to_thread(_fetch_profile, spec.url, spec.headers(token, client_id))
    except requests.RequestException as e:
        logger.warning("[oauth] %s: request failed: %s", p.value, e)
        return VerificationResult(valid=False, error=str(e) or type(e).__name__)

    if not r.ok:
        return VerificationResult(valid=False, error=f"API returned {r.status_code}")

    try:
        data = r.json()
    except ValueError:
        return VerificationResult(valid=False, error="API returned invalid JSON")

    user_id = spec.user_id(data)
    if user_id is None or str(user_id) == "":
        return VerificationResult(valid=False, error="could not extract id")

    username = spec.username(data)
    return VerificationResult(
        valid=True,
        user_id=str(user_id),
        username=str(username) if username is not None else None,
    )


async def verify_tokens(
    tokens: Mapping[str, str],
    *,
    client_id: Optional[str] = None,
    verifier: Optional[Callable[..., Awaitable[VerificationResult]]] = None,
) -> Dict[str, VerificationResult]:
    """Verify several platform tokens concurrently, keyed by platform name."""
    verify = verifier or verify_token
    names = list(tokens)
    results = await asyncio.gather(
        *(verify(name, tokens[name], client_id=client_id) for name in names)
    )
    return dict(zip(names, results))
