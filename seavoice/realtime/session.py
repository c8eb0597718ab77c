"""
Session Negotiation Module

Performs the one-time HTTP exchange with the session backend:
- Optional liveness probe (GET /health) to fail fast when the server is down
- Session creation (POST /session) returning a short-lived stream token

The negotiator never retries. Retry policy belongs to the caller, which
surfaces failures to the user and re-runs negotiation on an explicit retry.

The HTTP calls are blocking (requests); async callers run them through
asyncio.to_thread.
"""

import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, Field, ValidationError, field_validator

from seavoice.logger import get_logger

from .errors import BackendUnavailable, NegotiationFailed

logger = get_logger(__name__)


# Pydantic models shared with the development server
class SessionCreateRequest(BaseModel):
    auth_token: Optional[str] = None
    user_location: Optional[str] = None
    coordinates: Optional[List[Tuple[float, float]]] = Field(default=None, min_length=1)
    conversation_id: Optional[str] = None
    preload_weather: bool = True

    @field_validator("coordinates")
    @classmethod
    def check_coordinates(cls, value):
        if value is None:
            return value
        for lat, lon in value:
            if not -90.0 <= lat <= 90.0:
                raise ValueError(f"latitude out of range: {lat}")
            if not -180.0 <= lon <= 180.0:
                raise ValueError(f"longitude out of range: {lon}")
        return value


class SessionCreateResponse(BaseModel):
    token: str = Field(min_length=1)
    conversation_id: str = Field(min_length=1)
    expires_in: int = Field(ge=0)
    websocket_url: str


@dataclass(frozen=True)
class Session:
    """
    One authenticated realtime connection attempt.

    Attributes:
        token: Opaque single-use stream credential
        conversation_id: Stable across reconnects, used to resume context
        expires_at: Unix timestamp after which the token is invalid
        stream_url: Websocket endpoint carrying the token as query credential
    """
    token: str
    conversation_id: str
    expires_at: float
    stream_url: str

    @property
    def seconds_remaining(self) -> float:
        return max(0.0, self.expires_at - time.time())

    @property
    def is_expired(self) -> bool:
        return time.time() >= self.expires_at


class SessionNegotiator:
    """
    HTTP client for the session backend.

    Usage:
        negotiator = SessionNegotiator("https://api.example.com")
        negotiator.check_health()
        session = negotiator.negotiate(user_location="Miami, FL")
    """

    def __init__(
        self,
        base_url: str,
        health_timeout_s: float = 5.0,
        session_timeout_s: float = 10.0,
        http: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.health_timeout_s = health_timeout_s
        self.session_timeout_s = session_timeout_s
        self._http = http or requests.Session()

        self.last_conversation_id: Optional[str] = None

    def check_health(self) -> None:
        """
        Probe the backend liveness endpoint.

        Raises:
            BackendUnavailable: If the server is unreachable or unhealthy
        """
        url = f"{self.base_url}/health"
        try:
            response = self._http.get(url, timeout=self.health_timeout_s)
        except requests.RequestException as e:
            logger.error(f"Backend health check failed: {e}")
            raise BackendUnavailable(str(e)) from e

        if response.status_code != 200:
            logger.error(f"Backend health check returned {response.status_code}")
            raise BackendUnavailable(f"Health check returned {response.status_code}")

        logger.debug("Backend is healthy")

    def negotiate(
        self,
        auth_token: Optional[str] = None,
        user_location: Optional[str] = None,
        coordinates: Optional[Sequence[Sequence[float]]] = None,
        conversation_id: Optional[str] = None,
        preload_weather: bool = True,
    ) -> Session:
        """
        Create a realtime session.

        Args:
            auth_token: User token forwarded for external APIs (None = anonymous)
            user_location: Human-readable location name
            coordinates: Non-empty list of [lat, lon] pairs
            conversation_id: Prior conversation to resume
            preload_weather: Ask the backend to preload weather context

        Returns:
            Session with a fresh token and derived stream URL

        Raises:
            NegotiationFailed: On invalid input, network failure, non-200
                status or a malformed response
        """
        try:
            request = SessionCreateRequest(
                auth_token=auth_token,
                user_location=user_location,
                coordinates=[tuple(pair) for pair in coordinates] if coordinates is not None else None,
                conversation_id=conversation_id,
                preload_weather=preload_weather,
            )
        except (ValidationError, TypeError) as e:
            raise NegotiationFailed(None, str(e)) from e

        url = f"{self.base_url}/session"
        try:
            response = self._http.post(
                url,
                json=request.model_dump(exclude_none=True),
                timeout=self.session_timeout_s,
            )
        except requests.RequestException as e:
            logger.error(f"Session creation error: {e}")
            raise NegotiationFailed(None, str(e)) from e

        if response.status_code != 200:
            logger.error(f"Session creation rejected: {response.status_code}")
            raise NegotiationFailed(response.status_code, response.text)

        try:
            body = SessionCreateResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Invalid session response: {e}")
            raise NegotiationFailed(response.status_code, response.text) from e

        self.last_conversation_id = body.conversation_id
        logger.info(f"Session created: {body.conversation_id} (expires in {body.expires_in}s)")

        return Session(
            token=body.token,
            conversation_id=body.conversation_id,
            expires_at=time.time() + body.expires_in,
            stream_url=self.stream_url_for(body.token),
        )

    def stream_url_for(self, token: str) -> str:
        """Derive the websocket URL from the base address and a token."""
        url = self.base_url
        if url.startswith("https://"):
            url = "wss://" + url[len("https://"):]
        elif url.startswith("http://"):
            url = "ws://" + url[len("http://"):]
        return f"{url}/ws?{urlencode({'token': token})}"

    def close(self) -> None:
        self._http.close()
