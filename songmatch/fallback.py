"""
Client for an external recognition service (ACRCloud-compatible identify API).

Used only when local matching is inconclusive. Requests are signed with
HMAC-SHA1 over the request description and sent as multipart form data.
The response is decoded into typed models whose fields are all optional,
so "no external track ID" is an explicit None rather than a failed cast.

Credentials come from the environment (see FallbackConfig):
    SONGMATCH_FALLBACK_HOST, SONGMATCH_FALLBACK_ACCESS_KEY,
    SONGMATCH_FALLBACK_ACCESS_SECRET
"""

import base64
import hashlib
import hmac
import os
import time
from typing import List, Optional

import requests
from pydantic import BaseModel, ValidationError

from songmatch.config import FallbackConfig
from songmatch.errors import FallbackServiceError
from songmatch.logging_config import setup_logger

logger = setup_logger(__name__)


# ---------- RESPONSE MODELS ----------
class ExternalTrack(BaseModel):
    id: Optional[str] = None


class SpotifyMetadata(BaseModel):
    track: Optional[ExternalTrack] = None


class ExternalMetadata(BaseModel):
    spotify: Optional[SpotifyMetadata] = None


class MusicEntry(BaseModel):
    title: Optional[str] = None
    score: Optional[float] = None
    external_metadata: Optional[ExternalMetadata] = None


class ResponseMetadata(BaseModel):
    music: Optional[List[MusicEntry]] = None


class ResponseStatus(BaseModel):
    code: Optional[int] = None
    msg: Optional[str] = None


class FallbackResponse(BaseModel):
    status: Optional[ResponseStatus] = None
    metadata: Optional[ResponseMetadata] = None

    @property
    def external_track_id(self) -> Optional[str]:
        """ID of the first recognized track, or None if any level is absent."""
        if self.metadata is None or not self.metadata.music:
            return None
        external = self.metadata.music[0].external_metadata
        if external is None or external.spotify is None:
            return None
        track = external.spotify.track
        if track is None or not track.id:
            return None
        return track.id


def parse_fallback_response(payload) -> FallbackResponse:
    """
    Decode a service response (dict, JSON string or bytes).

    Raises:
        FallbackServiceError: the payload is not JSON or has the wrong shape
    """
    try:
        if isinstance(payload, (str, bytes, bytearray)):
            return FallbackResponse.model_validate_json(payload)
        return FallbackResponse.model_validate(payload)
    except ValidationError as e:
        raise FallbackServiceError(f"Malformed fallback response: {e}") from e


def extract_external_track_id(payload) -> Optional[str]:
    return parse_fallback_response(payload).external_track_id


def external_track_url(track_id):
    return f"https://open.spotify.com/track/{track_id}"


class FallbackClient:
    """Signed multipart client for the external identify endpoint."""

    def __init__(self, host, access_key, access_secret, timeout=None, session=None):
        self.host = host
        self.access_key = access_key
        self.access_secret = access_secret
        self.timeout = timeout or FallbackConfig.TIMEOUT
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls):
        """Build a client from FallbackConfig, or None if not configured."""
        if not (
            FallbackConfig.HOST
            and FallbackConfig.ACCESS_KEY
            and FallbackConfig.ACCESS_SECRET
        ):
            return None
        return cls(
            FallbackConfig.HOST, FallbackConfig.ACCESS_KEY, FallbackConfig.ACCESS_SECRET
        )

    @property
    def url(self):
        host = self.host if self.host.startswith("http") else f"https://{self.host}"
        return host.rstrip("/") + FallbackConfig.ENDPOINT

    def sign(self, timestamp):
        string_to_sign = "\n".join(
            [
                "POST",
                FallbackConfig.ENDPOINT,
                self.access_key,
                FallbackConfig.DATA_TYPE,
                FallbackConfig.SIGNATURE_VERSION,
                str(timestamp),
            ]
        )
        digest = hmac.new(
            self.access_secret.encode("utf-8"),
            string_to_sign.encode("utf-8"),
            hashlib.sha1,
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def identify(self, audio_path) -> FallbackResponse:
        """
        Send an audio sample file to the service.

        Raises:
            FallbackServiceError: unreachable service, HTTP error or bad payload
        """
        timestamp = str(int(time.time()))
        fields = {
            "access_key": self.access_key,
            "sample_bytes": str(os.path.getsize(audio_path)),
            "timestamp": timestamp,
            "signature": self.sign(timestamp),
            "data_type": FallbackConfig.DATA_TYPE,
            "signature_version": FallbackConfig.SIGNATURE_VERSION,
        }

        try:
            with open(audio_path, "rb") as f:
                files = {"sample": (os.path.basename(audio_path), f)}
                response = self.session.post(
                    self.url, data=fields, files=files, timeout=self.timeout
                )
        except requests.RequestException as e:
            raise FallbackServiceError(f"Fallback service unreachable: {e}") from e

        if response.status_code != 200:
            raise FallbackServiceError(
                f"Fallback service error {response.status_code}: {response.text[:200]}"
            )

        return parse_fallback_response(response.content)

    def identify_track_id(self, audio_path) -> Optional[str]:
        result = self.identify(audio_path)
        track_id = result.external_track_id
        if track_id is None:
            logger.info(f"Fallback service found no external track for {audio_path}")
        return track_id
