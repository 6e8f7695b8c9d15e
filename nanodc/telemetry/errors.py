"""
Error taxonomy of the telemetry pipeline.

Authentication and fetch failures are raised as exceptions carrying a
``kind``; callers decide whether to retry from the kind alone. Mapping
ambiguity is not an error: the mapper records it and keeps going.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"


class FetchErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    EMPTY_BODY = "empty_body"
    MALFORMED_BODY = "malformed_body"


class TelemetryError(Exception):
    """Base class for failures talking to the NanoDC data API."""

    retryable = True


class AuthError(TelemetryError):
    """Login against the data API failed."""

    def __init__(self, kind: AuthErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(f"Authentication failed ({kind.value}): {detail}")

    @property
    def retryable(self) -> bool:
        # The same credentials will be rejected again
        return self.kind is not AuthErrorKind.INVALID_CREDENTIALS


class FetchError(TelemetryError):
    """Retrieving a snapshot failed after the GET and the POST fallback."""

    def __init__(self, kind: FetchErrorKind, detail: str = "", status_code: Optional[int] = None):
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        label = f"{kind.value} {status_code}" if status_code is not None else kind.value
        super().__init__(f"Snapshot fetch failed ({label}): {detail}")

    @property
    def is_auth_rejection(self) -> bool:
        return self.status_code in (401, 403)


@dataclass(frozen=True)
class MappingAmbiguity:
    """More than one node matched a slot; the first one in snapshot order won."""

    facility_id: str
    ordinal: int
    chosen_node_id: str
    candidate_node_ids: Tuple[str, ...]
