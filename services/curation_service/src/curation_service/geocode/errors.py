from __future__ import annotations

import enum

from multas_core.errors import MultasError


class GeocodingErrorKind(str, enum.Enum):
    rate_limit = "rate_limit"
    quota_exceeded = "quota_exceeded"
    timeout = "timeout"
    not_found = "not_found"
    invalid_request = "invalid_request"
    network = "network"
    low_precision = "low_precision"
    unknown = "unknown"


class GeocodingError(MultasError):
    def __init__(self, kind: GeocodingErrorKind, message: str, *, status_code: int | None = None) -> None:
        self.kind = kind
        self.status_code = status_code
        super().__init__(f"{kind.value}: {message}")


_HTTP_KINDS = {
    400: GeocodingErrorKind.invalid_request,
    403: GeocodingErrorKind.quota_exceeded,
    404: GeocodingErrorKind.not_found,
    429: GeocodingErrorKind.rate_limit,
    502: GeocodingErrorKind.network,
    503: GeocodingErrorKind.network,
    504: GeocodingErrorKind.network,
}

# Status field of a geocoder JSON response that came back with HTTP 200.
_API_STATUS_KINDS = {
    "ZERO_RESULTS": GeocodingErrorKind.not_found,
    "OVER_QUERY_LIMIT": GeocodingErrorKind.quota_exceeded,
    "OVER_DAILY_LIMIT": GeocodingErrorKind.quota_exceeded,
    "REQUEST_DENIED": GeocodingErrorKind.invalid_request,
    "INVALID_REQUEST": GeocodingErrorKind.invalid_request,
}


def classify_http_error(status_code: int) -> GeocodingErrorKind:
    return _HTTP_KINDS.get(status_code, GeocodingErrorKind.unknown)


def classify_api_status(status: str) -> GeocodingErrorKind:
    return _API_STATUS_KINDS.get(status, GeocodingErrorKind.unknown)
