"""
Mapping of HTTP outcomes onto the core's upstream error types.

Every HTTP client in the core routes its responses and requests exceptions
through here, so rate-limit reporting and error classification stay in one
place.
"""

from typing import Optional

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

from .exceptions import AuthenticationRequired, RateLimited, UpstreamError, UpstreamTimeout
from .rate_limiter import ServiceRateLimitManager

DEFAULT_RETRY_AFTER_SECONDS = 60


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds; HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def raise_for_response(response: requests.Response, service: str,
                       rate_limits: Optional[ServiceRateLimitManager] = None) -> None:
    """
    Report the response status and raise the matching error for non-2xx.

    Raises:
        RateLimited: on 429, with retry_after from the Retry-After header
        AuthenticationRequired: on 401
        UpstreamError: on any other non-2xx status
    """
    status_code = response.status_code

    if status_code == 429:
        retry_after = parse_retry_after(response.headers.get('retry-after')) or DEFAULT_RETRY_AFTER_SECONDS
        if rate_limits is not None:
            rate_limits.report_response(service, 429, retry_after)
        raise RateLimited(f"Rate limited by {service}", service=service, retry_after=retry_after)

    if rate_limits is not None:
        rate_limits.report_response(service, status_code)

    if 200 <= status_code < 300:
        return

    if status_code == 401:
        raise AuthenticationRequired(f"{service} rejected the access token", service=service,
                                     status_code=status_code)

    raise UpstreamError(f"HTTP error {status_code} from {service}", service=service,
                        status_code=status_code)


def classify_request_exception(error: Exception, service: str,
                               rate_limits: Optional[ServiceRateLimitManager] = None) -> UpstreamError:
    """Convert a requests exception into an UpstreamError, reporting it to the rate limiter."""
    if isinstance(error, UpstreamError):
        return error

    if isinstance(error, Timeout):
        if rate_limits is not None:
            rate_limits.report_response(service, 408)
        return UpstreamTimeout(f"{service} request timed out: {error}", service=service)

    if isinstance(error, ConnectionError):
        if rate_limits is not None:
            rate_limits.report_response(service, 503)
        return UpstreamError(f"Connection error talking to {service}: {error}", service=service)

    if isinstance(error, RequestException):
        if rate_limits is not None:
            rate_limits.report_response(service, 500)
        return UpstreamError(f"Request error talking to {service}: {error}", service=service)

    return UpstreamError(f"Unexpected error talking to {service}: {error}", service=service)
