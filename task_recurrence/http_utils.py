import logging
import time
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)


def _is_client_error(exc: requests.RequestException) -> bool:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status is not None and 400 <= status < 500


def request_with_retry(
    method: str,
    url: str,
    *,
    timeout: float,
    retries: int = 3,
    backoff_factor: float = 0.5,
    session: Optional[requests.Session] = None,
    **kwargs: Any,
) -> requests.Response:
    """Perform an HTTP request, retrying failures with exponential backoff.

    Connection errors, timeouts and 5xx responses are retried up to
    ``retries`` attempts in total. A 4xx response is raised immediately since
    repeating the same request cannot succeed.
    """
    sess = session or requests
    for attempt in range(1, retries + 1):
        try:
            response = sess.request(method, url, timeout=timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.RequestException as exc:
            if attempt == retries or _is_client_error(exc):
                raise
            delay = backoff_factor * 2 ** (attempt - 1)
            logger.warning(
                "%s %s failed (attempt %d/%d), retrying in %.1fs: %s",
                method,
                url,
                attempt,
                retries,
                delay,
                exc,
            )
            time.sleep(delay)
    raise RuntimeError("unreachable")
