"""
HTTP session helpers for outbound gateway calls
"""

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


def build_session(retries: int = 2, backoff_factor: float = 0.5) -> requests.Session:
    """
    Build a requests session that retries idempotent GETs on transient failures.

    POSTs are never retried here: repeating an STK push prompts the payer twice.
    """
    session = requests.Session()

    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
        raise_on_status=False
    )
    adapter = HTTPAdapter(max_retries=retry)

    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"Accept": "application/json"})
    return session
