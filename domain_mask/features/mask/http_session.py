"""
HTTP session for origin requests (connection pooling, no retries).
"""

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


def create_upstream_session() -> requests.Session:
    """Create a requests session tuned for masked origin traffic."""
    session = requests.Session()

    # One attempt per request; failures surface as 502 instead of being retried.
    retry_strategy = Retry(total=0, redirect=False, raise_on_status=False)

    adapter = HTTPAdapter(pool_connections=10, pool_maxsize=20, max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    # Text rewrites need decoded bytes.
    session.headers["Accept-Encoding"] = "identity"

    return session


_SESSION = create_upstream_session()
