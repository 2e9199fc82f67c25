import os
import logging
from typing import Optional

import requests
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Ensure environment variables from .env are loaded when this module is imported.
load_dotenv()


def gateway_env(name: str, key: str) -> Optional[str]:
    """Return ``SMS_<NAME>_<KEY>`` from the environment, or ``None``."""
    return os.environ.get(f"SMS_{name.upper()}_{key.upper()}") or None


def open_session() -> requests.Session:
    """Open a requests session for an outbound SMS gateway.

    Returns
    -------
    requests.Session
        Session that sends and accepts JSON. Credentials are attached per
        request by the client so they never live on a shared object.
    """
    session = requests.Session()
    session.headers.update(
        {"Accept": "application/json", "Content-Type": "application/json"}
    )
    logger.debug("SMS gateway session opened")
    return session
