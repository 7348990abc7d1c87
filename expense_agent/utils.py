"""
Utility functions: .env loading and Google credential resolution.
"""

import json
import logging
import os
import tempfile

from dotenv import load_dotenv

log = logging.getLogger(__name__)


def load_env(env_path=None):
    """Load .env from project root and return os.environ as a dict."""
    if env_path is None:
        env_path = os.path.join(os.path.dirname(__file__), '..', '.env')
    load_dotenv(env_path)
    return dict(os.environ)


def resolve_google_creds_path(env=None):
    """Return a filesystem path to the Google service-account JSON.

    Checks (in order):
      1. ``GOOGLE_SERVICE_ACCOUNT_JSON_PATH`` / ``GOOGLE_APPLICATION_CREDENTIALS``
         env var pointing to an existing file  ->  return that path directly.
      2. ``GOOGLE_SERVICE_ACCOUNT_JSON`` env var containing the raw JSON
         string  ->  write it to a temp file and return the temp path.
         (Useful on hosts where only string env vars can be set.)

    Returns ``None`` if no credentials are available.
    """
    if env is None:
        env = os.environ

    for key in ("GOOGLE_SERVICE_ACCOUNT_JSON_PATH", "GOOGLE_APPLICATION_CREDENTIALS"):
        path = env.get(key)
        if path and os.path.isfile(path):
            log.info("Google creds: using file %s (from %s)", path, key)
            return path

    raw_json = env.get("GOOGLE_SERVICE_ACCOUNT_JSON")
    if raw_json:
        try:
            json.loads(raw_json)
        except json.JSONDecodeError:
            log.warning("GOOGLE_SERVICE_ACCOUNT_JSON is set but is not valid JSON")
            return None
        tmp = tempfile.NamedTemporaryFile(
            mode="w", suffix=".json", prefix="gcp_sa_", delete=False
        )
        tmp.write(raw_json)
        tmp.close()
        log.info("Google creds: wrote inline JSON to %s", tmp.name)
        return tmp.name

    log.warning("No Google service-account credentials found")
    return None
