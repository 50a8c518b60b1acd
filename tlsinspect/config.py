"""
config.py
=========
Runtime settings for the trust and revocation checks.

Settings live in config.json (see paths.py). The file is overlaid on the
built-in DEFAULTS below, so a partial file or no file at all is fine.
Unknown keys are ignored.
"""

import json
import os

from tlsinspect.paths import config_path


DEFAULTS = {
    "http_timeout_seconds": 10.0,
    "check_timeout_seconds": 30.0,
    "max_crl_bytes": 20 * 1024 * 1024,
    "max_redirects": 5,
    "follow_redirects": True,
    "crl_schemes": ["https", "ldap"],
    "ocsp_schemes": ["http", "https"],
    "user_agent": "tlsinspect/0.1",
    "trust_store_path": None,
    "cancel_poll_interval_seconds": 0.05,
    "parallel_checks": True,
}


def load_config(path: str = None) -> dict:
    """
    Load settings from disk, falling back to DEFAULTS for missing keys.

    Args:
        path: Explicit config file. Defaults to paths.config_path().

    Returns:
        dict with every key of DEFAULTS.

    Raises:
        ValueError: If the file exists but is not a JSON object.
    """
    path = path or config_path()
    cfg = dict(DEFAULTS)
    if not os.path.exists(path):
        return cfg

    with open(path, "r", encoding="utf-8") as fh:
        try:
            loaded = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ValueError(f"Invalid config file {path}: expected a JSON object")

    for key in DEFAULTS:
        if key in loaded:
            cfg[key] = loaded[key]
    return cfg
