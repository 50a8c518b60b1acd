"""
paths.py
========
Single source of truth for all absolute paths used by tlsinspect.

Every module imports from here instead of computing paths individually.
The config file can be relocated with the TLSINSPECT_CONFIG environment
variable; everything else resolves relative to the installed package.
"""

import os

# The directory that contains THIS file (tlsinspect/)
PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

CONFIG_ENV_VAR = "TLSINSPECT_CONFIG"
DEFAULT_CONFIG_PATH = os.path.join(PACKAGE_DIR, "config.json")


def config_path() -> str:
    """Return the config file in effect, honouring TLSINSPECT_CONFIG."""
    return os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
