"""
Connector loading

Concrete ad platform clients live outside this package. They are plugged
in through a factory path, "package.module:callable", whose callable
returns either a {platform: connector} mapping or a list of connectors.
"""
import importlib
from typing import Dict, Optional

from agency_reports.config import get_settings
from agency_reports.connectors.base import AdPlatformConnector
from agency_reports.utils.logger import log


def load_connectors(factory_path: Optional[str] = None) -> Dict[str, AdPlatformConnector]:
    """
    Build the connector mapping from a factory path

    Falls back to Settings.connector_factory. An empty path yields no
    connectors, which is enough for archive, retention and status jobs.

    Raises:
        ValueError: malformed path, or the factory returned something
            other than connectors
    """
    factory_path = factory_path if factory_path is not None else get_settings().connector_factory
    if not factory_path:
        return {}

    module_name, sep, attr = factory_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Connector factory must look like 'package.module:callable', got '{factory_path}'")

    factory = getattr(importlib.import_module(module_name), attr)
    produced = factory()

    if isinstance(produced, dict):
        connectors = dict(produced)
    else:
        connectors = {c.platform: c for c in produced}

    for platform, connector in connectors.items():
        if not isinstance(connector, AdPlatformConnector):
            raise ValueError(f"Factory returned a non-connector for '{platform}': {type(connector).__name__}")

    log.info(f"Loaded connectors: {', '.join(sorted(connectors)) or 'none'}")
    return connectors
