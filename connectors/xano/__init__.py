"""Xano (middleware staging store) connector."""

from connectors.xano.xano_client import XanoClient, XanoConfig
from connectors.xano.xano_models import XanoStagedRecord

__all__ = ["XanoClient", "XanoConfig", "XanoStagedRecord"]
