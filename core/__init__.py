"""Core module - system-neutral models, markers, storage and configuration.

Connector-specific logic (Actual Budget, Xano, Xero) belongs in /connectors/.
"""

__version__ = "1.0.0"
