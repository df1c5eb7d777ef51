"""Safety protocol catalog."""

from src.protocols.catalog import EMERGENCY_PROTOCOLS, ProtocolCatalog, get_catalog

__all__ = ["EMERGENCY_PROTOCOLS", "ProtocolCatalog", "get_catalog"]
