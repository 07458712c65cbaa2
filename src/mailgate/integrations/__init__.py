"""Upstream integration layer: endpoint catalog, slug resolution and Zapmail operations."""

from mailgate.integrations.catalog import Endpoint, EndpointCatalog, load_endpoints
from mailgate.integrations.resolver import EndpointResolver, ResolvedEndpoint
from mailgate.integrations.zapmail import ExportApp, ZapmailOperations

__all__ = [
    "Endpoint",
    "EndpointCatalog",
    "EndpointResolver",
    "ExportApp",
    "ResolvedEndpoint",
    "ZapmailOperations",
    "load_endpoints",
]
