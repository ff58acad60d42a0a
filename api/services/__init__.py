"""API Services Package."""

from api.services.consolidation_services import (
    close_services,
    get_service,
    is_known_company,
    list_services,
    set_service,
)

__all__ = [
    "close_services",
    "get_service",
    "is_known_company",
    "list_services",
    "set_service",
]
