"""
Consolidation service registry for the API.

One ConsolidationService per business line, built lazily from configuration
and shared by all requests. Services share one lock registry so concurrent
requests for the same period or document are serialized.
"""

from typing import Dict, List

from consolidation import ConsolidationService, KeyedLocks, build_service
from core.config import KNOWN_COMPANIES, load_config


_services: Dict[str, ConsolidationService] = {}
_locks = KeyedLocks()


def is_known_company(company_id: str) -> bool:
    return company_id in _services or company_id in KNOWN_COMPANIES


def get_service(company_id: str) -> ConsolidationService:
    """Return the cached service for a business line, building it on first use."""
    service = _services.get(company_id)
    if service is None:
        service = build_service(load_config(company_id), locks=_locks)
        _services[company_id] = service
    return service


def set_service(company_id: str, service: ConsolidationService) -> None:
    """Register a pre-built service (used by tests and embedding hosts)."""
    _services[company_id] = service


def list_services() -> List[ConsolidationService]:
    return list(_services.values())


async def close_services() -> None:
    """Close every connector and forget the cached services."""
    for service in _services.values():
        await service.connector.close()
    _services.clear()
