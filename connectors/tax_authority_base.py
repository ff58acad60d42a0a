"""Abstract Tax Authority Connector Interface.

This module defines the contract every tax-authority connector implements.
It is intentionally authority-agnostic: no MyInvois specifics here.

Connectors implement this interface to:
1. Submit a consolidated document built from a preview and its members
2. Check the validation status of a submitted document
3. Cancel a validated or rejected document

Key Design Principles:
- All methods return NORMALIZED results (SubmissionResult, etc.)
- The lifecycle state machine depends ONLY on this interface
- Connectors may raise on transport failure; the lifecycle captures it
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from core.models import (
    AcceptedDocument,
    ConsolidatedDocument,
    ConsolidationPreview,
    DocumentStatus,
    Invoice,
    RejectedDocument,
)


DEFAULT_CANCELLATION_REASON = "Cancelled by administrator"


# =============================================================================
# Normalized Results
# =============================================================================

class SubmissionResult(BaseModel):
    """Outcome of submitting one consolidated document."""
    success: bool
    status: Optional[DocumentStatus] = None
    submission_uid: Optional[str] = None
    uuid: Optional[str] = None
    long_id: Optional[str] = None
    validated_at: Optional[datetime] = None
    accepted_documents: List[AcceptedDocument] = Field(default_factory=list)
    rejected_documents: List[RejectedDocument] = Field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def is_partial(self) -> bool:
        return bool(self.accepted_documents) and bool(self.rejected_documents)


class StatusCheckResult(BaseModel):
    """Outcome of a status check.

    ``status`` is None when the authority reports nothing new.
    """
    status: Optional[DocumentStatus] = None
    long_id: Optional[str] = None
    validated_at: Optional[datetime] = None
    updated: bool = False
    error_message: Optional[str] = None


class CancellationResult(BaseModel):
    """Outcome of a cancellation request."""
    success: bool
    message: Optional[str] = None


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class TaxAuthorityConfig:
    """Configuration for a tax-authority connector.

    Generic configuration that can be extended by specific connectors.
    """
    connector_type: str                     # "myinvois", "sandbox"
    company_id: str = "default"             # Business line submitting
    environment: str = "sandbox"            # "production", "sandbox"
    base_url: Optional[str] = None

    # Authentication (connector-specific)
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    timeout_seconds: int = 30

    custom_settings: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Abstract Connector Interface
# =============================================================================

class TaxAuthorityConnector(ABC):
    """Abstract base class for tax-authority connectors.

    Implementations:
    - connectors/sandbox.py
    - connectors/myinvois/myinvois_connector.py
    """

    def __init__(self, config: TaxAuthorityConfig):
        self.config = config

    @abstractmethod
    async def submit_consolidation(
        self,
        preview: ConsolidationPreview,
        members: Sequence[Invoice],
    ) -> SubmissionResult:
        """Submit a consolidated document.

        Args:
            preview: Aggregated totals and identifier
            members: Member invoices, oldest first

        Returns:
            SubmissionResult with accepted and rejected sub-documents
        """

    @abstractmethod
    async def check_consolidation_status(self, document: ConsolidatedDocument) -> StatusCheckResult:
        """Query the authority for the current status of a submitted document."""

    @abstractmethod
    async def cancel_consolidation(
        self,
        document: ConsolidatedDocument,
        reason: str = DEFAULT_CANCELLATION_REASON,
    ) -> CancellationResult:
        """Request cancellation of a document."""

    async def close(self) -> None:
        """Release connector resources."""

    def get_connector_name(self) -> str:
        return self.config.connector_type


# =============================================================================
# Connector Factory
# =============================================================================

_connector_registry: Dict[str, type] = {}


def register_connector(connector_type: str):
    """Decorator to register a connector implementation."""
    def decorator(cls):
        _connector_registry[connector_type] = cls
        return cls
    return decorator


def create_connector(config: TaxAuthorityConfig, **kwargs) -> TaxAuthorityConnector:
    """Create a connector instance from configuration.

    Args:
        config: TaxAuthorityConfig with connector_type specified
        **kwargs: Extra collaborators passed to the connector constructor

    Returns:
        Configured connector instance

    Raises:
        ValueError: If connector_type is not registered
    """
    connector_type = config.connector_type.lower()

    if connector_type not in _connector_registry:
        available = list(_connector_registry.keys())
        raise ValueError(
            f"Unknown connector type: {connector_type}. "
            f"Available: {available}"
        )

    connector_class = _connector_registry[connector_type]
    return connector_class(config, **kwargs)


def list_available_connectors() -> List[str]:
    """List all registered connector types."""
    return list(_connector_registry.keys())
