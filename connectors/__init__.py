"""Tax Authority Connectors - Pluggable e-invoice submission backends.

This package contains the abstract tax-authority interface and concrete
implementations (MyInvois, and an in-memory sandbox for development).

The consolidation core is authority-neutral. This package handles:
- Authority-specific authentication
- Document encoding and submission
- Status and cancellation calls
- Mapping responses to normalized results

To add a new authority:
1. Create a new module or folder (e.g., peppol/)
2. Implement TaxAuthorityConnector interface
3. Register using @register_connector decorator
"""

from connectors.tax_authority_base import (
    # Core interface
    TaxAuthorityConnector,
    TaxAuthorityConfig,
    DEFAULT_CANCELLATION_REASON,

    # Normalized results
    SubmissionResult,
    StatusCheckResult,
    CancellationResult,

    # Factory functions
    create_connector,
    register_connector,
    list_available_connectors,
)

# Register implementations
from connectors.sandbox import SandboxConnector
from connectors.myinvois import MyInvoisConnector

__all__ = [
    # Core interface
    "TaxAuthorityConnector",
    "TaxAuthorityConfig",
    "DEFAULT_CANCELLATION_REASON",

    # Normalized results
    "SubmissionResult",
    "StatusCheckResult",
    "CancellationResult",

    # Implementations
    "SandboxConnector",
    "MyInvoisConnector",

    # Factory
    "create_connector",
    "register_connector",
    "list_available_connectors",
]
