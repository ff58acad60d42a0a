"""MyInvois Connector Package.

Implements the TaxAuthorityConnector interface for the MyInvois e-invoice API.
"""

from connectors.myinvois.myinvois_connector import (
    DocumentRenderer,
    MyInvoisConnector,
    apply_submission_summary,
    build_document_entry,
    map_document_details,
    map_document_status,
    map_submission_response,
)
from connectors.myinvois.myinvois_auth import (
    MyInvoisAuthConfig,
    MyInvoisAuthProvider,
    MyInvoisToken,
)
from connectors.myinvois.myinvois_client import (
    MyInvoisApiClient,
    MyInvoisApiConfig,
    RetryConfig,
)
from connectors.myinvois.myinvois_errors import (
    MyInvoisApiError,
    MyInvoisAuthenticationError,
    MyInvoisNotFoundError,
    MyInvoisRateLimitError,
    MyInvoisValidationError,
)

__all__ = [
    # Connector
    "MyInvoisConnector",
    "DocumentRenderer",
    # Mapping
    "apply_submission_summary",
    "build_document_entry",
    "map_document_details",
    "map_document_status",
    "map_submission_response",
    # Client credentials auth
    "MyInvoisAuthConfig",
    "MyInvoisAuthProvider",
    "MyInvoisToken",
    # HTTP client
    "MyInvoisApiClient",
    "MyInvoisApiConfig",
    "RetryConfig",
    # Errors
    "MyInvoisApiError",
    "MyInvoisAuthenticationError",
    "MyInvoisNotFoundError",
    "MyInvoisRateLimitError",
    "MyInvoisValidationError",
]
