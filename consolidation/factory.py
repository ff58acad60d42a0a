"""
Service Factory

Builds a ConsolidationService for a business line from ConsolidationConfig.
The HTTP API and the Temporal activities share this wiring.
"""

import importlib
from typing import Optional

from core.config import ConsolidationConfig, load_config
from core.observability.logging import get_logger
from connectors import TaxAuthorityConfig, TaxAuthorityConnector, create_connector
from connectors.myinvois import DocumentRenderer

from .db import SQLiteConsolidationStore
from .locks import KeyedLocks
from .service import ConsolidationService
from .sources import InMemoryInvoiceSource, InvoiceSource, SQLiteInvoiceSource

logger = get_logger(__name__)

# Connector types that submit a rendered document
RENDERING_CONNECTORS = ("myinvois",)


def load_renderer(path: str) -> DocumentRenderer:
    """
    Import a renderer from ``"package.module:attribute"``.

    A class is instantiated without arguments; any other attribute is used as is.

    Raises:
        ValueError: Path is not in ``module:attribute`` form
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Document renderer must be 'module:attribute', got {path!r}")
    renderer = getattr(importlib.import_module(module_name), attribute)
    return renderer() if isinstance(renderer, type) else renderer


def build_connector(
    config: ConsolidationConfig,
    renderer: Optional[DocumentRenderer] = None,
) -> TaxAuthorityConnector:
    """
    Create the tax-authority connector configured for a business line.

    Raises:
        ValueError: Unknown connector type, or a rendering connector without a renderer
    """
    kwargs = {}
    if config.connector_type in RENDERING_CONNECTORS:
        if renderer is None and config.document_renderer:
            renderer = load_renderer(config.document_renderer)
        if renderer is None:
            raise ValueError(
                f"Connector '{config.connector_type}' for {config.company_id} needs a document "
                "renderer (set MYINVOIS_RENDERER or pass renderer=)"
            )
        kwargs["renderer"] = renderer

    return create_connector(TaxAuthorityConfig(
        connector_type=config.connector_type,
        company_id=config.company_id,
        environment="sandbox" if config.connector_type == "sandbox" else "production",
        base_url=config.myinvois_base_url,
        client_id=config.myinvois_client_id,
        client_secret=config.myinvois_client_secret,
        timeout_seconds=config.myinvois_timeout_seconds,
        custom_settings=dict(config.connector_settings),
    ), **kwargs)


def build_source(config: ConsolidationConfig) -> InvoiceSource:
    if config.invoice_db_path is None:
        logger.warning(
            "No invoice database configured, using an empty in-memory source",
            extra_fields={"company_id": config.company_id},
        )
        return InMemoryInvoiceSource()
    return SQLiteInvoiceSource(config.invoice_db_path, config.company_id)


def build_service(
    config: Optional[ConsolidationConfig] = None,
    locks: Optional[KeyedLocks] = None,
    renderer: Optional[DocumentRenderer] = None,
) -> ConsolidationService:
    """Wire store, connector and invoice source into a service.

    Args:
        config: Business-line configuration (defaults to the environment)
        locks: Lock registry shared with other services in the same process
        renderer: Document renderer for connectors that submit rendered documents
    """
    config = config or load_config()
    connector = build_connector(config, renderer)
    store = SQLiteConsolidationStore(config.db_path)
    store.init_db()

    return ConsolidationService(
        company_id=config.company_id,
        store=store,
        connector=connector,
        source=build_source(config),
        locks=locks,
        auto_consolidation_default=config.auto_consolidation_default,
    )
