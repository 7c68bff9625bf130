"""Export runtime wiring.

Builds the long-lived collaborators shared by the Temporal worker and the
API server from one AppConfig: the Dilovod connector, the directory cache,
the orchestrator (with its per-order lease registry), the reconciliation
checker and the bulk coordinator.
"""

from dataclasses import dataclass
from pathlib import Path

from connectors.directory_cache import DirectoryCache
from connectors.erp_base import ERPConfig, ERPConnector, create_connector
from core.config import AppConfig
from export_engine.bulk import BulkOperationCoordinator
from export_engine.orchestrator import ExportOrchestrator
from reconciliation.engine import ReconciliationChecker


@dataclass
class ExportRuntime:
    connector: ERPConnector
    directory_cache: DirectoryCache
    orchestrator: ExportOrchestrator
    checker: ReconciliationChecker
    coordinator: BulkOperationCoordinator
    db_path: Path


def assemble_runtime(connector: ERPConnector, db_path: Path, directory_ttl_seconds: int = 3600) -> ExportRuntime:
    """Wire the engine around an existing connector."""
    cache = DirectoryCache(connector, ttl_seconds=directory_ttl_seconds)
    orchestrator = ExportOrchestrator(connector, cache, db_path=db_path)
    checker = ReconciliationChecker(connector, db_path=db_path)
    return ExportRuntime(
        connector=connector,
        directory_cache=cache,
        orchestrator=orchestrator,
        checker=checker,
        coordinator=BulkOperationCoordinator(orchestrator, checker, db_path=db_path),
        db_path=db_path,
    )


def build_runtime(config: AppConfig) -> ExportRuntime:
    """Build the Dilovod-backed runtime.

    Raises:
        ValueError: DILOVOD_API_KEY is not configured
    """
    import connectors.dilovod  # noqa: F401  (registers the "dilovod" connector)

    if not config.dilovod_api_key:
        raise ValueError("DILOVOD_API_KEY is not configured")

    connector = create_connector(ERPConfig(
        connector_type="dilovod",
        base_url=config.dilovod_api_url,
        api_key=config.dilovod_api_key,
        timeout_seconds=config.dilovod_timeout_seconds,
        token_ttl_seconds=config.payload_token_ttl_seconds,
    ))
    return assemble_runtime(connector, config.db_path, config.directory_cache_ttl_seconds)
