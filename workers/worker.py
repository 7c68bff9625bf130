"""Worker for the Dilovod export pipeline.

Connects to Temporal, builds the export runtime (Dilovod connector,
directory cache, orchestrator, reconciliation checker) and polls the
export task queue for workflows and activities.

Run with --queue <name> to poll a different task queue.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from temporal_client import get_temporal_client
from activities.export import (
    build_runtime,
    configure_runtime,
    validate_order_activity,
    export_order_activity,
    ship_order_activity,
    reconcile_orders_activity,
)
from core.config import load_config
from core.observability import configure_logging, get_logger
from workflows.order_export_workflow import BulkOrderExportWorkflow, OrderExportWorkflow


logger = get_logger(__name__)

WORKFLOWS = [OrderExportWorkflow, BulkOrderExportWorkflow]

ACTIVITIES = [
    validate_order_activity,
    export_order_activity,
    ship_order_activity,
    reconcile_orders_activity,
]


async def run_worker(queue: str = None):
    """Start a worker on the export task queue.

    Args:
        queue: Task queue to poll (default: TEMPORAL_TASK_QUEUE)

    Raises:
        Exception: If connecting to Temporal or Dilovod fails
    """
    config = load_config()
    configure_logging(level=config.log_level_value, json_format=config.log_json, force=True)

    runtime = build_runtime(config)
    if not await runtime.connector.connect():
        raise RuntimeError("Could not open the Dilovod connection")
    configure_runtime(runtime)

    try:
        client = await get_temporal_client(config)
        logger.info(f"Connected to Temporal: {client.namespace}")

        task_queue = queue or config.temporal_task_queue
        worker = Worker(
            client,
            task_queue=task_queue,
            workflows=WORKFLOWS,
            activities=ACTIVITIES,
        )
        logger.info(
            f"Worker created for queue '{task_queue}'",
            extra_fields={"workflows": len(WORKFLOWS), "activities": len(ACTIVITIES)},
        )

        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise
    finally:
        await runtime.connector.disconnect()
        configure_runtime(None)
        logger.info("Dilovod connection closed")


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Dilovod Export Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=None,
        help="Task queue to poll (default: TEMPORAL_TASK_QUEUE or dilovod-export)",
    )

    args = parser.parse_args()
    asyncio.run(run_worker(queue=args.queue))


if __name__ == "__main__":
    main()
