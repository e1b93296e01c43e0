"""
Taskgraph - Main Entry Points

taskgraph-worker: run a distributed worker for a NATS pool.
taskgraph-run:    run a graph defined in YAML and print its results.
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from ..adapters.nats_client import NatsClient
from ..config.loader import ConfigLoader
from ..dag.builder import GraphBuilder
from .context import Context
from .pipeline import collect_results, run_pipeline
from .worker import TaskWorker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def run_worker() -> None:
    """
    Main loop for a worker process.

    Environment Variables:
        CONFIG_DIR: Config directory path (default: "config")
        TASKGRAPH_WORKER_ID: Worker id (default from scheduler.yaml, else "local")
        TASKGRAPH_THREADS: Number of threads
        TASKGRAPH_POOL: Worker pool to join (default: "default")
        TASKGRAPH_FUNCTIONS: Comma-separated "module:attribute" task functions
        NATS_SERVERS: NATS server URLs (default: "nats://localhost:4222")
    """
    config_dir = Path(os.getenv("CONFIG_DIR", "config"))
    settings = ConfigLoader(config_dir).load_settings()

    logger.info("=" * 60)
    logger.info("Taskgraph Worker Starting")
    logger.info("=" * 60)
    logger.info(f"Worker: {settings.worker_id}")
    logger.info(f"Pool: {settings.remote.pool}")
    logger.info(f"Config Directory: {config_dir}")

    logger.info("Connecting to NATS...")
    nats_client = NatsClient(settings.remote.nats_config())
    await nats_client.connect()

    worker = None
    try:
        worker = TaskWorker(nats_client, settings)
        await worker.start()

        logger.info("=" * 60)
        logger.info(f"Worker '{settings.worker_id}' serving pool '{settings.remote.pool}'")
        logger.info("Press Ctrl+C to stop")
        logger.info("=" * 60)

        while True:
            await asyncio.sleep(60)

            metrics = worker.get_metrics()
            logger.info(
                f"Metrics [{metrics['worker_id']}]: "
                f"served={metrics['served']}, failed={metrics['failed']}, "
                f"running={metrics['running']}"
            )

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        if worker is not None:
            await worker.stop()
        await nats_client.close()

        logger.info("Worker stopped")


def worker_main() -> None:
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Shutting down...")


def run_main() -> int:
    """
    Run one YAML-defined graph and print the results as JSON.

    Environment Variables:
        GRAPH: Graph name (directory under <CONFIG_DIR>/graphs/)
        CONFIG_DIR: Config directory path (default: "config")
        TASKGRAPH_FUNCTIONS: Comma-separated "module:attribute" task functions

    Returns:
        Exit code: 0 when every task finished, 1 if any failed, 2 on bad input
    """
    graph_name = os.getenv("GRAPH")
    if not graph_name:
        logger.error("GRAPH environment variable is required")
        return 2

    loader = ConfigLoader(Path(os.getenv("CONFIG_DIR", "config")))
    try:
        settings = loader.load_settings()
        builder = GraphBuilder(loader.load_graph(graph_name))
        builder.build()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    try:
        context = Context(settings)
    except (ValueError, ImportError) as e:
        logger.error(f"Failed to load task functions: {e}")
        return 2

    with context:
        try:
            thunks = run_pipeline(context, builder)
        except (ValueError, RuntimeError) as e:
            logger.error(f"Failed to spawn graph '{graph_name}': {e}")
            context.close(wait=False)
            return 2
        results = collect_results(thunks)
        counts = context.snapshot()["counts"]

    logger.info(f"Graph '{graph_name}' done: {counts}")
    print(json.dumps(results, indent=2, default=str))

    return 0 if all(r["ok"] for r in results.values()) else 1


def main() -> None:
    sys.exit(run_main())


if __name__ == "__main__":
    worker_main()
