"""Run an embedding worker outside the API process.

Usage::

    python scripts/run_worker.py            # run until SIGINT / SIGTERM
    python scripts/run_worker.py --drain    # process what is queued, then exit

Claims left in ``processing`` by a crashed worker for longer than
``STALE_CLAIM_SECONDS`` are returned to the queue at startup, and then
periodically while the worker runs.
"""
import argparse
import asyncio
import signal

import structlog

from lensmatch.database import dispose_engine
from lensmatch.services.embedding_worker import build_worker
from lensmatch.utils.logging import configure_logging

logger = structlog.get_logger("lensmatch.worker")


async def main(drain: bool, worker_id: str | None) -> None:
    worker = build_worker(worker_id)

    try:
        if drain:
            await worker.release_stale_claims()
            processed = await worker.drain()
            logger.info("worker_drained", processed=processed)
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await worker.run(stop)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Lensmatch embedding worker")
    parser.add_argument("--drain", action="store_true", help="exit once the queue is empty")
    parser.add_argument("--worker-id", default=None)
    args = parser.parse_args()

    configure_logging()
    asyncio.run(main(args.drain, args.worker_id))
