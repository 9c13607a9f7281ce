#!/usr/bin/env python3
"""
Generation worker launcher (JOB_DISPATCHER=rq).

Each process runs one RQ worker on the `generation` queue, so the number of
processes is the number of provider calls in flight.

Usage:
    python scripts/run_workers.py                # WORKER_CONCURRENCY processes
    python scripts/run_workers.py -w 4           # 4 processes
    python scripts/run_workers.py --burst        # drain the queue and exit
    python scripts/run_workers.py --check        # ping Redis and exit
"""

import argparse
import logging
import os
import signal
import sys
from multiprocessing import Process
from typing import List

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rq import Queue, Worker

from app.core.config import settings
from app.core.database import init_db
from app.core.redis import Queues, get_redis, redis_health_check

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger("rq.worker")


def work(index: int, burst: bool):
    """Run one RQ worker until stopped (or until the queue is empty in burst mode)."""
    connection = get_redis()
    name = f"generation-{index}-{os.getpid()}"
    worker = Worker(
        queues=[Queue(Queues.GENERATION, connection=connection)],
        connection=connection,
        name=name,
        job_monitoring_interval=5,
    )
    logger.info(f"{name} listening on '{Queues.GENERATION}'")
    worker.work(burst=burst)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Start RQ workers for generation jobs")
    parser.add_argument("--workers", "-w", type=int, default=settings.WORKER_CONCURRENCY,
                        help=f"Worker processes (default: {settings.WORKER_CONCURRENCY})")
    parser.add_argument("--burst", "-b", action="store_true", help="Exit when the queue is empty")
    parser.add_argument("--check", action="store_true", help="Check Redis connection and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    health = redis_health_check()
    if args.check:
        print(f"Redis Status: {health}")
        return 0 if health.get("connected") else 1
    if not health.get("connected"):
        logger.error(f"Cannot connect to Redis at {health.get('url')}: {health.get('error')}")
        return 1

    logger.info(f"Redis connected: {health.get('redis_version')}")
    init_db()

    if args.workers <= 1:
        work(1, args.burst)
        return 0

    processes: List[Process] = [
        Process(target=work, args=(i + 1, args.burst), name=f"generation-{i + 1}")
        for i in range(args.workers)
    ]

    def shutdown(signum, frame):
        logger.info("Shutting down all workers...")
        for p in processes:
            if p.is_alive():
                p.terminate()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    for p in processes:
        p.start()
        logger.info(f"Started {p.name} (PID: {p.pid})")
    for p in processes:
        p.join()
    return 0


if __name__ == "__main__":
    sys.exit(main())
