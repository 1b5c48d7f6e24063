"""Worker entry point: ``python -m infrastructure.tasks.worker``.

Listens on every queue the payout and notification tasks are routed to.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(argv=["worker", "--loglevel=INFO", "--queues=high,default,low", "--hostname=reconcile@%h"])


if __name__ == "__main__":
    main()
