"""Scheduler entry point: cancel abandoned orders and retry stock settlement.

Run periodically (cron, Kubernetes CronJob)::

    python manage.py cancel_expired_orders
"""

import logging

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.orders.providers import get_order_service

logger = logging.getLogger("orders.scheduler")


class Command(BaseCommand):
    help = "Cancel pending orders past the abandonment window and settle deferred ledger calls."

    def add_arguments(self, parser):
        parser.add_argument(
            "--skip-settlement",
            action="store_true",
            help="Only cancel expired orders; do not retry commit/release.",
        )

    def handle(self, *args, **options):
        service = get_order_service()
        cancelled = service.cancel_expired_pending(timezone.now())
        settled = 0 if options["skip_settlement"] else service.settle_unsettled()
        logger.info("expiry run finished", extra={"cancelled": len(cancelled), "settled": settled})
        self.stdout.write(f"cancelled={len(cancelled)} settled={settled}")
