"""
Reset monthly quota counters for every brand whose boundary has passed.

Usage:
    python manage.py reset_quotas
    python manage.py reset_quotas --date 2026-11-01

Safe to run from cron at any frequency: accounts whose resets_on is in the
future are left alone.
"""

from __future__ import annotations

from datetime import date

from django.core.management.base import BaseCommand, CommandError

from alfie.quotas.ledger import QuotaLedger
from alfie.quotas.stores import DjangoQuotaStore


class Command(BaseCommand):
    help = "Reset quota counters for brands whose reset date has passed"

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            type=str,
            default=None,
            help="Treat this ISO date as today (default: current date)",
        )

    def handle(self, *args, **options):
        today = None
        if options["date"]:
            try:
                today = date.fromisoformat(options["date"])
            except ValueError:
                raise CommandError(f"Invalid --date: {options['date']}")

        ledger = QuotaLedger(DjangoQuotaStore())
        reset_count = ledger.reset_due_accounts(today)
        self.stdout.write(self.style.SUCCESS(f"Reset {reset_count} quota account(s)"))
