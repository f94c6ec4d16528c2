"""
Create or update the provider catalog from a JSON file.

Usage:
    python manage.py sync_providers providers.json
    python manage.py sync_providers providers.json --disable-missing

File format: a list of objects with `id`, `name`, `modalities`, `formats`,
`cost_json` and optionally `quality_score`, `avg_latency_s`, `fail_rate`,
`enabled`.
"""

from __future__ import annotations

import json
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

PROVIDER_FIELDS = (
    "name",
    "modalities",
    "formats",
    "cost_json",
    "quality_score",
    "avg_latency_s",
    "fail_rate",
    "enabled",
)


class Command(BaseCommand):
    help = "Create or update generation providers from a JSON catalog"

    def add_arguments(self, parser):
        parser.add_argument("path", type=str, help="Path to the provider catalog JSON")
        parser.add_argument(
            "--disable-missing",
            action="store_true",
            help="Disable providers that are not in the file",
        )

    def handle(self, *args, **options):
        from alfie.providers.models import Provider

        path = Path(options["path"])
        try:
            entries = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise CommandError(f"Cannot read provider catalog {path}: {e}")

        if not isinstance(entries, list):
            raise CommandError("Provider catalog must be a JSON list")

        created_count = 0
        updated_count = 0
        seen_ids = []

        with transaction.atomic():
            for entry in entries:
                if not isinstance(entry, dict) or not entry.get("id"):
                    raise CommandError(f"Provider entry without id: {entry!r}")
                defaults = {k: entry[k] for k in PROVIDER_FIELDS if k in entry}
                defaults.setdefault("name", entry["id"])
                _, created = Provider.objects.update_or_create(
                    id=entry["id"],
                    defaults=defaults,
                )
                seen_ids.append(entry["id"])
                if created:
                    created_count += 1
                else:
                    updated_count += 1

            disabled_count = 0
            if options["disable_missing"]:
                disabled_count = (
                    Provider.objects.exclude(id__in=seen_ids)
                    .filter(enabled=True)
                    .update(enabled=False)
                )

        self.stdout.write(
            self.style.SUCCESS(
                f"Providers synced: {created_count} created, {updated_count} updated, "
                f"{disabled_count} disabled"
            )
        )
