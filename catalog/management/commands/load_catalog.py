import json

from django.core.management.base import BaseCommand, CommandError

from catalog.loader import CatalogLoadError, load_catalog_data


class Command(BaseCommand):
    help = "Load requirement definitions and tier policies from a JSON file."

    def add_arguments(self, parser):
        parser.add_argument("path", help="Path to the catalog JSON file.")
        parser.add_argument(
            "--publish", action="store_true",
            help="Publish loaded requirements (their rules become immutable).",
        )

    def handle(self, *args, **options):
        try:
            with open(options["path"], encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise CommandError(f"Could not read {options['path']}: {e}")

        try:
            counts = load_catalog_data(data, publish=options["publish"])
        except CatalogLoadError as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(
            f"Loaded catalog: {counts['created']} created, {counts['updated']} updated, "
            f"{counts['policies']} policies."
        ))
