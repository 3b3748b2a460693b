"""
Import a legacy markbook class folder.

Usage:
    python manage.py import_legacy_class /data/legacy/8D
    python manage.py import_legacy_class /data/legacy/8D --async
"""
import json

from django.core.management.base import BaseCommand, CommandError

from core.errors import MarkbookError
from legacy.importer import import_legacy_class
from legacy.tasks import import_legacy_class_task


class Command(BaseCommand):
    help = 'Import a legacy class folder (CL*.Y?? plus mark sets and companion files)'

    def add_arguments(self, parser):
        parser.add_argument('folder', type=str, help='Legacy class folder')
        parser.add_argument(
            '--async',
            action='store_true',
            dest='run_async',
            help='Queue the import on Celery instead of running it here',
        )

    def handle(self, *args, **options):
        folder = options['folder']

        if options['run_async']:
            result = import_legacy_class_task.delay(folder)
            self.stdout.write(f'Queued import of {folder} (task {result.id})')
            return

        try:
            result = import_legacy_class(folder)
        except MarkbookError as e:
            raise CommandError(f'{e.code}: {e.message}')

        for warning in result['warnings']:
            self.stdout.write(self.style.WARNING(f"Warning: {warning['code']}"))
        for missing in result['missingMarkFiles']:
            self.stdout.write(self.style.WARNING(
                f"No mark file for {missing['code']} ({missing['filePrefix']})"
            ))
        self.stdout.write(json.dumps(result, indent=2))
        self.stdout.write(self.style.SUCCESS(
            f"Imported {result['name']}: {result['studentsImported']} students, "
            f"{result['markSetsImported']} mark sets, {result['scoresImported']} scores"
        ))
