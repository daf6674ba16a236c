# loans/management/commands/export_defaulters.py

"""
Export the defaulters report.

USAGE EXAMPLES:
===============

# Print defaulters to the terminal
python manage.py export_defaulters

# Excel workbook
python manage.py export_defaulters --format xlsx --output defaulters.xlsx

# PDF as of a fixed date
python manage.py export_defaulters --format pdf --output defaulters.pdf --today 2025-03-31
"""

from django.core.management.base import BaseCommand, CommandError
from django.core.exceptions import ValidationError
import logging

from core.utils import parse_date
from loans.stats import get_defaulters
from loans.exports import build_defaulters_workbook, build_defaulters_pdf, format_defaulters_text

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Export loans in default (two or more consecutive missed installments)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--format',
            choices=['xlsx', 'pdf', 'text'],
            default='text',
            help='Output format (default: text)'
        )
        parser.add_argument(
            '--output',
            type=str,
            help='File to write; required for xlsx and pdf'
        )
        parser.add_argument(
            '--today',
            type=str,
            help='Evaluate overdue installments as of this date (YYYY-MM-DD)'
        )

    def handle(self, *args, **options):
        output_format = options['format']
        output = options.get('output')

        try:
            today = parse_date(options.get('today'), field='today', allow_none=True)
        except ValidationError as e:
            raise CommandError(f"Invalid --today: {e.messages[0]}")

        if output_format in ('xlsx', 'pdf') and not output:
            raise CommandError(f"--output is required for {output_format} exports")

        rows = get_defaulters(today=today)

        if output_format == 'xlsx':
            content = build_defaulters_workbook(rows)
        elif output_format == 'pdf':
            content = build_defaulters_pdf(rows)
        else:
            text = format_defaulters_text(rows)
            if not output:
                self.stdout.write(text)
                return
            content = text.encode('utf-8')

        with open(output, 'wb') as fh:
            fh.write(content)

        logger.info(f"Exported {len(rows)} defaulters to {output}")
        self.stdout.write(self.style.SUCCESS(f"✓ Exported {len(rows)} defaulted loans to {output}"))
