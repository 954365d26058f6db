from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from finance.models import DEFAULT_REGISTRY_FLOAT
from finance.services import get_or_create_treasury, initialize_registry
from finance.utility import format_gnf


class Command(BaseCommand):
    help = 'Moves an initial amount from the safe into the empty registry'

    def add_arguments(self, parser):
        parser.add_argument('--amount', default=str(DEFAULT_REGISTRY_FLOAT), help='Amount to move (GNF)')
        parser.add_argument('--dry-run', action='store_true', help='Show what would happen without saving')

    def handle(self, *args, **options):
        try:
            amount = Decimal(options['amount'])
        except InvalidOperation:
            raise CommandError(f"Invalid amount: {options['amount']}")

        treasury = get_or_create_treasury()
        self.stdout.write(f"Safe: {format_gnf(treasury.safe_balance)}  "
                          f"Registry: {format_gnf(treasury.registry_balance)}")

        if options['dry_run']:
            self.stdout.write(self.style.WARNING(
                f"Dry run: would move {format_gnf(amount)} from the safe to the registry, leaving "
                f"{format_gnf(treasury.safe_balance - amount)} in the safe"
            ))
            return

        try:
            result = initialize_registry(amount, None, notes='Initial registry float')
        except ValidationError as e:
            raise CommandError(' '.join(e.messages))

        treasury = result['treasury']
        self.stdout.write(self.style.SUCCESS(
            f"Registry initialised with {format_gnf(amount)}. Safe: {format_gnf(treasury.safe_balance)}"
        ))
