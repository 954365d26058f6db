from django.core.management.base import BaseCommand

from finance.services import treasury_status
from finance.utility import format_gnf


class Command(BaseCommand):
    help = 'Prints the treasury balances, the safe status and today\'s activity'

    def handle(self, *args, **options):
        status = treasury_status()
        treasury = status['treasury']
        today = status['today_summary']

        self.stdout.write(f"Registry:      {format_gnf(treasury.registry_balance)}"
                          f" ({'open' if status['registry_open'] else 'closed'})")
        self.stdout.write(f"Safe:          {format_gnf(treasury.safe_balance)}")
        self.stdout.write(f"Bank:          {format_gnf(treasury.bank_balance)}")
        self.stdout.write(f"Mobile money:  {format_gnf(treasury.mobile_money_balance)}")
        self.stdout.write(f"Total liquid:  {format_gnf(treasury.total_liquid_assets)}")
        self.stdout.write(f"Today ({status['today']}): in {format_gnf(today['total_in'])}, "
                          f"out {format_gnf(today['total_out'])}, {today['count']} transaction(s)")

        verification = status['today_verification']
        if verification:
            self.stdout.write(f"Verified today: {verification.get_status_display()}")
        else:
            self.stdout.write(self.style.WARNING("The safe has not been verified today"))

        message = f"Safe status: {status['status']}"
        if status['status'] == 'critical':
            self.stdout.write(self.style.ERROR(message))
        elif status['status'] in ('warning', 'excess'):
            self.stdout.write(self.style.WARNING(message))
        else:
            self.stdout.write(self.style.SUCCESS(message))
