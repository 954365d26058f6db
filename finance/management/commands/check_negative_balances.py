from django.core.management.base import BaseCommand

from finance.services import find_negative_balances, find_overpaid_enrollments
from finance.utility import format_gnf


class Command(BaseCommand):
    help = 'Reports negative treasury balances in the ledger and enrollments paid beyond their tuition fee'

    def handle(self, *args, **options):
        problems = 0

        result = find_negative_balances()
        for account in result['negative_accounts']:
            self.stdout.write(self.style.ERROR(f"The {account} balance is negative"))
            problems += 1
        for entry in result['entries']:
            self.stdout.write(self.style.ERROR(
                f"Transaction #{entry.pk} ({entry.type}, {entry.recorded_at:%Y-%m-%d %H:%M}) left a negative balance: "
                f"registry {entry.registry_balance_after}, safe {entry.safe_balance_after}, "
                f"bank {entry.bank_balance_after}, mobile money {entry.mobile_money_balance_after}"
            ))
            problems += 1

        overpaid = find_overpaid_enrollments()
        total_overpayment = 0
        for row in overpaid:
            enrollment = row['enrollment']
            student_number = enrollment.student.student_number if enrollment.student else 'N/A'
            self.stdout.write(self.style.WARNING(
                f"{enrollment.enrollment_number} {enrollment.first_name} {enrollment.last_name} ({student_number}, "
                f"{enrollment.grade}): overpaid by {format_gnf(-row['balance'])}"
            ))
            total_overpayment += -row['balance']
            problems += 1

        if overpaid:
            self.stdout.write(f"Total overpayment: {format_gnf(total_overpayment)}")
        if problems:
            self.stdout.write(self.style.WARNING(f"{problems} problem(s) found"))
        else:
            self.stdout.write(self.style.SUCCESS('No negative balances found'))
