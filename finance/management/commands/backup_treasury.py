import json
import os

from django.conf import settings
from django.core.management.base import BaseCommand
from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone

from finance.models import TreasuryBalanceModel, SafeTransactionModel, PaymentModel, BankTransferModel, \
    DailyVerificationModel
from finance.utility import school_today


class Command(BaseCommand):
    help = 'Writes a JSON backup of the treasury balance and its recent history'

    def add_arguments(self, parser):
        parser.add_argument('--output-dir', default=None,
                            help='Directory for the backup file (defaults to TREASURY_BACKUP_DIR)')

    def handle(self, *args, **options):
        output_dir = options['output_dir'] or settings.TREASURY_BACKUP_DIR
        os.makedirs(output_dir, exist_ok=True)

        treasury = TreasuryBalanceModel.objects.values(
            'id', 'registry_balance', 'registry_float_amount', 'safe_balance', 'bank_balance', 'mobile_money_balance',
            'safe_threshold_min', 'safe_threshold_max', 'last_verified_at', 'updated_at'
        ).first()
        if treasury:
            self.stdout.write(f"Registry: {treasury['registry_balance']}  Safe: {treasury['safe_balance']}  "
                              f"Bank: {treasury['bank_balance']}  Mobile money: {treasury['mobile_money_balance']}")
        else:
            self.stdout.write(self.style.WARNING('No treasury balance found'))

        backup = {
            'timestamp': timezone.now(),
            'treasury_balance': treasury,
            'recent_transactions': list(SafeTransactionModel.objects.order_by('-recorded_at').values(
                'id', 'type', 'direction', 'amount', 'registry_balance_after', 'safe_balance_after',
                'bank_balance_after', 'mobile_money_balance_after', 'description', 'receipt_number',
                'reference_type', 'reference_id', 'is_reversal', 'original_transaction_id',
                'student__student_number', 'recorded_by__username', 'recorded_at'
            )[:100]),
            # only cash payments go through the safe
            'recent_cash_payments': list(PaymentModel.objects.filter(method=PaymentModel.Method.CASH).order_by(
                '-recorded_at'
            ).values(
                'id', 'receipt_number', 'amount', 'status', 'enrollment__enrollment_number',
                'enrollment__first_name', 'enrollment__last_name', 'recorded_at'
            )[:50]),
            'bank_transfers': list(BankTransferModel.objects.order_by('-transfer_date').values()[:30]),
            'daily_verifications': list(DailyVerificationModel.objects.order_by('-verification_date').values()[:30]),
        }

        file_path = os.path.join(output_dir, f"treasury-backup-{school_today():%Y-%m-%d}.json")
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(backup, f, cls=DjangoJSONEncoder, indent=2)

        self.stdout.write(self.style.SUCCESS(
            f"Backed up {len(backup['recent_transactions'])} transactions, "
            f"{len(backup['recent_cash_payments'])} cash payments, {len(backup['bank_transfers'])} bank transfers "
            f"and {len(backup['daily_verifications'])} verifications to {file_path}"
        ))
