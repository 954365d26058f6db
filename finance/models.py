import logging
from decimal import Decimal

from django.contrib.auth.models import User
from django.db import models
from django.db.models import Q
from num2words import num2words

from student.models import StudentModel, EnrollmentModel, PaymentScheduleModel

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_FLOAT = Decimal('2000000')
DEFAULT_SAFE_THRESHOLD_MIN = Decimal('5000000')
DEFAULT_SAFE_THRESHOLD_MAX = Decimal('20000000')


def money_field(**kwargs):
    kwargs.setdefault('max_digits', 14)
    kwargs.setdefault('decimal_places', 2)
    return models.DecimalField(**kwargs)


class TreasuryBalanceModel(models.Model):
    """
    A singleton holding the school's four cash positions: the registry (the
    cash box used during the day), the safe, the bank account and the Orange
    Money account. Every change goes through finance.services, which writes a
    SafeTransactionModel entry alongside it.
    """
    registry_balance = money_field(default=0)
    registry_float_amount = money_field(default=DEFAULT_REGISTRY_FLOAT,
                                        help_text="Cash put in the registry at daily opening")
    safe_balance = money_field(default=0)
    bank_balance = money_field(default=0)
    mobile_money_balance = money_field(default=0)
    safe_threshold_min = money_field(default=DEFAULT_SAFE_THRESHOLD_MIN)
    safe_threshold_max = money_field(default=DEFAULT_SAFE_THRESHOLD_MAX)
    last_verified_at = models.DateTimeField(null=True, blank=True)
    last_verified_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                         related_name='+')
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Treasury Balance"
        verbose_name_plural = "Treasury Balance"
        constraints = [
            models.CheckConstraint(condition=Q(registry_balance__gte=0), name='registry_balance_not_negative'),
            models.CheckConstraint(condition=Q(safe_balance__gte=0), name='safe_balance_not_negative'),
            models.CheckConstraint(condition=Q(bank_balance__gte=0), name='bank_balance_not_negative'),
            models.CheckConstraint(condition=Q(mobile_money_balance__gte=0),
                                   name='mobile_money_balance_not_negative'),
        ]
        permissions = [
            ('operate_registry', 'Can perform daily registry opening and closing'),
            ('transfer_treasury_funds', 'Can move cash between safe and registry'),
        ]

    def __str__(self):
        return "Treasury Balance"

    @property
    def total_liquid_assets(self):
        return self.registry_balance + self.safe_balance + self.bank_balance + self.mobile_money_balance


class SafeTransactionModel(models.Model):
    """Append-only ledger of every movement on the treasury accounts."""

    class Type(models.TextChoices):
        STUDENT_PAYMENT = 'student_payment', 'Student Payment'
        OTHER_INCOME = 'other_income', 'Other Income'
        EXPENSE_PAYMENT = 'expense_payment', 'Expense Payment'
        SAFE_TO_REGISTRY = 'safe_to_registry', 'Safe To Registry'
        REGISTRY_TO_SAFE = 'registry_to_safe', 'Registry To Safe'
        REGISTRY_ADJUSTMENT = 'registry_adjustment', 'Registry Adjustment'
        ADJUSTMENT = 'adjustment', 'Adjustment'
        BANK_DEPOSIT = 'bank_deposit', 'Bank Deposit'
        BANK_WITHDRAWAL = 'bank_withdrawal', 'Bank Withdrawal'
        MOBILE_MONEY_INCOME = 'mobile_money_income', 'Mobile Money Income'
        MOBILE_MONEY_FEE = 'mobile_money_fee', 'Mobile Money Fee'
        MOBILE_MONEY_PAYMENT = 'mobile_money_payment', 'Mobile Money Payment'
        REVERSAL_STUDENT_PAYMENT = 'reversal_student_payment', 'Reversal - Student Payment'
        REVERSAL_EXPENSE_PAYMENT = 'reversal_expense_payment', 'Reversal - Expense Payment'
        REVERSAL_OTHER_INCOME = 'reversal_other_income', 'Reversal - Other Income'
        REVERSAL_BANK_DEPOSIT = 'reversal_bank_deposit', 'Reversal - Bank Deposit'
        REVERSAL_BANK_WITHDRAWAL = 'reversal_bank_withdrawal', 'Reversal - Bank Withdrawal'
        REVERSAL_MOBILE_MONEY = 'reversal_mobile_money', 'Reversal - Mobile Money'

    class Direction(models.TextChoices):
        IN = 'in', 'In'
        OUT = 'out', 'Out'

    type = models.CharField(max_length=30, choices=Type.choices)
    direction = models.CharField(max_length=3, choices=Direction.choices)
    amount = money_field()
    registry_balance_after = money_field()
    safe_balance_after = money_field()
    bank_balance_after = money_field()
    mobile_money_balance_after = money_field()

    description = models.CharField(max_length=255, blank=True, null=True)
    receipt_number = models.CharField(max_length=50, blank=True, null=True, db_index=True)
    reference_type = models.CharField(max_length=30, blank=True, null=True)
    reference_id = models.CharField(max_length=50, blank=True, null=True)
    student = models.ForeignKey(StudentModel, on_delete=models.SET_NULL, null=True, blank=True,
                                related_name='safe_transactions')
    payer_name = models.CharField(max_length=150, blank=True, null=True)
    beneficiary_name = models.CharField(max_length=150, blank=True, null=True)
    category = models.CharField(max_length=100, blank=True, null=True)
    notes = models.TextField(blank=True, null=True)

    is_reversal = models.BooleanField(default=False)
    reversal_reason = models.TextField(blank=True, null=True)
    original_transaction = models.ForeignKey('self', on_delete=models.PROTECT, null=True, blank=True,
                                             related_name='reversals')
    reversed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    reversed_at = models.DateTimeField(null=True, blank=True)

    recorded_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='safe_transactions')
    recorded_at = models.DateTimeField(db_index=True)

    class Meta:
        ordering = ['-recorded_at', '-id']
        verbose_name = "Safe Transaction"
        verbose_name_plural = "Safe Transactions"
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='safe_transaction_amount_positive'),
        ]
        permissions = [
            ('reverse_safetransactionmodel', 'Can reverse treasury transactions'),
        ]

    def __str__(self):
        return f"{self.get_type_display()} {self.direction} {self.amount}"


class BankTransferModel(models.Model):

    class Type(models.TextChoices):
        DEPOSIT = 'deposit', 'Deposit'
        WITHDRAWAL = 'withdrawal', 'Withdrawal'

    type = models.CharField(max_length=12, choices=Type.choices)
    amount = money_field()
    bank_name = models.CharField(max_length=100, default='Ecobank')
    bank_reference = models.CharField(max_length=100, blank=True, null=True)
    description = models.CharField(max_length=255, blank=True, null=True)
    carried_by = models.CharField(max_length=100, blank=True, null=True,
                                  help_text="Person who carried the cash to or from the bank")
    transfer_date = models.DateField()
    safe_balance_before = money_field()
    safe_balance_after = money_field()
    bank_balance_before = money_field()
    bank_balance_after = money_field()
    notes = models.TextField(blank=True, null=True)
    recorded_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    recorded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-recorded_at']

    def __str__(self):
        return f"{self.get_type_display()} {self.amount} ({self.transfer_date})"


class DailyVerificationModel(models.Model):

    class Status(models.TextChoices):
        MATCHED = 'matched', 'Matched'
        DISCREPANCY = 'discrepancy', 'Discrepancy'
        REVIEWED = 'reviewed', 'Reviewed'

    verification_date = models.DateField(unique=True)
    expected_balance = money_field()
    counted_balance = money_field()
    discrepancy = money_field()
    status = models.CharField(max_length=12, choices=Status.choices)
    discrepancy_note = models.TextField(blank=True, null=True)
    verified_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='daily_verifications')
    verified_at = models.DateTimeField(auto_now_add=True)
    reviewed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    reviewed_at = models.DateTimeField(null=True, blank=True)
    review_note = models.TextField(blank=True, null=True)

    class Meta:
        ordering = ['-verification_date']

    def __str__(self):
        return f"Verification {self.verification_date} ({self.status})"


class ReceiptNumberGeneratorModel(models.Model):
    """Yearly counters for payment receipt numbers (CASH-2025-00001, OM-2025-00001)."""
    prefix = models.CharField(max_length=10)
    year = models.PositiveIntegerField()
    last_number = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [models.UniqueConstraint(fields=['prefix', 'year'], name='unique_receipt_counter')]


class PaymentModel(models.Model):
    """A tuition payment made against an enrollment."""

    class Method(models.TextChoices):
        CASH = 'cash', 'Cash'
        ORANGE_MONEY = 'orange_money', 'Orange Money'

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        CONFIRMED = 'confirmed', 'Confirmed'
        FAILED = 'failed', 'Failed'
        REVERSED = 'reversed', 'Reversed'

    enrollment = models.ForeignKey(EnrollmentModel, on_delete=models.PROTECT, related_name='payments')
    payment_schedule = models.ForeignKey(PaymentScheduleModel, on_delete=models.SET_NULL, null=True, blank=True,
                                         related_name='payments')
    amount = money_field()
    method = models.CharField(max_length=15, choices=Method.choices)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.CONFIRMED)
    receipt_number = models.CharField(max_length=50, unique=True)
    transaction_ref = models.CharField(max_length=100, blank=True, null=True,
                                       help_text="Orange Money transaction reference")
    notes = models.TextField(blank=True, null=True)

    recorded_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='recorded_payments')
    recorded_at = models.DateTimeField(auto_now_add=True)
    confirmed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-recorded_at']
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='payment_amount_positive'),
        ]

    def __str__(self):
        return f"{self.receipt_number} - {self.amount}"

    def amount_in_words(self):
        """Amount spelled out in French for the printed receipt."""
        return f"{num2words(int(self.amount), lang='fr').capitalize()} francs guinéens"


class ExpenseModel(models.Model):
    """
    An expense request. It is approved before any money leaves: cash
    expenses are paid out of the safe in a separate step, Orange Money
    expenses are paid from the mobile money account as soon as they are
    approved.
    """

    class Category(models.TextChoices):
        SUPPLIES = 'supplies', 'Supplies'
        MAINTENANCE = 'maintenance', 'Maintenance'
        UTILITIES = 'utilities', 'Utilities'
        SALARY = 'salary', 'Salary'
        TRANSPORT = 'transport', 'Transport'
        COMMUNICATION = 'communication', 'Communication'
        OTHER = 'other', 'Other'

    class Method(models.TextChoices):
        CASH = 'cash', 'Cash'
        ORANGE_MONEY = 'orange_money', 'Orange Money'

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        APPROVED = 'approved', 'Approved'
        REJECTED = 'rejected', 'Rejected'
        PAID = 'paid', 'Paid'

    category = models.CharField(max_length=15, choices=Category.choices)
    description = models.CharField(max_length=255)
    amount = money_field()
    method = models.CharField(max_length=15, choices=Method.choices, default=Method.CASH)
    expense_date = models.DateField()
    vendor_name = models.CharField(max_length=150, blank=True, null=True)
    receipt_url = models.CharField(max_length=255, blank=True, null=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    rejection_reason = models.TextField(blank=True, null=True)

    requested_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                     related_name='requested_expenses')
    approved_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    approved_at = models.DateTimeField(null=True, blank=True)
    paid_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='+')
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-expense_date', '-id']
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='expense_amount_positive'),
        ]
        permissions = [
            ('approve_expensemodel', 'Can approve or reject expenses'),
            ('pay_expensemodel', 'Can pay approved expenses'),
        ]

    def __str__(self):
        return f"{self.description} - {self.amount} ({self.status})"
