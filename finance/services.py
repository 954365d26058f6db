"""
Treasury operations.

Every function here is the single source of truth for one kind of money
movement. Each runs in one database transaction holding a row lock on the
treasury singleton, updates the balances and writes SafeTransactionModel
entries whose "after" balances match the treasury row at that step.
Refused operations raise django.core.exceptions.ValidationError.
"""
import logging
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum, Count, Q
from django.utils import timezone

from student.models import EnrollmentModel
from .models import (
    TreasuryBalanceModel, SafeTransactionModel, BankTransferModel, DailyVerificationModel, PaymentModel,
    ReceiptNumberGeneratorModel, ExpenseModel
)
from .utility import school_today, day_bounds

logger = logging.getLogger(__name__)

T = SafeTransactionModel.Type
IN = SafeTransactionModel.Direction.IN
OUT = SafeTransactionModel.Direction.OUT

MIN_NOTE_LENGTH = 10

ACCOUNT_FIELDS = {
    'registry': 'registry_balance',
    'safe': 'safe_balance',
    'bank': 'bank_balance',
    'mobile_money': 'mobile_money_balance',
}

# How an "in" entry of each type moves the accounts; "out" entries move them
# the opposite way. Two-sided entries are written from the safe's side.
TYPE_EFFECTS = {
    T.STUDENT_PAYMENT: {'registry': 1},
    T.REGISTRY_ADJUSTMENT: {'registry': 1},
    T.OTHER_INCOME: {'safe': 1},
    T.EXPENSE_PAYMENT: {'safe': 1},
    T.ADJUSTMENT: {'safe': 1},
    T.MOBILE_MONEY_INCOME: {'mobile_money': 1},
    T.MOBILE_MONEY_FEE: {'mobile_money': 1},
    T.MOBILE_MONEY_PAYMENT: {'mobile_money': 1},
    T.SAFE_TO_REGISTRY: {'safe': 1, 'registry': -1},
    T.REGISTRY_TO_SAFE: {'safe': 1, 'registry': -1},
    T.BANK_DEPOSIT: {'safe': 1, 'bank': -1},
    T.BANK_WITHDRAWAL: {'safe': 1, 'bank': -1},
    # cash refunds are paid out of the safe
    T.REVERSAL_STUDENT_PAYMENT: {'safe': 1},
    T.REVERSAL_EXPENSE_PAYMENT: {'safe': 1},
    T.REVERSAL_OTHER_INCOME: {'safe': 1},
    T.REVERSAL_BANK_DEPOSIT: {'safe': 1, 'bank': -1},
    T.REVERSAL_BANK_WITHDRAWAL: {'safe': 1, 'bank': -1},
    T.REVERSAL_MOBILE_MONEY: {'mobile_money': 1},
}

REVERSAL_TYPES = {
    T.STUDENT_PAYMENT: T.REVERSAL_STUDENT_PAYMENT,
    T.EXPENSE_PAYMENT: T.REVERSAL_EXPENSE_PAYMENT,
    T.OTHER_INCOME: T.REVERSAL_OTHER_INCOME,
    T.BANK_DEPOSIT: T.REVERSAL_BANK_DEPOSIT,
    T.BANK_WITHDRAWAL: T.REVERSAL_BANK_WITHDRAWAL,
    T.MOBILE_MONEY_INCOME: T.REVERSAL_MOBILE_MONEY,
    T.MOBILE_MONEY_FEE: T.REVERSAL_MOBILE_MONEY,
    T.MOBILE_MONEY_PAYMENT: T.REVERSAL_MOBILE_MONEY,
}

# Manually recorded movements and their direction
MANUAL_TRANSACTION_DIRECTIONS = {
    T.OTHER_INCOME: IN,
    T.EXPENSE_PAYMENT: OUT,
    T.MOBILE_MONEY_FEE: OUT,
}

ACCOUNT_LABELS = {
    'registry': 'registry',
    'safe': 'safe',
    'bank': 'bank account',
    'mobile_money': 'mobile money account',
}


# ---------------------------------------------------------------------------
# Ledger primitives
# ---------------------------------------------------------------------------

def get_or_create_treasury():
    treasury = TreasuryBalanceModel.objects.first()
    if treasury is None:
        treasury = TreasuryBalanceModel.objects.create()
        logger.info("Treasury balance initialised")
    return treasury


def _lock_treasury():
    treasury = TreasuryBalanceModel.objects.select_for_update().first()
    if treasury is None:
        raise ValidationError("Treasury is not initialized. Please contact the administrator.",
                              code='treasury_not_initialized')
    return treasury


def _require_note(text, label="Notes"):
    text = (text or '').strip()
    if len(text) < MIN_NOTE_LENGTH:
        raise ValidationError(f"{label} must be at least {MIN_NOTE_LENGTH} characters.", code='note_too_short')
    return text


def _apply(treasury, tx_type, direction, amount, effects=None):
    sign = 1 if direction == IN else -1
    for account, factor in (effects or TYPE_EFFECTS[tx_type]).items():
        field = ACCOUNT_FIELDS[account]
        current = getattr(treasury, field)
        new_value = current + sign * factor * amount
        if new_value < 0:
            raise ValidationError(
                "Insufficient funds in the %(account)s.", code='insufficient_funds',
                params={'account': ACCOUNT_LABELS[account], 'available': current, 'required': amount}
            )
        setattr(treasury, field, new_value)


def _write_entry(treasury, tx_type, direction, amount, recorded_by, **fields):
    return SafeTransactionModel.objects.create(
        type=tx_type,
        direction=direction,
        amount=amount,
        registry_balance_after=treasury.registry_balance,
        safe_balance_after=treasury.safe_balance,
        bank_balance_after=treasury.bank_balance,
        mobile_money_balance_after=treasury.mobile_money_balance,
        recorded_by=recorded_by,
        recorded_at=fields.pop('recorded_at', None) or timezone.now(),
        **fields
    )


def _post(treasury, tx_type, direction, amount, recorded_by, effects=None, **fields):
    """Moves the balances for one ledger entry, saves the treasury and writes the entry."""
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero.", code='invalid_amount')
    _apply(treasury, tx_type, direction, amount, effects)
    treasury.save()
    return _write_entry(treasury, tx_type, direction, amount, recorded_by, **fields)


def _post_adjustment(treasury, account, difference, recorded_by, **fields):
    """Books a counted/expected difference on one account. Returns None when there is none."""
    if difference == 0:
        return None
    tx_type = T.REGISTRY_ADJUSTMENT if account == 'registry' else T.ADJUSTMENT
    return _post(treasury, tx_type, IN if difference > 0 else OUT, abs(difference), recorded_by,
                 effects={account: 1}, **fields)


def generate_transaction_receipt_number(direction, day=None):
    """CAISSE-YYYYMMDD-REC-0001 for money in, CAISSE-YYYYMMDD-DEP-0001 for money out."""
    day = day or school_today()
    prefix = f"CAISSE-{day:%Y%m%d}-"
    start, end = day_bounds(day)
    sequence = SafeTransactionModel.objects.filter(
        recorded_at__gte=start, recorded_at__lt=end, receipt_number__startswith=prefix
    ).count() + 1
    kind = 'REC' if direction == IN else 'DEP'
    return f"{prefix}{kind}-{str(sequence).zfill(4)}"


@transaction.atomic
def generate_payment_receipt_number(method, year=None):
    """CASH-2025-00001 / OM-2025-00001, sequential per method and year."""
    year = year or school_today().year
    prefix = 'CASH' if method == PaymentModel.Method.CASH else 'OM'
    counter, _ = ReceiptNumberGeneratorModel.objects.select_for_update().get_or_create(prefix=prefix, year=year)
    while True:
        counter.last_number += 1
        number = f"{prefix}-{year}-{str(counter.last_number).zfill(5)}"
        if not PaymentModel.objects.filter(receipt_number=number).exists():
            counter.save()
            return number


# ---------------------------------------------------------------------------
# Status and reports
# ---------------------------------------------------------------------------

def safe_status(treasury):
    if treasury.safe_balance < treasury.safe_threshold_min:
        return 'critical'
    if treasury.safe_balance < treasury.safe_threshold_min * 2:
        return 'warning'
    if treasury.safe_balance > treasury.safe_threshold_max:
        return 'excess'
    return 'optimal'


def _flow_totals(queryset):
    totals = queryset.aggregate(
        total_in=Sum('amount', filter=Q(direction=IN)),
        total_out=Sum('amount', filter=Q(direction=OUT)),
        count=Count('id'),
    )
    total_in = totals['total_in'] or Decimal('0')
    total_out = totals['total_out'] or Decimal('0')
    return {'total_in': total_in, 'total_out': total_out, 'net': total_in - total_out, 'count': totals['count']}


def treasury_status():
    treasury = get_or_create_treasury()
    today = school_today()
    start, end = day_bounds(today)
    today_summary = _flow_totals(SafeTransactionModel.objects.filter(recorded_at__gte=start, recorded_at__lt=end))
    return {
        'treasury': treasury,
        'status': safe_status(treasury),
        'total_liquid_assets': treasury.total_liquid_assets,
        'registry_open': treasury.registry_balance > 0,
        'today': today,
        'today_summary': today_summary,
        'today_verification': DailyVerificationModel.objects.filter(verification_date=today).first(),
    }


def daily_report(day):
    start, end = day_bounds(day)
    transactions = SafeTransactionModel.objects.filter(
        recorded_at__gte=start, recorded_at__lt=end
    ).select_related('recorded_by', 'student').order_by('recorded_at', 'id')

    previous = SafeTransactionModel.objects.filter(recorded_at__lt=start).order_by('-recorded_at', '-id').first()
    opening_balance = previous.safe_balance_after if previous else Decimal('0')
    last = transactions.last()
    closing_balance = last.safe_balance_after if last else opening_balance

    by_type = {}
    for row in transactions.values('type', 'direction').annotate(total=Sum('amount'), count=Count('id')):
        entry = by_type.setdefault(row['type'], {'count': 0, 'total_in': Decimal('0'), 'total_out': Decimal('0')})
        entry['count'] += row['count']
        entry['total_in' if row['direction'] == IN else 'total_out'] += row['total']

    return {
        'date': day,
        'opening_balance': opening_balance,
        'closing_balance': closing_balance,
        'summary': _flow_totals(transactions),
        'by_type': by_type,
        'transactions': list(transactions),
        'bank_transfers': list(BankTransferModel.objects.filter(transfer_date=day)),
        'verification': DailyVerificationModel.objects.filter(verification_date=day).first(),
    }


def find_negative_balances():
    """Ledger entries, and the live treasury row, showing a negative balance on any account."""
    field_filter = Q()
    for field in ACCOUNT_FIELDS.values():
        field_filter |= Q(**{f"{field}_after__lt": 0})
    entries = list(SafeTransactionModel.objects.filter(field_filter).order_by('recorded_at', 'id'))

    treasury = TreasuryBalanceModel.objects.first()
    negative_accounts = []
    if treasury:
        negative_accounts = [account for account, field in ACCOUNT_FIELDS.items() if getattr(treasury, field) < 0]
    return {'entries': entries, 'negative_accounts': negative_accounts}


def find_overpaid_enrollments():
    """Completed enrollments whose confirmed payments exceed the tuition fee, i.e. a negative balance due."""
    overpaid = []
    enrollments = EnrollmentModel.objects.filter(
        status=EnrollmentModel.Status.COMPLETED
    ).select_related('student', 'grade')
    for enrollment in enrollments:
        balance = enrollment.tuition_fee - confirmed_total(enrollment)
        if balance < 0:
            overpaid.append({'enrollment': enrollment, 'balance': balance})
    return overpaid


# ---------------------------------------------------------------------------
# Registry day cycle and transfers
# ---------------------------------------------------------------------------

def daily_opening(counted_safe, recorded_by, float_amount=None, notes=None):
    """
    Opens the registry for the day: the safe is counted and the float moves
    from the safe to the registry. A counting difference is booked first so
    the transfer starts from the counted amount.
    """
    counted_safe = Decimal(counted_safe)
    with transaction.atomic():
        treasury = _lock_treasury()
        if treasury.registry_balance != 0:
            raise ValidationError("The registry is already open. Close it before opening a new day.",
                                  code='registry_open', params={'registry_balance': treasury.registry_balance})

        float_amount = Decimal(float_amount) if float_amount is not None else treasury.registry_float_amount
        if float_amount <= 0:
            raise ValidationError("The registry float must be greater than zero.", code='invalid_amount')
        if counted_safe < float_amount:
            raise ValidationError(
                "The safe does not hold enough cash for the registry float.", code='insufficient_funds',
                params={'available': counted_safe, 'required': float_amount}
            )

        discrepancy = counted_safe - treasury.safe_balance
        adjustment = _post_adjustment(
            treasury, 'safe', discrepancy, recorded_by,
            description="Safe count difference at daily opening", notes=notes, reference_type='daily_opening'
        )
        opening = _post(
            treasury, T.SAFE_TO_REGISTRY, OUT, float_amount, recorded_by,
            description="Daily opening - registry float", notes=notes, reference_type='daily_opening'
        )

    logger.info(f"Registry opened by {recorded_by} with float {float_amount} (safe discrepancy {discrepancy})")
    return {'treasury': treasury, 'opening': opening, 'adjustment': adjustment, 'discrepancy': discrepancy}


def daily_closing(counted_registry, recorded_by, notes=None):
    """
    Closes the registry: its counted cash goes back to the safe. A counting
    difference is booked on the registry before the transfer.
    """
    counted_registry = Decimal(counted_registry)
    if counted_registry < 0:
        raise ValidationError("The counted amount cannot be negative.", code='invalid_amount')

    with transaction.atomic():
        treasury = _lock_treasury()
        if treasury.registry_balance == 0:
            raise ValidationError("The registry is not open.", code='registry_closed')

        expected = treasury.registry_balance
        discrepancy = counted_registry - expected
        adjustment = _post_adjustment(
            treasury, 'registry', discrepancy, recorded_by,
            description="Registry count difference at daily closing", notes=notes, reference_type='daily_closing'
        )
        closing = None
        if counted_registry > 0:
            closing = _post(
                treasury, T.REGISTRY_TO_SAFE, IN, counted_registry, recorded_by,
                description="Daily closing - registry to safe", notes=notes, reference_type='daily_closing'
            )

    logger.info(f"Registry closed by {recorded_by}: expected {expected}, counted {counted_registry}")
    return {
        'treasury': treasury, 'closing': closing, 'adjustment': adjustment,
        'expected': expected, 'discrepancy': discrepancy,
    }


def safe_transfer(direction, amount, notes, recorded_by):
    """Moves cash between the safe and the registry during the day."""
    notes = _require_note(notes)
    if direction == T.SAFE_TO_REGISTRY:
        ledger_direction, description = OUT, "Transfer from safe to registry"
    elif direction == T.REGISTRY_TO_SAFE:
        ledger_direction, description = IN, "Transfer from registry to safe"
    else:
        raise ValidationError("Unknown transfer direction.", code='invalid_direction')

    with transaction.atomic():
        treasury = _lock_treasury()
        entry = _post(treasury, direction, ledger_direction, amount, recorded_by,
                      description=description, notes=notes, reference_type='safe_transfer')

    logger.info(f"{description}: {amount} by {recorded_by}")
    return {'treasury': treasury, 'transaction': entry}


def record_bank_transfer(transfer_type, amount, recorded_by, bank_name='Ecobank', bank_reference=None,
                         carried_by=None, description=None, notes=None, transfer_date=None):
    """A deposit takes cash from the safe to the bank, a withdrawal brings it back."""
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero.", code='invalid_amount')
    if transfer_type == BankTransferModel.Type.DEPOSIT:
        tx_type, direction = T.BANK_DEPOSIT, OUT
        default_description = f"Bank deposit - {bank_name}"
    elif transfer_type == BankTransferModel.Type.WITHDRAWAL:
        tx_type, direction = T.BANK_WITHDRAWAL, IN
        default_description = f"Bank withdrawal - {bank_name}"
    else:
        raise ValidationError("Unknown bank transfer type.", code='invalid_type')

    with transaction.atomic():
        treasury = _lock_treasury()
        safe_before, bank_before = treasury.safe_balance, treasury.bank_balance
        _apply(treasury, tx_type, direction, amount)
        treasury.save()

        transfer = BankTransferModel.objects.create(
            type=transfer_type,
            amount=amount,
            bank_name=bank_name,
            bank_reference=bank_reference,
            description=description or default_description,
            carried_by=carried_by,
            transfer_date=transfer_date or school_today(),
            safe_balance_before=safe_before,
            safe_balance_after=treasury.safe_balance,
            bank_balance_before=bank_before,
            bank_balance_after=treasury.bank_balance,
            notes=notes,
            recorded_by=recorded_by,
        )
        entry = _write_entry(
            treasury, tx_type, direction, amount, recorded_by,
            description=transfer.description, receipt_number=bank_reference, notes=notes,
            reference_type='bank_transfer', reference_id=str(transfer.pk),
        )

    logger.info(f"Bank {transfer_type} of {amount} recorded by {recorded_by}")
    return {'treasury': treasury, 'transfer': transfer, 'transaction': entry}


def record_transaction(tx_type, amount, recorded_by, description=None, payer_name=None, beneficiary_name=None,
                       category=None, notes=None, student=None):
    """Other income, expenses paid from the safe, and Orange Money fees."""
    if tx_type not in MANUAL_TRANSACTION_DIRECTIONS:
        raise ValidationError("This transaction type cannot be recorded manually.", code='invalid_type')
    direction = MANUAL_TRANSACTION_DIRECTIONS[tx_type]

    with transaction.atomic():
        treasury = _lock_treasury()
        entry = _post(
            treasury, tx_type, direction, amount, recorded_by,
            description=description, payer_name=payer_name, beneficiary_name=beneficiary_name,
            category=category, notes=notes, student=student,
            receipt_number=generate_transaction_receipt_number(direction),
        )

    logger.info(f"{tx_type} of {amount} recorded by {recorded_by} ({entry.receipt_number})")
    return {'treasury': treasury, 'transaction': entry}


# ---------------------------------------------------------------------------
# Tuition payments
# ---------------------------------------------------------------------------

def confirmed_total(enrollment):
    return enrollment.payments.filter(
        status=PaymentModel.Status.CONFIRMED
    ).aggregate(total=Sum('amount'))['total'] or Decimal('0')


def update_schedule_status(enrollment):
    """A schedule is paid once the confirmed total covers it and every schedule before it."""
    total_paid = confirmed_total(enrollment)
    running = Decimal('0')
    now = timezone.now()
    for schedule in enrollment.payment_schedules.order_by('schedule_number'):
        running += schedule.amount
        is_paid = running <= total_paid
        if is_paid != schedule.is_paid:
            schedule.is_paid = is_paid
            schedule.paid_at = now if is_paid else None
            schedule.save(update_fields=['is_paid', 'paid_at'])


def record_payment(enrollment, amount, method, recorded_by, receipt_number=None, transaction_ref=None, notes=None,
                   payment_schedule=None):
    """
    Records a tuition payment. Cash goes into the registry, Orange Money into
    the mobile money account. Payments are confirmed on the spot.
    """
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero.", code='invalid_amount')
    if method not in PaymentModel.Method.values:
        raise ValidationError("Unknown payment method.", code='invalid_method')

    with transaction.atomic():
        enrollment = EnrollmentModel.objects.select_for_update().get(pk=enrollment.pk)
        if enrollment.status not in EnrollmentModel.PAYABLE_STATUSES:
            raise ValidationError("Payments can only be recorded for submitted or completed enrollments.",
                                  code='invalid_status', params={'status': enrollment.status})

        remaining = enrollment.tuition_fee - confirmed_total(enrollment)
        if amount > remaining:
            raise ValidationError(
                "The amount exceeds the remaining balance.", code='overpayment',
                params={'remaining': remaining, 'required': amount}
            )

        if receipt_number:
            if PaymentModel.objects.filter(receipt_number=receipt_number).exists():
                raise ValidationError("Receipt number %(receipt_number)s is already used.", code='duplicate_receipt',
                                      params={'receipt_number': receipt_number})
        else:
            receipt_number = generate_payment_receipt_number(method)

        if payment_schedule is None:
            payment_schedule = enrollment.payment_schedules.filter(is_paid=False).order_by('schedule_number').first()

        now = timezone.now()
        payment = PaymentModel.objects.create(
            enrollment=enrollment,
            payment_schedule=payment_schedule,
            amount=amount,
            method=method,
            status=PaymentModel.Status.CONFIRMED,
            receipt_number=receipt_number,
            transaction_ref=transaction_ref,
            notes=notes,
            recorded_by=recorded_by,
            confirmed_by=recorded_by,
            confirmed_at=now,
        )

        treasury = _lock_treasury()
        if method == PaymentModel.Method.CASH:
            tx_type, description = T.STUDENT_PAYMENT, f"Tuition payment - {receipt_number}"
        else:
            tx_type, description = T.MOBILE_MONEY_INCOME, f"Orange Money tuition payment - {receipt_number}"
        entry = _post(
            treasury, tx_type, IN, amount, recorded_by,
            description=description, receipt_number=receipt_number,
            reference_type='payment', reference_id=str(payment.pk),
            student=enrollment.student, payer_name=enrollment.father_name or enrollment.mother_name,
        )

        update_schedule_status(enrollment)

    logger.info(f"Payment {receipt_number} of {amount} ({method}) recorded for {enrollment.enrollment_number}")
    return {'payment': payment, 'transaction': entry, 'treasury': treasury}


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

def _require_expense_status(expense, status, message):
    if expense.status != status:
        raise ValidationError(message, code='invalid_status', params={'status': expense.status})


def update_expense(form, expense):
    """Saves an ExpenseForm bound to a pending expense."""
    _require_expense_status(expense, ExpenseModel.Status.PENDING, "Only pending expenses can be changed.")
    return form.save()


def delete_expense(expense, deleted_by):
    _require_expense_status(expense, ExpenseModel.Status.PENDING, "Only pending expenses can be deleted.")
    logger.info(f"Expense {expense.pk} ({expense.description}) deleted by {deleted_by}")
    expense.delete()


def _pay_expense(expense, paid_by, notes=None):
    if expense.method == ExpenseModel.Method.CASH:
        tx_type, description = T.EXPENSE_PAYMENT, f"Expense: {expense.description}"
    else:
        tx_type, description = T.MOBILE_MONEY_PAYMENT, f"Orange Money expense: {expense.description}"

    treasury = _lock_treasury()
    entry = _post(
        treasury, tx_type, OUT, expense.amount, paid_by,
        description=description, category=expense.category, beneficiary_name=expense.vendor_name,
        notes=notes, reference_type='expense', reference_id=str(expense.pk),
        receipt_number=generate_transaction_receipt_number(OUT),
    )
    expense.status = ExpenseModel.Status.PAID
    expense.paid_by = paid_by
    expense.paid_at = timezone.now()
    expense.save()
    return treasury, entry


def approve_expense(expense, approved_by):
    """
    Approves a pending expense. An Orange Money expense is paid from the
    mobile money account in the same step; a cash expense waits for
    pay_expense.
    """
    with transaction.atomic():
        expense = ExpenseModel.objects.select_for_update().get(pk=expense.pk)
        _require_expense_status(expense, ExpenseModel.Status.PENDING, "Only pending expenses can be approved.")
        expense.status = ExpenseModel.Status.APPROVED
        expense.approved_by = approved_by
        expense.approved_at = timezone.now()
        expense.save()

        treasury, entry = None, None
        if expense.method == ExpenseModel.Method.ORANGE_MONEY:
            treasury, entry = _pay_expense(expense, approved_by)

    logger.info(f"Expense {expense.pk} of {expense.amount} approved by {approved_by}")
    return {'expense': expense, 'transaction': entry, 'treasury': treasury}


def reject_expense(expense, rejected_by, reason):
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError("A rejection reason is required.", code='reason_required')
    with transaction.atomic():
        expense = ExpenseModel.objects.select_for_update().get(pk=expense.pk)
        _require_expense_status(expense, ExpenseModel.Status.PENDING, "Only pending expenses can be rejected.")
        expense.status = ExpenseModel.Status.REJECTED
        expense.rejection_reason = reason
        expense.save()
    logger.info(f"Expense {expense.pk} rejected by {rejected_by}: {reason}")
    return expense


def pay_expense(expense, paid_by, notes=None):
    """Pays an approved cash expense out of the safe."""
    with transaction.atomic():
        expense = ExpenseModel.objects.select_for_update().get(pk=expense.pk)
        _require_expense_status(expense, ExpenseModel.Status.APPROVED, "Only approved expenses can be paid.")
        treasury, entry = _pay_expense(expense, paid_by, notes=notes)

    logger.info(f"Expense {expense.pk} of {expense.amount} paid by {paid_by} ({entry.receipt_number})")
    return {'expense': expense, 'transaction': entry, 'treasury': treasury}


# ---------------------------------------------------------------------------
# Corrections
# ---------------------------------------------------------------------------

def reverse_transaction(transaction_id, reason, reversed_by, correct_amount=None, correct_method=None):
    """
    Cancels a ledger entry with an offsetting entry. History is never edited.

    When the entry belongs to a tuition payment the payment is marked
    reversed; `correct_amount` (and optionally `correct_method`) re-records
    it with the right figures.
    """
    reason = _require_note(reason, label="Reason")

    with transaction.atomic():
        treasury = _lock_treasury()
        original = SafeTransactionModel.objects.select_for_update().get(pk=transaction_id)

        if original.is_reversal:
            raise ValidationError("A reversal cannot be reversed.", code='is_reversal')
        if original.reversals.exists():
            raise ValidationError("This transaction has already been reversed.", code='already_reversed')
        if original.type not in REVERSAL_TYPES:
            raise ValidationError("This transaction cannot be reversed. Record an adjustment instead.",
                                  code='not_reversible')

        correction_allowed = original.type in (T.STUDENT_PAYMENT, T.MOBILE_MONEY_INCOME)
        if correct_amount is not None and not correction_allowed:
            raise ValidationError("Only payments can be corrected.", code='not_correctable')

        now = timezone.now()
        reversal = _post(
            treasury, REVERSAL_TYPES[original.type], OUT if original.direction == IN else IN, original.amount,
            reversed_by,
            description=f"Reversal: {original.description or original.get_type_display()}",
            receipt_number=original.receipt_number,
            reference_type=original.reference_type, reference_id=original.reference_id,
            student=original.student, notes=reason,
            is_reversal=True, reversal_reason=reason, original_transaction=original,
            reversed_by=reversed_by, reversed_at=now,
        )

        payment = None
        if original.reference_type == 'payment' and original.reference_id:
            payment = PaymentModel.objects.select_for_update().filter(pk=original.reference_id).first()
            if payment:
                payment.status = PaymentModel.Status.REVERSED
                payment.save(update_fields=['status'])
                update_schedule_status(payment.enrollment)

        if original.reference_type == 'expense' and original.reference_id:
            # the expense is owed again
            ExpenseModel.objects.filter(pk=original.reference_id).update(
                status=ExpenseModel.Status.APPROVED, paid_by=None, paid_at=None, updated_at=now
            )

        correction = None
        if correct_amount is not None:
            method = correct_method or (
                PaymentModel.Method.CASH if original.type == T.STUDENT_PAYMENT else PaymentModel.Method.ORANGE_MONEY
            )
            if payment:
                correction = record_payment(
                    payment.enrollment, correct_amount, method, reversed_by,
                    transaction_ref=payment.transaction_ref,
                    notes=f"Correction of {payment.receipt_number}: {reason}",
                )['transaction']
            else:
                tx_type = T.STUDENT_PAYMENT if method == PaymentModel.Method.CASH else T.MOBILE_MONEY_INCOME
                treasury = _lock_treasury()
                correction = _post(
                    treasury, tx_type, IN, correct_amount, reversed_by,
                    description=f"Correction of {original.receipt_number or original.pk}",
                    student=original.student, notes=reason,
                )
            treasury.refresh_from_db()

    logger.warning(f"Transaction {original.pk} ({original.type} {original.amount}) reversed by {reversed_by}: "
                   f"{reason}")
    return {'treasury': treasury, 'reversal': reversal, 'correction': correction, 'payment': payment}


def record_daily_verification(counted_balance, verified_by, explanation=None):
    """
    The daily count of the safe. A difference needs an explanation and resets
    the safe balance to what was counted.
    """
    counted_balance = Decimal(counted_balance)
    if counted_balance < 0:
        raise ValidationError("The counted amount cannot be negative.", code='invalid_amount')
    today = school_today()

    with transaction.atomic():
        treasury = _lock_treasury()
        if DailyVerificationModel.objects.filter(verification_date=today).exists():
            raise ValidationError("The safe has already been verified today.", code='already_verified')

        expected = treasury.safe_balance
        discrepancy = counted_balance - expected
        explanation = (explanation or '').strip()
        if discrepancy != 0 and not explanation:
            raise ValidationError("An explanation is required when the count does not match.",
                                  code='explanation_required', params={'discrepancy': discrepancy})

        verification = DailyVerificationModel.objects.create(
            verification_date=today,
            expected_balance=expected,
            counted_balance=counted_balance,
            discrepancy=discrepancy,
            status=(DailyVerificationModel.Status.MATCHED if discrepancy == 0
                    else DailyVerificationModel.Status.DISCREPANCY),
            discrepancy_note=explanation or None,
            verified_by=verified_by,
        )
        adjustment = _post_adjustment(
            treasury, 'safe', discrepancy, verified_by,
            description="Safe count difference at daily verification", notes=explanation or None,
            reference_type='daily_verification', reference_id=str(verification.pk),
        )

        treasury.last_verified_at = timezone.now()
        treasury.last_verified_by = verified_by
        treasury.save(update_fields=['last_verified_at', 'last_verified_by', 'updated_at'])

    if discrepancy:
        logger.warning(f"Safe verification on {today}: expected {expected}, counted {counted_balance}")
    else:
        logger.info(f"Safe verification on {today} matched ({counted_balance})")
    return {'treasury': treasury, 'verification': verification, 'adjustment': adjustment}


def review_verification(verification, reviewed_by, review_note):
    if verification.status == DailyVerificationModel.Status.REVIEWED:
        raise ValidationError("This verification has already been reviewed.", code='already_reviewed')
    verification.status = DailyVerificationModel.Status.REVIEWED
    verification.reviewed_by = reviewed_by
    verification.reviewed_at = timezone.now()
    verification.review_note = (review_note or '').strip() or None
    verification.save()
    return verification


def adjust_balances(reason, adjusted_by, **values):
    """
    Director-level correction of balances, thresholds and the registry float.
    Each balance that changes gets its own adjustment entry.
    """
    reason = _require_note(reason, label="Reason")
    balance_fields = {field: account for account, field in ACCOUNT_FIELDS.items()}
    setting_fields = ('registry_float_amount', 'safe_threshold_min', 'safe_threshold_max')

    with transaction.atomic():
        treasury = TreasuryBalanceModel.objects.select_for_update().first() or TreasuryBalanceModel.objects.create()

        for field in setting_fields:
            if values.get(field) is not None:
                setattr(treasury, field, Decimal(values[field]))
        if treasury.safe_threshold_min >= treasury.safe_threshold_max:
            raise ValidationError("The minimum safe threshold must be below the maximum.", code='invalid_threshold')
        treasury.save()

        entries = []
        for field, account in balance_fields.items():
            new_value = values.get(field)
            if new_value is None:
                continue
            new_value = Decimal(new_value)
            if new_value < 0:
                raise ValidationError("Balances cannot be negative.", code='invalid_amount')
            entry = _post_adjustment(
                treasury, account, new_value - getattr(treasury, field), adjusted_by,
                description=f"Manual {ACCOUNT_LABELS[account]} balance adjustment", notes=reason,
                reference_type='balance_adjustment',
            )
            if entry:
                entries.append(entry)

    logger.warning(f"Treasury balances adjusted by {adjusted_by}: {reason}")
    return {'treasury': treasury, 'transactions': entries}


def initialize_registry(amount, recorded_by, notes=None):
    """One-off move of cash from the safe into an empty registry, used when the registry is first set up."""
    with transaction.atomic():
        treasury = _lock_treasury()
        if treasury.registry_balance != 0:
            raise ValidationError("The registry already holds cash.", code='registry_open')
        entry = _post(treasury, T.SAFE_TO_REGISTRY, OUT, amount, recorded_by,
                      description="Registry initialisation", notes=notes, reference_type='registry_init')
    logger.info(f"Registry initialised with {amount}")
    return {'treasury': treasury, 'transaction': entry}
