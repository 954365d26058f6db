import json
import os
import tempfile
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.urls import reverse

from admin_site.testing import create_school_year, create_grade, create_user
from student.models import EnrollmentModel, PaymentScheduleModel
from student.utils import calculate_payment_schedules
from finance import services
from finance.models import TreasuryBalanceModel, SafeTransactionModel, PaymentModel, DailyVerificationModel, \
    BankTransferModel, ExpenseModel
from finance.forms import ExpenseForm
from finance.utility import format_gnf, school_today

T = SafeTransactionModel.Type


def create_enrollment(grade, status=EnrollmentModel.Status.SUBMITTED, with_schedules=True, **kwargs):
    enrollment = EnrollmentModel.objects.create(
        school_year=grade.school_year,
        grade=grade,
        first_name=kwargs.pop('first_name', 'Mariama'),
        last_name=kwargs.pop('last_name', 'Diallo'),
        father_name='Ibrahima Diallo',
        father_phone='622000000',
        original_tuition_fee=grade.tuition_fee,
        status=status,
        **kwargs
    )
    enrollment.enrollment_number = enrollment.generate_enrollment_number()
    enrollment.save()
    if with_schedules:
        for schedule in calculate_payment_schedules(enrollment.tuition_fee, grade.school_year.start_date):
            PaymentScheduleModel.objects.create(enrollment=enrollment, **schedule)
    return enrollment


class TreasuryTestCase(TestCase):

    def setUp(self):
        self.user = create_user('accountant')
        self.school_year = create_school_year()
        self.grade = create_grade(self.school_year, tuition_fee=Decimal('900000'))
        self.treasury = TreasuryBalanceModel.objects.create(safe_balance=Decimal('10000000'))

    def refresh(self):
        self.treasury.refresh_from_db()
        return self.treasury

    def assert_entry_matches_treasury(self, entry):
        treasury = self.refresh()
        self.assertEqual(entry.registry_balance_after, treasury.registry_balance)
        self.assertEqual(entry.safe_balance_after, treasury.safe_balance)
        self.assertEqual(entry.bank_balance_after, treasury.bank_balance)
        self.assertEqual(entry.mobile_money_balance_after, treasury.mobile_money_balance)


class DailyRegistryCycleTests(TreasuryTestCase):

    def test_opening_moves_float_from_safe_to_registry(self):
        result = services.daily_opening(Decimal('10000000'), self.user)

        treasury = self.refresh()
        self.assertEqual(treasury.registry_balance, Decimal('2000000'))
        self.assertEqual(treasury.safe_balance, Decimal('8000000'))
        self.assertIsNone(result['adjustment'])
        self.assertEqual(result['opening'].type, T.SAFE_TO_REGISTRY)
        self.assertEqual(result['opening'].direction, SafeTransactionModel.Direction.OUT)
        self.assert_entry_matches_treasury(result['opening'])

    def test_opening_books_count_difference_before_transfer(self):
        result = services.daily_opening(Decimal('9500000'), self.user, float_amount=Decimal('1000000'))

        treasury = self.refresh()
        self.assertEqual(treasury.safe_balance, Decimal('8500000'))
        self.assertEqual(treasury.registry_balance, Decimal('1000000'))
        self.assertEqual(result['discrepancy'], Decimal('-500000'))
        adjustment = result['adjustment']
        self.assertEqual(adjustment.type, T.ADJUSTMENT)
        self.assertEqual(adjustment.amount, Decimal('500000'))
        self.assertEqual(adjustment.safe_balance_after, Decimal('9500000'))
        self.assertLess(adjustment.pk, result['opening'].pk)

    def test_opening_refused_when_registry_is_open(self):
        services.daily_opening(Decimal('10000000'), self.user)
        with self.assertRaises(ValidationError) as ctx:
            services.daily_opening(Decimal('8000000'), self.user)
        self.assertEqual(ctx.exception.code, 'registry_open')

    def test_opening_refused_when_safe_cannot_cover_float(self):
        with self.assertRaises(ValidationError) as ctx:
            services.daily_opening(Decimal('1500000'), self.user)
        self.assertEqual(ctx.exception.code, 'insufficient_funds')
        self.assertEqual(ctx.exception.params['required'], Decimal('2000000'))
        self.assertEqual(SafeTransactionModel.objects.count(), 0)

    def test_closing_returns_counted_registry_to_safe(self):
        services.daily_opening(Decimal('10000000'), self.user)
        enrollment = create_enrollment(self.grade)
        services.record_payment(enrollment, Decimal('300000'), PaymentModel.Method.CASH, self.user)

        result = services.daily_closing(Decimal('2250000'), self.user)

        treasury = self.refresh()
        self.assertEqual(result['expected'], Decimal('2300000'))
        self.assertEqual(result['discrepancy'], Decimal('-50000'))
        self.assertEqual(result['adjustment'].type, T.REGISTRY_ADJUSTMENT)
        self.assertEqual(result['closing'].amount, Decimal('2250000'))
        self.assertEqual(treasury.registry_balance, Decimal('0'))
        self.assertEqual(treasury.safe_balance, Decimal('10250000'))
        self.assert_entry_matches_treasury(result['closing'])

    def test_closing_refused_when_registry_closed(self):
        with self.assertRaises(ValidationError) as ctx:
            services.daily_closing(Decimal('0'), self.user)
        self.assertEqual(ctx.exception.code, 'registry_closed')

    def test_closing_with_empty_count_writes_no_transfer(self):
        services.daily_opening(Decimal('10000000'), self.user)
        result = services.daily_closing(Decimal('0'), self.user)
        self.assertIsNone(result['closing'])
        self.assertEqual(self.refresh().registry_balance, Decimal('0'))


class TransferTests(TreasuryTestCase):

    def test_safe_transfer_requires_notes(self):
        with self.assertRaises(ValidationError) as ctx:
            services.safe_transfer(T.SAFE_TO_REGISTRY, Decimal('100000'), 'short', self.user)
        self.assertEqual(ctx.exception.code, 'note_too_short')

    def test_safe_transfer_checks_source_balance(self):
        with self.assertRaises(ValidationError) as ctx:
            services.safe_transfer(T.REGISTRY_TO_SAFE, Decimal('100000'), 'Change for the cashier', self.user)
        self.assertEqual(ctx.exception.params['account'], 'registry')
        self.assertEqual(ctx.exception.params['available'], Decimal('0'))

    def test_transfers_keep_total_liquid_assets(self):
        total = self.treasury.total_liquid_assets
        services.safe_transfer(T.SAFE_TO_REGISTRY, Decimal('400000'), 'Extra change for the registry', self.user)
        services.record_bank_transfer(BankTransferModel.Type.DEPOSIT, Decimal('3000000'), self.user)
        services.record_bank_transfer(BankTransferModel.Type.WITHDRAWAL, Decimal('1000000'), self.user)
        treasury = self.refresh()
        self.assertEqual(treasury.total_liquid_assets, total)
        self.assertEqual(treasury.bank_balance, Decimal('2000000'))
        self.assertEqual(treasury.registry_balance, Decimal('400000'))

    def test_bank_transfer_records_before_and_after(self):
        result = services.record_bank_transfer(BankTransferModel.Type.DEPOSIT, Decimal('3000000'), self.user,
                                               bank_reference='ECO-123')
        transfer = result['transfer']
        self.assertEqual(transfer.safe_balance_before, Decimal('10000000'))
        self.assertEqual(transfer.safe_balance_after, Decimal('7000000'))
        self.assertEqual(transfer.bank_balance_after, Decimal('3000000'))
        self.assertEqual(result['transaction'].reference_id, str(transfer.pk))

    def test_bank_withdrawal_needs_bank_funds(self):
        with self.assertRaises(ValidationError) as ctx:
            services.record_bank_transfer(BankTransferModel.Type.WITHDRAWAL, Decimal('1'), self.user)
        self.assertEqual(ctx.exception.params['account'], 'bank account')

    def test_expense_gets_daily_receipt_number(self):
        result = services.record_transaction(T.EXPENSE_PAYMENT, Decimal('150000'), self.user,
                                             description='Office supplies')
        services.record_transaction(T.OTHER_INCOME, Decimal('50000'), self.user, description='Photocopies')

        day = school_today().strftime('%Y%m%d')
        self.assertEqual(result['transaction'].receipt_number, f"CAISSE-{day}-DEP-0001")
        self.assertEqual(SafeTransactionModel.objects.get(type=T.OTHER_INCOME).receipt_number,
                         f"CAISSE-{day}-REC-0002")
        self.assertEqual(self.refresh().safe_balance, Decimal('9900000'))

    def test_mobile_money_fee_needs_mobile_money_funds(self):
        with self.assertRaises(ValidationError):
            services.record_transaction(T.MOBILE_MONEY_FEE, Decimal('1000'), self.user, description='OM fee')

    def test_transfer_types_cannot_be_recorded_manually(self):
        with self.assertRaises(ValidationError) as ctx:
            services.record_transaction(T.SAFE_TO_REGISTRY, Decimal('1000'), self.user)
        self.assertEqual(ctx.exception.code, 'invalid_type')


class PaymentTests(TreasuryTestCase):

    def setUp(self):
        super().setUp()
        self.enrollment = create_enrollment(self.grade)

    def test_cash_payment_goes_to_registry(self):
        result = services.record_payment(self.enrollment, Decimal('300000'), PaymentModel.Method.CASH, self.user)

        payment = result['payment']
        self.assertEqual(payment.status, PaymentModel.Status.CONFIRMED)
        self.assertEqual(payment.receipt_number, f"CASH-{school_today().year}-00001")
        self.assertEqual(self.refresh().registry_balance, Decimal('300000'))
        self.assertEqual(result['transaction'].type, T.STUDENT_PAYMENT)
        self.assertEqual(result['transaction'].reference_id, str(payment.pk))

    def test_orange_money_payment_goes_to_mobile_money(self):
        services.record_payment(self.enrollment, Decimal('100000'), PaymentModel.Method.ORANGE_MONEY, self.user,
                                transaction_ref='OM123456')
        treasury = self.refresh()
        self.assertEqual(treasury.mobile_money_balance, Decimal('100000'))
        self.assertEqual(treasury.registry_balance, Decimal('0'))
        self.assertTrue(PaymentModel.objects.get().receipt_number.startswith('OM-'))

    def test_schedules_paid_by_running_total(self):
        services.record_payment(self.enrollment, Decimal('300000'), PaymentModel.Method.CASH, self.user)
        services.record_payment(self.enrollment, Decimal('200000'), PaymentModel.Method.CASH, self.user)

        paid = list(self.enrollment.payment_schedules.order_by('schedule_number').values_list('is_paid', flat=True))
        self.assertEqual(paid, [True, False, False])

        services.record_payment(self.enrollment, Decimal('100000'), PaymentModel.Method.CASH, self.user)
        paid = list(self.enrollment.payment_schedules.order_by('schedule_number').values_list('is_paid', flat=True))
        self.assertEqual(paid, [True, True, False])

    def test_overpayment_refused(self):
        services.record_payment(self.enrollment, Decimal('800000'), PaymentModel.Method.CASH, self.user)
        with self.assertRaises(ValidationError) as ctx:
            services.record_payment(self.enrollment, Decimal('100001'), PaymentModel.Method.CASH, self.user)
        self.assertEqual(ctx.exception.code, 'overpayment')
        self.assertEqual(ctx.exception.params['remaining'], Decimal('100000'))

    def test_draft_enrollment_cannot_be_paid(self):
        draft = create_enrollment(self.grade, status=EnrollmentModel.Status.DRAFT, with_schedules=False)
        with self.assertRaises(ValidationError) as ctx:
            services.record_payment(draft, Decimal('100000'), PaymentModel.Method.CASH, self.user)
        self.assertEqual(ctx.exception.code, 'invalid_status')

    def test_duplicate_receipt_number_refused(self):
        services.record_payment(self.enrollment, Decimal('100000'), PaymentModel.Method.CASH, self.user,
                                receipt_number='R-1')
        with self.assertRaises(ValidationError):
            services.record_payment(self.enrollment, Decimal('100000'), PaymentModel.Method.CASH, self.user,
                                    receipt_number='R-1')


class ReversalTests(TreasuryTestCase):

    def setUp(self):
        super().setUp()
        self.enrollment = create_enrollment(self.grade)
        self.payment_result = services.record_payment(
            self.enrollment, Decimal('300000'), PaymentModel.Method.CASH, self.user
        )

    def test_payment_reversal_refunds_from_safe(self):
        entry = self.payment_result['transaction']
        result = services.reverse_transaction(entry.pk, 'Payment recorded twice', self.user)

        reversal = result['reversal']
        self.assertEqual(reversal.type, T.REVERSAL_STUDENT_PAYMENT)
        self.assertEqual(reversal.direction, SafeTransactionModel.Direction.OUT)
        self.assertTrue(reversal.is_reversal)
        self.assertEqual(reversal.original_transaction, entry)
        treasury = self.refresh()
        self.assertEqual(treasury.safe_balance, Decimal('9700000'))
        self.assertEqual(treasury.registry_balance, Decimal('300000'))

        payment = self.payment_result['payment']
        payment.refresh_from_db()
        self.assertEqual(payment.status, PaymentModel.Status.REVERSED)
        self.assertFalse(self.enrollment.payment_schedules.get(schedule_number=1).is_paid)

    def test_transaction_reversed_only_once(self):
        entry = self.payment_result['transaction']
        result = services.reverse_transaction(entry.pk, 'Payment recorded twice', self.user)
        with self.assertRaises(ValidationError) as ctx:
            services.reverse_transaction(entry.pk, 'Payment recorded twice', self.user)
        self.assertEqual(ctx.exception.code, 'already_reversed')
        with self.assertRaises(ValidationError) as ctx:
            services.reverse_transaction(result['reversal'].pk, 'Undo the reversal please', self.user)
        self.assertEqual(ctx.exception.code, 'is_reversal')

    def test_transfers_are_not_reversible(self):
        entry = services.safe_transfer(T.SAFE_TO_REGISTRY, Decimal('100000'), 'Change for the cashier',
                                       self.user)['transaction']
        with self.assertRaises(ValidationError) as ctx:
            services.reverse_transaction(entry.pk, 'Wrong amount moved', self.user)
        self.assertEqual(ctx.exception.code, 'not_reversible')

    def test_reason_is_required(self):
        with self.assertRaises(ValidationError):
            services.reverse_transaction(self.payment_result['transaction'].pk, 'oops', self.user)

    def test_correction_records_new_payment(self):
        entry = self.payment_result['transaction']
        result = services.reverse_transaction(entry.pk, 'Amount typed incorrectly', self.user,
                                              correct_amount=Decimal('250000'))

        self.assertEqual(result['correction'].amount, Decimal('250000'))
        confirmed = PaymentModel.objects.filter(enrollment=self.enrollment, status=PaymentModel.Status.CONFIRMED)
        self.assertEqual(confirmed.count(), 1)
        self.assertEqual(confirmed.get().amount, Decimal('250000'))
        treasury = self.refresh()
        self.assertEqual(treasury.registry_balance, Decimal('550000'))
        self.assertEqual(treasury.safe_balance, Decimal('9700000'))

    def test_only_payments_can_be_corrected(self):
        entry = services.record_transaction(T.EXPENSE_PAYMENT, Decimal('10000'), self.user,
                                            description='Chalk')['transaction']
        with self.assertRaises(ValidationError) as ctx:
            services.reverse_transaction(entry.pk, 'Wrong expense amount', self.user, correct_amount=Decimal('5000'))
        self.assertEqual(ctx.exception.code, 'not_correctable')

    def test_expense_reversal_returns_cash_to_safe(self):
        entry = services.record_transaction(T.EXPENSE_PAYMENT, Decimal('10000'), self.user,
                                            description='Chalk')['transaction']
        result = services.reverse_transaction(entry.pk, 'Expense was cancelled', self.user)
        self.assertEqual(result['reversal'].direction, SafeTransactionModel.Direction.IN)
        self.assertEqual(self.refresh().safe_balance, Decimal('10000000'))

    def test_bank_deposit_reversal_moves_cash_back_to_safe(self):
        entry = services.record_bank_transfer(BankTransferModel.Type.DEPOSIT, Decimal('3000000'),
                                              self.user)['transaction']
        result = services.reverse_transaction(entry.pk, 'Deposit was never made', self.user)

        self.assertEqual(result['reversal'].type, T.REVERSAL_BANK_DEPOSIT)
        self.assertEqual(result['reversal'].direction, SafeTransactionModel.Direction.IN)
        treasury = self.refresh()
        self.assertEqual(treasury.safe_balance, Decimal('10000000'))
        self.assertEqual(treasury.bank_balance, Decimal('0'))
        self.assert_entry_matches_treasury(result['reversal'])

    def test_mobile_money_income_reversal(self):
        payment_result = services.record_payment(self.enrollment, Decimal('100000'), PaymentModel.Method.ORANGE_MONEY,
                                                 self.user, transaction_ref='OM-778899')
        entry = payment_result['transaction']
        self.assertEqual(entry.type, T.MOBILE_MONEY_INCOME)

        result = services.reverse_transaction(entry.pk, 'Transfer was cancelled', self.user)
        self.assertEqual(result['reversal'].type, T.REVERSAL_MOBILE_MONEY)
        self.assertEqual(result['reversal'].direction, SafeTransactionModel.Direction.OUT)
        self.assertEqual(self.refresh().mobile_money_balance, Decimal('0'))
        payment_result['payment'].refresh_from_db()
        self.assertEqual(payment_result['payment'].status, PaymentModel.Status.REVERSED)

    def test_mobile_money_fee_reversal(self):
        services.record_payment(self.enrollment, Decimal('100000'), PaymentModel.Method.ORANGE_MONEY, self.user,
                                transaction_ref='OM-112233')
        entry = services.record_transaction(T.MOBILE_MONEY_FEE, Decimal('1000'), self.user,
                                            description='Withdrawal fee')['transaction']
        self.assertEqual(self.refresh().mobile_money_balance, Decimal('99000'))

        result = services.reverse_transaction(entry.pk, 'Fee was refunded by the operator', self.user)
        self.assertEqual(result['reversal'].type, T.REVERSAL_MOBILE_MONEY)
        self.assertEqual(result['reversal'].direction, SafeTransactionModel.Direction.IN)
        self.assertEqual(self.refresh().mobile_money_balance, Decimal('100000'))

    def test_reversal_cannot_be_reversed(self):
        entry = services.record_transaction(T.OTHER_INCOME, Decimal('50000'), self.user,
                                            description='Photocopies')['transaction']
        reversal = services.reverse_transaction(entry.pk, 'Income was counted twice', self.user)['reversal']
        safe_balance = self.refresh().safe_balance

        with self.assertRaises(ValidationError) as ctx:
            services.reverse_transaction(reversal.pk, 'Restore the original income', self.user)
        self.assertEqual(ctx.exception.code, 'is_reversal')
        self.assertEqual(self.refresh().safe_balance, safe_balance)
        self.assertEqual(SafeTransactionModel.objects.count(), 3)


class ExpenseTests(TreasuryTestCase):

    def create_expense(self, amount='150000', method=ExpenseModel.Method.CASH, **kwargs):
        return ExpenseModel.objects.create(
            category=kwargs.pop('category', ExpenseModel.Category.SUPPLIES),
            description=kwargs.pop('description', 'Chalk and markers'),
            amount=Decimal(amount),
            method=method,
            expense_date=school_today(),
            requested_by=self.user,
            **kwargs
        )

    def test_cash_expense_is_approved_then_paid_from_safe(self):
        expense = self.create_expense(vendor_name='Librairie Kaloum')
        result = services.approve_expense(expense, self.user)
        self.assertEqual(result['expense'].status, ExpenseModel.Status.APPROVED)
        self.assertIsNone(result['transaction'])
        self.assertEqual(self.refresh().safe_balance, Decimal('10000000'))

        result = services.pay_expense(expense, self.user, notes='Paid at the counter')
        expense.refresh_from_db()
        self.assertEqual(expense.status, ExpenseModel.Status.PAID)
        self.assertEqual(expense.paid_by, self.user)
        entry = result['transaction']
        self.assertEqual(entry.type, T.EXPENSE_PAYMENT)
        self.assertEqual(entry.direction, SafeTransactionModel.Direction.OUT)
        self.assertEqual((entry.reference_type, entry.reference_id), ('expense', str(expense.pk)))
        self.assertEqual(entry.beneficiary_name, 'Librairie Kaloum')
        self.assertTrue(entry.receipt_number.endswith('-DEP-0001'))
        self.assertEqual(self.refresh().safe_balance, Decimal('9850000'))
        self.assert_entry_matches_treasury(entry)

    def test_orange_money_expense_paid_on_approval(self):
        TreasuryBalanceModel.objects.filter(pk=self.treasury.pk).update(mobile_money_balance=Decimal('200000'))
        expense = self.create_expense(amount='50000', method=ExpenseModel.Method.ORANGE_MONEY,
                                      category=ExpenseModel.Category.COMMUNICATION, description='Phone credit')

        result = services.approve_expense(expense, self.user)
        self.assertEqual(result['expense'].status, ExpenseModel.Status.PAID)
        self.assertEqual(result['transaction'].type, T.MOBILE_MONEY_PAYMENT)
        treasury = self.refresh()
        self.assertEqual(treasury.mobile_money_balance, Decimal('150000'))
        self.assertEqual(treasury.safe_balance, Decimal('10000000'))

    def test_orange_money_expense_needs_funds(self):
        expense = self.create_expense(method=ExpenseModel.Method.ORANGE_MONEY)
        with self.assertRaises(ValidationError) as ctx:
            services.approve_expense(expense, self.user)
        self.assertEqual(ctx.exception.code, 'insufficient_funds')
        expense.refresh_from_db()
        self.assertEqual(expense.status, ExpenseModel.Status.PENDING)
        self.assertFalse(SafeTransactionModel.objects.exists())

    def test_cash_expense_needs_safe_funds(self):
        expense = self.create_expense(amount='20000000')
        services.approve_expense(expense, self.user)
        with self.assertRaises(ValidationError) as ctx:
            services.pay_expense(expense, self.user)
        self.assertEqual(ctx.exception.params['account'], 'safe')
        expense.refresh_from_db()
        self.assertEqual(expense.status, ExpenseModel.Status.APPROVED)

    def test_only_approved_expenses_are_paid(self):
        expense = self.create_expense()
        with self.assertRaises(ValidationError) as ctx:
            services.pay_expense(expense, self.user)
        self.assertEqual(ctx.exception.code, 'invalid_status')

    def test_only_pending_expenses_change(self):
        expense = self.create_expense()
        services.approve_expense(expense, self.user)
        expense.refresh_from_db()

        form = ExpenseForm({'category': 'supplies', 'description': 'Chalk', 'amount': '1000', 'method': 'cash',
                            'expense_date': school_today().isoformat()}, instance=expense)
        self.assertTrue(form.is_valid(), form.errors)
        with self.assertRaises(ValidationError):
            services.update_expense(form, expense)
        with self.assertRaises(ValidationError) as ctx:
            services.delete_expense(expense, self.user)
        self.assertEqual(ctx.exception.code, 'invalid_status')
        self.assertTrue(ExpenseModel.objects.filter(pk=expense.pk).exists())

    def test_pending_expense_can_be_deleted(self):
        expense = self.create_expense()
        services.delete_expense(expense, self.user)
        self.assertFalse(ExpenseModel.objects.exists())

    def test_rejection_needs_reason(self):
        expense = self.create_expense()
        with self.assertRaises(ValidationError) as ctx:
            services.reject_expense(expense, self.user, '  ')
        self.assertEqual(ctx.exception.code, 'reason_required')

        expense = services.reject_expense(expense, self.user, 'Not in the budget')
        self.assertEqual(expense.status, ExpenseModel.Status.REJECTED)
        with self.assertRaises(ValidationError):
            services.approve_expense(expense, self.user)

    def test_reversed_payment_makes_expense_payable_again(self):
        expense = self.create_expense()
        services.approve_expense(expense, self.user)
        entry = services.pay_expense(expense, self.user)['transaction']

        services.reverse_transaction(entry.pk, 'Vendor returned the cash', self.user)
        expense.refresh_from_db()
        self.assertEqual(expense.status, ExpenseModel.Status.APPROVED)
        self.assertIsNone(expense.paid_at)
        self.assertEqual(self.refresh().safe_balance, Decimal('10000000'))

        services.pay_expense(expense, self.user)
        self.assertEqual(self.refresh().safe_balance, Decimal('9850000'))


class ExpenseApiTests(TreasuryTestCase):

    def setUp(self):
        super().setUp()
        self.director = create_user('director', permissions=[
            'finance.view_expensemodel', 'finance.add_expensemodel', 'finance.change_expensemodel',
            'finance.delete_expensemodel', 'finance.approve_expensemodel', 'finance.pay_expensemodel',
        ])
        self.client.force_login(self.director)

    def post_json(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type='application/json')

    def create_expense(self):
        response = self.post_json(reverse('expense_list'), {
            'category': 'maintenance', 'description': 'Broken  window', 'amount': 250000,
            'expense_date': school_today().isoformat(), 'vendor_name': 'Vitrerie Madina',
        })
        self.assertEqual(response.status_code, 201)
        return response.json()['expense']

    def test_request_edit_approve_and_pay(self):
        expense = self.create_expense()
        self.assertEqual(expense['description'], 'Broken window')
        self.assertEqual(expense['status'], 'pending')
        self.assertEqual(expense['requested_by'], self.director.username)

        response = self.client.patch(reverse('expense_detail', args=[expense['id']]),
                                     data=json.dumps({'amount': 200000}), content_type='application/json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['expense']['amount'], 200000.0)
        self.assertEqual(response.json()['expense']['vendor_name'], 'Vitrerie Madina')

        response = self.post_json(reverse('expense_decision', args=[expense['id']]), {'action': 'approve'})
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()['transaction'])

        response = self.post_json(reverse('expense_pay', args=[expense['id']]), {})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['expense']['status'], 'paid')
        self.assertEqual(body['balance']['safe_balance'], 9800000.0)

        response = self.client.patch(reverse('expense_detail', args=[expense['id']]),
                                     data=json.dumps({'amount': 1}), content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_rejection_reason_required(self):
        expense = self.create_expense()
        response = self.post_json(reverse('expense_decision', args=[expense['id']]), {'action': 'reject'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('rejection_reason', response.json()['errors'])

    def test_list_filters(self):
        self.create_expense()
        ExpenseModel.objects.create(category='salary', description='Guard salary', amount=Decimal('500000'),
                                    expense_date=school_today(), status=ExpenseModel.Status.REJECTED)

        body = self.client.get(reverse('expense_list'), {'status': 'pending'}).json()
        self.assertEqual([e['description'] for e in body['expenses']], ['Broken window'])
        body = self.client.get(reverse('expense_list'), {'search': 'madina'}).json()
        self.assertEqual(body['pagination']['total'], 1)

    def test_invalid_amount(self):
        response = self.post_json(reverse('expense_list'), {
            'category': 'supplies', 'description': 'Chalk', 'amount': 0, 'expense_date': school_today().isoformat(),
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn('amount', response.json()['errors'])

    def test_delete_pending(self):
        expense = self.create_expense()
        response = self.client.delete(reverse('expense_detail', args=[expense['id']]))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(ExpenseModel.objects.exists())

    def test_pay_needs_permission(self):
        expense = self.create_expense()
        self.client.force_login(create_user('clerk', permissions=['finance.view_expensemodel']))
        response = self.post_json(reverse('expense_pay', args=[expense['id']]), {})
        self.assertEqual(response.status_code, 403)


class VerificationTests(TreasuryTestCase):

    def test_matching_count(self):
        result = services.record_daily_verification(Decimal('10000000'), self.user)
        self.assertEqual(result['verification'].status, DailyVerificationModel.Status.MATCHED)
        self.assertIsNone(result['adjustment'])
        self.assertEqual(self.refresh().last_verified_by, self.user)

    def test_discrepancy_requires_explanation(self):
        with self.assertRaises(ValidationError) as ctx:
            services.record_daily_verification(Decimal('9990000'), self.user)
        self.assertEqual(ctx.exception.code, 'explanation_required')

    def test_discrepancy_resets_safe_to_count(self):
        result = services.record_daily_verification(Decimal('9990000'), self.user, explanation='Change given twice')
        self.assertEqual(result['verification'].discrepancy, Decimal('-10000'))
        self.assertEqual(result['adjustment'].amount, Decimal('10000'))
        self.assertEqual(self.refresh().safe_balance, Decimal('9990000'))

    def test_once_per_day(self):
        services.record_daily_verification(Decimal('10000000'), self.user)
        with self.assertRaises(ValidationError) as ctx:
            services.record_daily_verification(Decimal('10000000'), self.user)
        self.assertEqual(ctx.exception.code, 'already_verified')

    def test_review(self):
        verification = services.record_daily_verification(
            Decimal('9990000'), self.user, explanation='Change given twice')['verification']
        director = create_user('director')
        services.review_verification(verification, director, 'Checked with the cashier')
        verification.refresh_from_db()
        self.assertEqual(verification.status, DailyVerificationModel.Status.REVIEWED)
        with self.assertRaises(ValidationError):
            services.review_verification(verification, director, 'Again')


class AdjustmentAndReportTests(TreasuryTestCase):

    def test_each_changed_balance_gets_an_entry(self):
        result = services.adjust_balances('Opening balances after audit', self.user,
                                          safe_balance=Decimal('12000000'), bank_balance=Decimal('5000000'),
                                          mobile_money_balance=Decimal('0'))
        self.assertEqual(len(result['transactions']), 2)
        treasury = self.refresh()
        self.assertEqual(treasury.safe_balance, Decimal('12000000'))
        self.assertEqual(treasury.bank_balance, Decimal('5000000'))

    def test_thresholds_must_be_ordered(self):
        with self.assertRaises(ValidationError) as ctx:
            services.adjust_balances('Threshold review by director', self.user,
                                     safe_threshold_min=Decimal('30000000'))
        self.assertEqual(ctx.exception.code, 'invalid_threshold')

    def test_safe_status(self):
        self.assertEqual(services.safe_status(self.treasury), 'optimal')
        self.treasury.safe_balance = Decimal('4000000')
        self.assertEqual(services.safe_status(self.treasury), 'critical')
        self.treasury.safe_balance = Decimal('6000000')
        self.assertEqual(services.safe_status(self.treasury), 'warning')
        self.treasury.safe_balance = Decimal('25000000')
        self.assertEqual(services.safe_status(self.treasury), 'excess')

    def test_daily_report(self):
        services.daily_opening(Decimal('10000000'), self.user)
        services.record_transaction(T.OTHER_INCOME, Decimal('50000'), self.user, description='Photocopies')
        report = services.daily_report(school_today())

        self.assertEqual(report['opening_balance'], Decimal('0'))
        self.assertEqual(report['closing_balance'], Decimal('8050000'))
        self.assertEqual(report['summary']['count'], 2)
        self.assertEqual(report['summary']['total_in'], Decimal('50000'))
        self.assertEqual(report['by_type'][T.SAFE_TO_REGISTRY]['total_out'], Decimal('2000000'))

    def test_report_of_previous_day_is_empty(self):
        report = services.daily_report(school_today() - timedelta(days=1))
        self.assertEqual(report['summary']['count'], 0)


class UtilityTests(TestCase):

    def test_format_gnf(self):
        self.assertEqual(format_gnf(Decimal('1500000')), '1 500 000 GNF')
        self.assertEqual(format_gnf(None), '')

    def test_amount_in_words(self):
        payment = PaymentModel(amount=Decimal('1500000'))
        self.assertEqual(payment.amount_in_words(), 'Un million cinq cent mille francs guinéens')


class TreasuryApiTests(TreasuryTestCase):

    def setUp(self):
        super().setUp()
        self.cashier = create_user('cashier', permissions=[
            'finance.view_treasurybalancemodel', 'finance.operate_registry', 'finance.add_paymentmodel',
            'finance.view_paymentmodel',
        ])
        self.client.force_login(self.cashier)

    def post_json(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type='application/json')

    def test_balance(self):
        response = self.client.get(reverse('treasury_balance'))
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['balance']['safe_balance'], 10000000.0)
        self.assertEqual(body['status'], 'optimal')
        self.assertFalse(body['registry_open'])

    def test_balance_adjustment_needs_permission(self):
        response = self.client.put(reverse('treasury_balance'), data=json.dumps({
            'safe_balance': 1, 'reason': 'Director correction'}), content_type='application/json')
        self.assertEqual(response.status_code, 403)

    def test_anonymous_refused(self):
        self.client.logout()
        response = self.client.get(reverse('treasury_balance'))
        self.assertEqual(response.status_code, 403)

    def test_opening_refusal_reports_amounts(self):
        response = self.post_json(reverse('treasury_daily_opening'), {'counted_safe_balance': 1000000})
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['available'], 1000000.0)
        self.assertEqual(body['required'], 2000000.0)

    def test_invalid_form(self):
        response = self.post_json(reverse('treasury_daily_opening'), {'counted_safe_balance': 'abc'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('counted_safe_balance', response.json()['errors'])

    def test_record_payment_and_download_receipt(self):
        enrollment = create_enrollment(self.grade)
        response = self.post_json(reverse('payment_list'), {
            'enrollment': enrollment.pk, 'amount': 300000, 'method': 'cash'})
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['enrollment_summary']['total_remaining'], 600000.0)

        response = self.client.get(reverse('payment_receipt', args=[body['payment']['id']]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')

    def test_orange_money_payment_needs_reference(self):
        enrollment = create_enrollment(self.grade)
        response = self.post_json(reverse('payment_list'), {
            'enrollment': enrollment.pk, 'amount': 300000, 'method': 'orange_money'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('transaction_ref', response.json()['errors'])

    def test_payment_list_balance_filter(self):
        paid_up = create_enrollment(self.grade, first_name='Aissatou')
        outstanding = create_enrollment(self.grade, first_name='Alpha')
        services.record_payment(paid_up, Decimal('900000'), PaymentModel.Method.CASH, self.user)
        services.record_payment(outstanding, Decimal('100000'), PaymentModel.Method.CASH, self.user)

        response = self.client.get(reverse('payment_list'), {'balance_status': 'outstanding'})
        payments = response.json()['payments']
        self.assertEqual([p['enrollment_id'] for p in payments], [outstanding.pk])
        self.assertEqual(payments[0]['enrollment_remaining'], 800000.0)

        response = self.client.get(reverse('payment_list'), {'balance_status': 'paid_up'})
        self.assertEqual([p['enrollment_id'] for p in response.json()['payments']], [paid_up.pk])

    def test_payment_export(self):
        enrollment = create_enrollment(self.grade)
        services.record_payment(enrollment, Decimal('100000'), PaymentModel.Method.CASH, self.user)
        response = self.client.get(reverse('payment_export'))
        self.assertEqual(response.status_code, 200)
        self.assertIn('spreadsheetml', response['Content-Type'])


class CommandTests(TreasuryTestCase):

    def test_backup_writes_json_file(self):
        services.record_transaction(T.OTHER_INCOME, Decimal('50000'), self.user, description='Photocopies')
        with tempfile.TemporaryDirectory() as tmp:
            with override_settings(TREASURY_BACKUP_DIR=tmp):
                call_command('backup_treasury', stdout=StringIO())
            file_path = os.path.join(tmp, f"treasury-backup-{school_today():%Y-%m-%d}.json")
            with open(file_path, encoding='utf-8') as f:
                backup = json.load(f)
        self.assertEqual(len(backup['recent_transactions']), 1)
        self.assertEqual(backup['treasury_balance']['safe_balance'], '10050000.00')

    def test_check_negative_balances_clean(self):
        out = StringIO()
        call_command('check_negative_balances', stdout=out)
        self.assertIn('No negative balances found', out.getvalue())

    def test_overpaid_enrollment_reported(self):
        enrollment = create_enrollment(self.grade, status=EnrollmentModel.Status.COMPLETED, with_schedules=False)
        PaymentModel.objects.create(enrollment=enrollment, amount=Decimal('1000000'),
                                    method=PaymentModel.Method.CASH, receipt_number='CASH-IMPORT-1')
        PaymentModel.objects.create(enrollment=enrollment, amount=Decimal('500000'), method=PaymentModel.Method.CASH,
                                    receipt_number='CASH-IMPORT-2', status=PaymentModel.Status.REVERSED)

        overpaid = services.find_overpaid_enrollments()
        self.assertEqual(len(overpaid), 1)
        self.assertEqual(overpaid[0]['enrollment'], enrollment)
        self.assertEqual(overpaid[0]['balance'], Decimal('-100000'))

        out = StringIO()
        call_command('check_negative_balances', stdout=out)
        output = out.getvalue()
        self.assertIn(f"{enrollment.enrollment_number} Mariama Diallo (N/A", output)
        self.assertIn('overpaid by 100 000 GNF', output)
        self.assertIn('1 problem(s) found', output)
        self.assertNotIn('No negative balances found', output)

    def test_submitted_enrollments_are_not_checked_for_overpayment(self):
        enrollment = create_enrollment(self.grade, with_schedules=False)
        PaymentModel.objects.create(enrollment=enrollment, amount=Decimal('1000000'),
                                    method=PaymentModel.Method.CASH, receipt_number='CASH-IMPORT-3')
        self.assertEqual(services.find_overpaid_enrollments(), [])

    def test_init_registry_dry_run_changes_nothing(self):
        out = StringIO()
        call_command('init_registry', '--amount', '2000000', '--dry-run', stdout=out)
        self.assertIn('Dry run', out.getvalue())
        self.assertEqual(self.refresh().registry_balance, Decimal('0'))

    def test_init_registry(self):
        call_command('init_registry', '--amount', '2000000', stdout=StringIO())
        treasury = self.refresh()
        self.assertEqual(treasury.registry_balance, Decimal('2000000'))
        self.assertEqual(treasury.safe_balance, Decimal('8000000'))

    def test_treasury_status(self):
        out = StringIO()
        call_command('treasury_status', stdout=out)
        self.assertIn('Safe status: optimal', out.getvalue())
