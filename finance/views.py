import logging
from datetime import date
from decimal import Decimal

import openpyxl
from django.db.models import Q, Sum, Value, DecimalField, F
from django.db.models.functions import Coalesce
from django.forms.models import model_to_dict
from django.http import JsonResponse, HttpResponse
from django.shortcuts import get_object_or_404
from django.utils.dateparse import parse_date
from openpyxl.styles import Font

from admin_site.views import ApiView, as_number
from student.services import enrollment_summary
from .forms import (
    DailyOpeningForm, DailyClosingForm, SafeTransferForm, BankTransferForm, TransactionForm, PaymentForm,
    ReverseTransactionForm, DailyVerificationForm, VerificationReviewForm, BalanceAdjustmentForm, ExpenseForm,
    ExpenseDecisionForm, ExpensePaymentForm
)
from .models import SafeTransactionModel, BankTransferModel, DailyVerificationModel, PaymentModel, ExpenseModel
from .receipts import build_payment_receipt
from . import services
from .utility import school_today, day_bounds

logger = logging.getLogger(__name__)


def _user_name(user):
    if user is None:
        return None
    return user.get_full_name() or user.username


def serialize_treasury(treasury):
    return {
        'registry_balance': as_number(treasury.registry_balance),
        'registry_float_amount': as_number(treasury.registry_float_amount),
        'safe_balance': as_number(treasury.safe_balance),
        'bank_balance': as_number(treasury.bank_balance),
        'mobile_money_balance': as_number(treasury.mobile_money_balance),
        'total_liquid_assets': as_number(treasury.total_liquid_assets),
        'safe_threshold_min': as_number(treasury.safe_threshold_min),
        'safe_threshold_max': as_number(treasury.safe_threshold_max),
        'last_verified_at': treasury.last_verified_at,
        'last_verified_by': _user_name(treasury.last_verified_by),
        'updated_at': treasury.updated_at,
    }


def serialize_transaction(tx):
    if tx is None:
        return None
    return {
        'id': tx.id,
        'type': tx.type,
        'type_display': tx.get_type_display(),
        'direction': tx.direction,
        'amount': as_number(tx.amount),
        'registry_balance_after': as_number(tx.registry_balance_after),
        'safe_balance_after': as_number(tx.safe_balance_after),
        'bank_balance_after': as_number(tx.bank_balance_after),
        'mobile_money_balance_after': as_number(tx.mobile_money_balance_after),
        'description': tx.description,
        'receipt_number': tx.receipt_number,
        'reference_type': tx.reference_type,
        'reference_id': tx.reference_id,
        'student_id': tx.student_id,
        'payer_name': tx.payer_name,
        'beneficiary_name': tx.beneficiary_name,
        'category': tx.category,
        'notes': tx.notes,
        'is_reversal': tx.is_reversal,
        'reversal_reason': tx.reversal_reason,
        'original_transaction_id': tx.original_transaction_id,
        'recorded_by': _user_name(tx.recorded_by),
        'recorded_at': tx.recorded_at,
    }


def serialize_bank_transfer(transfer):
    return {
        'id': transfer.id,
        'type': transfer.type,
        'amount': as_number(transfer.amount),
        'bank_name': transfer.bank_name,
        'bank_reference': transfer.bank_reference,
        'description': transfer.description,
        'carried_by': transfer.carried_by,
        'transfer_date': transfer.transfer_date,
        'safe_balance_before': as_number(transfer.safe_balance_before),
        'safe_balance_after': as_number(transfer.safe_balance_after),
        'bank_balance_before': as_number(transfer.bank_balance_before),
        'bank_balance_after': as_number(transfer.bank_balance_after),
        'notes': transfer.notes,
        'recorded_by': _user_name(transfer.recorded_by),
        'recorded_at': transfer.recorded_at,
    }


def serialize_verification(verification):
    if verification is None:
        return None
    return {
        'id': verification.id,
        'verification_date': verification.verification_date,
        'expected_balance': as_number(verification.expected_balance),
        'counted_balance': as_number(verification.counted_balance),
        'discrepancy': as_number(verification.discrepancy),
        'status': verification.status,
        'discrepancy_note': verification.discrepancy_note,
        'verified_by': _user_name(verification.verified_by),
        'verified_at': verification.verified_at,
        'reviewed_by': _user_name(verification.reviewed_by),
        'reviewed_at': verification.reviewed_at,
        'review_note': verification.review_note,
    }


def serialize_payment(payment):
    enrollment = payment.enrollment
    data = {
        'id': payment.id,
        'enrollment_id': enrollment.id,
        'enrollment_number': enrollment.enrollment_number,
        'student_name': f"{enrollment.first_name} {enrollment.last_name}",
        'grade': str(enrollment.grade),
        'amount': as_number(payment.amount),
        'method': payment.method,
        'status': payment.status,
        'receipt_number': payment.receipt_number,
        'transaction_ref': payment.transaction_ref,
        'payment_schedule': payment.payment_schedule.schedule_number if payment.payment_schedule else None,
        'notes': payment.notes,
        'recorded_by': _user_name(payment.recorded_by),
        'recorded_at': payment.recorded_at,
    }
    if hasattr(payment, 'enrollment_paid'):
        data['enrollment_total_paid'] = as_number(payment.enrollment_paid)
        data['enrollment_remaining'] = as_number(max(payment.enrollment_fee - payment.enrollment_paid, Decimal('0')))
    return data


def _parse_date_param(request, name):
    value = request.GET.get(name)
    return parse_date(value) if value else None


# ---------------------------------------------------------------------------
# Treasury
# ---------------------------------------------------------------------------

class TreasuryBalanceView(ApiView):
    """GET returns the treasury status; PUT is the director's balance adjustment."""
    method_permissions = {
        'GET': 'finance.view_treasurybalancemodel',
        'PUT': 'finance.change_treasurybalancemodel',
    }

    def get(self, request, *args, **kwargs):
        status = services.treasury_status()
        treasury = status['treasury']
        summary = status['today_summary']
        return JsonResponse({
            'balance': serialize_treasury(treasury),
            'status': status['status'],
            'registry_open': status['registry_open'],
            'today': {
                'date': status['today'],
                'total_in': as_number(summary['total_in']),
                'total_out': as_number(summary['total_out']),
                'net': as_number(summary['net']),
                'transaction_count': summary['count'],
                'verification': serialize_verification(status['today_verification']),
            },
        })

    def put(self, request, *args, **kwargs):
        form = BalanceAdjustmentForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.adjust_balances(form.cleaned_data['reason'], request.user, **form.values())
        return JsonResponse({
            'success': True,
            'message': 'Treasury balances updated.',
            'balance': serialize_treasury(result['treasury']),
            'transactions': [serialize_transaction(tx) for tx in result['transactions']],
        })


class DailyOpeningView(ApiView):
    permission_required = 'finance.operate_registry'

    def post(self, request, *args, **kwargs):
        form = DailyOpeningForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.daily_opening(
            form.cleaned_data['counted_safe_balance'], request.user,
            float_amount=form.cleaned_data.get('float_amount'), notes=form.cleaned_data.get('notes') or None,
        )
        return JsonResponse({
            'success': True,
            'message': 'Registry opened.',
            'discrepancy': as_number(result['discrepancy']),
            'balance': serialize_treasury(result['treasury']),
            'opening_transaction': serialize_transaction(result['opening']),
            'adjustment_transaction': serialize_transaction(result['adjustment']),
        })


class DailyClosingView(ApiView):
    permission_required = 'finance.operate_registry'

    def post(self, request, *args, **kwargs):
        form = DailyClosingForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.daily_closing(
            form.cleaned_data['counted_registry_balance'], request.user, notes=form.cleaned_data.get('notes') or None
        )
        return JsonResponse({
            'success': True,
            'message': 'Registry closed.',
            'expected': as_number(result['expected']),
            'discrepancy': as_number(result['discrepancy']),
            'balance': serialize_treasury(result['treasury']),
            'closing_transaction': serialize_transaction(result['closing']),
            'adjustment_transaction': serialize_transaction(result['adjustment']),
        })


class SafeTransferView(ApiView):
    permission_required = 'finance.transfer_treasury_funds'

    def post(self, request, *args, **kwargs):
        form = SafeTransferForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.safe_transfer(
            form.cleaned_data['direction'], form.cleaned_data['amount'], form.cleaned_data['notes'], request.user
        )
        return JsonResponse({
            'success': True,
            'balance': serialize_treasury(result['treasury']),
            'transaction': serialize_transaction(result['transaction']),
        })


class BankTransferListView(ApiView):
    method_permissions = {
        'GET': 'finance.view_banktransfermodel',
        'POST': 'finance.add_banktransfermodel',
    }

    def get(self, request, *args, **kwargs):
        queryset = BankTransferModel.objects.select_related('recorded_by')
        transfer_type = request.GET.get('type')
        if transfer_type:
            queryset = queryset.filter(type=transfer_type)
        date_from = _parse_date_param(request, 'date_from')
        date_to = _parse_date_param(request, 'date_to')
        if date_from:
            queryset = queryset.filter(transfer_date__gte=date_from)
        if date_to:
            queryset = queryset.filter(transfer_date__lte=date_to)

        transfers, meta = self.paginate(queryset)
        return JsonResponse({'transfers': [serialize_bank_transfer(t) for t in transfers], 'pagination': meta})

    def post(self, request, *args, **kwargs):
        form = BankTransferForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        data = form.cleaned_data
        result = services.record_bank_transfer(
            data['type'], data['amount'], request.user,
            bank_name=data['bank_name'],
            bank_reference=data.get('bank_reference') or None,
            carried_by=data.get('carried_by') or None,
            description=data.get('description') or None,
            notes=data.get('notes') or None,
            transfer_date=data.get('transfer_date'),
        )
        return JsonResponse({
            'success': True,
            'transfer': serialize_bank_transfer(result['transfer']),
            'transaction': serialize_transaction(result['transaction']),
            'balance': serialize_treasury(result['treasury']),
        }, status=201)


class TransactionListView(ApiView):
    method_permissions = {
        'GET': 'finance.view_safetransactionmodel',
        'POST': 'finance.add_safetransactionmodel',
    }

    def get(self, request, *args, **kwargs):
        queryset = SafeTransactionModel.objects.select_related('recorded_by')
        for param in ('type', 'direction'):
            value = request.GET.get(param)
            if value:
                queryset = queryset.filter(**{param: value})
        student_id = request.GET.get('student')
        if student_id:
            queryset = queryset.filter(student_id=student_id)
        date_from = _parse_date_param(request, 'date_from')
        date_to = _parse_date_param(request, 'date_to')
        if date_from:
            queryset = queryset.filter(recorded_at__gte=day_bounds(date_from)[0])
        if date_to:
            queryset = queryset.filter(recorded_at__lt=day_bounds(date_to)[1])
        search = request.GET.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(description__icontains=search) | Q(receipt_number__icontains=search) |
                Q(payer_name__icontains=search) | Q(beneficiary_name__icontains=search)
            )

        transactions, meta = self.paginate(queryset)
        return JsonResponse({'transactions': [serialize_transaction(tx) for tx in transactions], 'pagination': meta})

    def post(self, request, *args, **kwargs):
        form = TransactionForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        data = form.cleaned_data
        result = services.record_transaction(
            data['type'], data['amount'], request.user,
            description=data['description'],
            payer_name=data.get('payer_name') or None,
            beneficiary_name=data.get('beneficiary_name') or None,
            category=data.get('category') or None,
            notes=data.get('notes') or None,
        )
        return JsonResponse({
            'success': True,
            'transaction': serialize_transaction(result['transaction']),
            'balance': serialize_treasury(result['treasury']),
        }, status=201)


class ReverseTransactionView(ApiView):
    permission_required = 'finance.reverse_safetransactionmodel'

    def post(self, request, *args, **kwargs):
        get_object_or_404(SafeTransactionModel, pk=self.kwargs['pk'])
        form = ReverseTransactionForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.reverse_transaction(
            self.kwargs['pk'], form.cleaned_data['reason'], request.user,
            correct_amount=form.cleaned_data.get('correct_amount'),
            correct_method=form.cleaned_data.get('correct_method') or None,
        )
        return JsonResponse({
            'success': True,
            'message': 'Transaction reversed.',
            'reversal': serialize_transaction(result['reversal']),
            'correction': serialize_transaction(result['correction']),
            'balance': serialize_treasury(result['treasury']),
        })


class DailyVerificationListView(ApiView):
    method_permissions = {
        'GET': 'finance.view_dailyverificationmodel',
        'POST': 'finance.add_dailyverificationmodel',
    }

    def get(self, request, *args, **kwargs):
        queryset = DailyVerificationModel.objects.select_related('verified_by', 'reviewed_by')
        status = request.GET.get('status')
        if status:
            queryset = queryset.filter(status=status)
        verifications, meta = self.paginate(queryset, default_limit=30)
        return JsonResponse({
            'verifications': [serialize_verification(v) for v in verifications],
            'pagination': meta,
        })

    def post(self, request, *args, **kwargs):
        form = DailyVerificationForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.record_daily_verification(
            form.cleaned_data['counted_balance'], request.user,
            explanation=form.cleaned_data.get('discrepancy_explanation'),
        )
        return JsonResponse({
            'success': True,
            'verification': serialize_verification(result['verification']),
            'adjustment_transaction': serialize_transaction(result['adjustment']),
            'balance': serialize_treasury(result['treasury']),
        }, status=201)


class VerificationReviewView(ApiView):
    permission_required = 'finance.change_dailyverificationmodel'

    def post(self, request, *args, **kwargs):
        verification = get_object_or_404(DailyVerificationModel, pk=self.kwargs['pk'])
        form = VerificationReviewForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        verification = services.review_verification(verification, request.user, form.cleaned_data['review_notes'])
        return JsonResponse({'success': True, 'verification': serialize_verification(verification)})


class DailyReportView(ApiView):
    permission_required = 'finance.view_safetransactionmodel'

    def get(self, request, *args, **kwargs):
        day = _parse_date_param(request, 'date') or school_today()
        report = services.daily_report(day)
        summary = report['summary']
        return JsonResponse({
            'date': day,
            'opening_balance': as_number(report['opening_balance']),
            'closing_balance': as_number(report['closing_balance']),
            'total_in': as_number(summary['total_in']),
            'total_out': as_number(summary['total_out']),
            'net': as_number(summary['net']),
            'transaction_count': summary['count'],
            'by_type': {
                tx_type: {
                    'count': values['count'],
                    'total_in': as_number(values['total_in']),
                    'total_out': as_number(values['total_out']),
                } for tx_type, values in report['by_type'].items()
            },
            'transactions': [serialize_transaction(tx) for tx in report['transactions']],
            'bank_transfers': [serialize_bank_transfer(t) for t in report['bank_transfers']],
            'verification': serialize_verification(report['verification']),
        })


# ---------------------------------------------------------------------------
# Tuition payments
# ---------------------------------------------------------------------------

def payments_queryset(request):
    """Payments with their enrollment's confirmed total and effective fee, filtered by the query string."""
    money = DecimalField(max_digits=14, decimal_places=2)
    queryset = PaymentModel.objects.select_related(
        'enrollment__grade', 'enrollment__school_year', 'payment_schedule', 'recorded_by'
    ).annotate(
        enrollment_paid=Coalesce(
            Sum('enrollment__payments__amount',
                filter=Q(enrollment__payments__status=PaymentModel.Status.CONFIRMED)),
            Value(Decimal('0')), output_field=money
        ),
        enrollment_fee=Coalesce('enrollment__adjusted_tuition_fee', 'enrollment__original_tuition_fee',
                                output_field=money),
    )

    for param, lookup in (('method', 'method'), ('status', 'status'), ('enrollment', 'enrollment_id'),
                          ('grade', 'enrollment__grade_id'), ('school_year', 'enrollment__school_year_id')):
        value = request.GET.get(param)
        if value:
            queryset = queryset.filter(**{lookup: value})

    date_from = _parse_date_param(request, 'date_from')
    date_to = _parse_date_param(request, 'date_to')
    if date_from:
        queryset = queryset.filter(recorded_at__gte=day_bounds(date_from)[0])
    if date_to:
        queryset = queryset.filter(recorded_at__lt=day_bounds(date_to)[1])

    search = request.GET.get('search', '').strip()
    if search:
        queryset = queryset.filter(
            Q(receipt_number__icontains=search) | Q(enrollment__first_name__icontains=search) |
            Q(enrollment__last_name__icontains=search) | Q(enrollment__enrollment_number__icontains=search)
        )

    balance_status = request.GET.get('balance_status')
    if balance_status == 'outstanding':
        queryset = queryset.filter(enrollment_paid__lt=F('enrollment_fee'))
    elif balance_status == 'paid_up':
        queryset = queryset.filter(enrollment_paid__gte=F('enrollment_fee'))
    return queryset


class PaymentListView(ApiView):
    method_permissions = {
        'GET': 'finance.view_paymentmodel',
        'POST': 'finance.add_paymentmodel',
    }

    def get(self, request, *args, **kwargs):
        payments, meta = self.paginate(payments_queryset(request))
        return JsonResponse({'payments': [serialize_payment(p) for p in payments], 'pagination': meta})

    def post(self, request, *args, **kwargs):
        form = PaymentForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        data = form.cleaned_data
        result = services.record_payment(
            data['enrollment'], data['amount'], data['method'], request.user,
            receipt_number=data.get('receipt_number') or None,
            transaction_ref=data.get('transaction_ref') or None,
            notes=data.get('notes') or None,
        )
        payment = result['payment']
        summary = enrollment_summary(payment.enrollment)
        return JsonResponse({
            'success': True,
            'message': f"Payment {payment.receipt_number} recorded.",
            'payment': serialize_payment(payment),
            'enrollment_summary': {key: as_number(val) if isinstance(val, Decimal) else val
                                   for key, val in summary.items()},
            'balance': serialize_treasury(result['treasury']),
        }, status=201)


class PaymentReceiptView(ApiView):
    permission_required = 'finance.view_paymentmodel'

    def get(self, request, *args, **kwargs):
        payment = get_object_or_404(
            PaymentModel.objects.select_related('enrollment__grade', 'enrollment__school_year',
                                                'enrollment__student', 'recorded_by'),
            pk=self.kwargs['pk']
        )
        pdf_content = build_payment_receipt(payment, enrollment_summary(payment.enrollment))
        response = HttpResponse(pdf_content, content_type='application/pdf')
        response['Content-Disposition'] = f'inline; filename="receipt_{payment.receipt_number}.pdf"'
        return response


class PaymentExportView(ApiView):
    """Spreadsheet of the payments matching the same filters as the payment list."""
    permission_required = 'finance.view_paymentmodel'

    def get(self, request, *args, **kwargs):
        queryset = payments_queryset(request)

        workbook = openpyxl.Workbook()
        worksheet = workbook.active
        worksheet.title = 'Payments'

        headers = [
            'Receipt No.', 'Date', 'Enrollment No.', 'Student', 'Grade', 'Method', 'Status', 'Amount',
            'Transaction Ref.', 'Total Paid', 'Remaining', 'Recorded By'
        ]
        for col_num, header_title in enumerate(headers, 1):
            cell = worksheet.cell(row=1, column=col_num, value=header_title)
            cell.font = Font(bold=True)

        for row_num, payment in enumerate(queryset, 2):
            enrollment = payment.enrollment
            remaining = max(payment.enrollment_fee - payment.enrollment_paid, Decimal('0'))
            worksheet.cell(row=row_num, column=1, value=payment.receipt_number)
            worksheet.cell(row=row_num, column=2, value=payment.recorded_at.strftime('%Y-%m-%d %H:%M'))
            worksheet.cell(row=row_num, column=3, value=enrollment.enrollment_number)
            worksheet.cell(row=row_num, column=4, value=f"{enrollment.first_name} {enrollment.last_name}")
            worksheet.cell(row=row_num, column=5, value=str(enrollment.grade))
            worksheet.cell(row=row_num, column=6, value=payment.get_method_display())
            worksheet.cell(row=row_num, column=7, value=payment.get_status_display())
            worksheet.cell(row=row_num, column=8, value=payment.amount)
            worksheet.cell(row=row_num, column=9, value=payment.transaction_ref)
            worksheet.cell(row=row_num, column=10, value=payment.enrollment_paid)
            worksheet.cell(row=row_num, column=11, value=remaining)
            worksheet.cell(row=row_num, column=12, value=_user_name(payment.recorded_by))

        response = HttpResponse(
            content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        )
        response['Content-Disposition'] = f'attachment; filename="payments_{date.today():%Y-%m-%d}.xlsx"'
        workbook.save(response)
        return response


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

def serialize_expense(expense):
    return {
        'id': expense.id,
        'category': expense.category,
        'category_display': expense.get_category_display(),
        'description': expense.description,
        'amount': as_number(expense.amount),
        'method': expense.method,
        'expense_date': expense.expense_date,
        'vendor_name': expense.vendor_name,
        'receipt_url': expense.receipt_url,
        'status': expense.status,
        'rejection_reason': expense.rejection_reason,
        'requested_by': _user_name(expense.requested_by),
        'approved_by': _user_name(expense.approved_by),
        'approved_at': expense.approved_at,
        'paid_by': _user_name(expense.paid_by),
        'paid_at': expense.paid_at,
        'created_at': expense.created_at,
    }


class ExpenseListView(ApiView):
    method_permissions = {
        'GET': 'finance.view_expensemodel',
        'POST': 'finance.add_expensemodel',
    }

    def get(self, request, *args, **kwargs):
        queryset = ExpenseModel.objects.select_related('requested_by', 'approved_by', 'paid_by')
        for param in ('status', 'category', 'method'):
            value = request.GET.get(param)
            if value:
                queryset = queryset.filter(**{param: value})
        date_from = _parse_date_param(request, 'date_from')
        date_to = _parse_date_param(request, 'date_to')
        if date_from:
            queryset = queryset.filter(expense_date__gte=date_from)
        if date_to:
            queryset = queryset.filter(expense_date__lte=date_to)
        search = request.GET.get('search', '').strip()
        if search:
            queryset = queryset.filter(Q(description__icontains=search) | Q(vendor_name__icontains=search))

        expenses, meta = self.paginate(queryset, default_limit=100)
        return JsonResponse({'expenses': [serialize_expense(e) for e in expenses], 'pagination': meta})

    def post(self, request, *args, **kwargs):
        form = ExpenseForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        expense = form.save(commit=False)
        expense.requested_by = request.user
        expense.save()
        logger.info(f"Expense {expense.pk} of {expense.amount} requested by {request.user.username}")
        return JsonResponse({'success': True, 'expense': serialize_expense(expense)}, status=201)


class ExpenseDetailView(ApiView):
    """GET one expense; PATCH and DELETE while it is still pending."""
    method_permissions = {
        'GET': 'finance.view_expensemodel',
        'PATCH': 'finance.change_expensemodel',
        'DELETE': 'finance.delete_expensemodel',
    }

    def get_expense(self):
        return get_object_or_404(ExpenseModel, pk=self.kwargs['pk'])

    def get(self, request, *args, **kwargs):
        return JsonResponse(serialize_expense(self.get_expense()))

    def patch(self, request, *args, **kwargs):
        expense = self.get_expense()
        data = {**model_to_dict(expense, fields=ExpenseForm.Meta.fields), **self.get_json()}
        form = ExpenseForm(data, instance=expense)
        if not form.is_valid():
            return self.form_invalid(form)
        expense = services.update_expense(form, expense)
        return JsonResponse({'success': True, 'expense': serialize_expense(expense)})

    def delete(self, request, *args, **kwargs):
        services.delete_expense(self.get_expense(), request.user)
        return JsonResponse({'success': True, 'message': 'Expense deleted.'})


class ExpenseDecisionView(ApiView):
    permission_required = 'finance.approve_expensemodel'

    def post(self, request, *args, **kwargs):
        expense = get_object_or_404(ExpenseModel, pk=self.kwargs['pk'])
        form = ExpenseDecisionForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)

        if form.cleaned_data['action'] == 'reject':
            expense = services.reject_expense(expense, request.user, form.cleaned_data['rejection_reason'])
            return JsonResponse({'success': True, 'expense': serialize_expense(expense)})

        result = services.approve_expense(expense, request.user)
        return JsonResponse({
            'success': True,
            'expense': serialize_expense(result['expense']),
            'transaction': serialize_transaction(result['transaction']),
            'balance': serialize_treasury(result['treasury']) if result['treasury'] else None,
        })


class ExpensePaymentView(ApiView):
    permission_required = 'finance.pay_expensemodel'

    def post(self, request, *args, **kwargs):
        expense = get_object_or_404(ExpenseModel, pk=self.kwargs['pk'])
        form = ExpensePaymentForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.pay_expense(expense, request.user, notes=form.cleaned_data.get('notes') or None)
        return JsonResponse({
            'success': True,
            'message': 'Expense paid.',
            'expense': serialize_expense(result['expense']),
            'transaction': serialize_transaction(result['transaction']),
            'balance': serialize_treasury(result['treasury']),
        })
