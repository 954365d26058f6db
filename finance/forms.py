from decimal import Decimal

from django import forms
from django.core.exceptions import ValidationError

from student.models import EnrollmentModel
from .models import SafeTransactionModel, BankTransferModel, PaymentModel, ExpenseModel

# Helpers
MAX_AMOUNT = Decimal('999999999999.99')
MIN_NOTE_LENGTH = 10


def amount_field(required=True, allow_zero=False):
    return forms.DecimalField(
        required=required, max_digits=14, decimal_places=2, max_value=MAX_AMOUNT,
        min_value=Decimal('0') if allow_zero else Decimal('0.01'),
    )


def normalize_whitespace(s: str) -> str:
    return ' '.join(s.strip().split())


class DailyOpeningForm(forms.Form):
    counted_safe_balance = amount_field(allow_zero=True)
    float_amount = amount_field(required=False)
    notes = forms.CharField(required=False, max_length=500)


class DailyClosingForm(forms.Form):
    counted_registry_balance = amount_field(allow_zero=True)
    notes = forms.CharField(required=False, max_length=500)


class SafeTransferForm(forms.Form):
    DIRECTION_CHOICES = [
        (SafeTransactionModel.Type.SAFE_TO_REGISTRY, 'Safe to registry'),
        (SafeTransactionModel.Type.REGISTRY_TO_SAFE, 'Registry to safe'),
    ]

    direction = forms.ChoiceField(choices=DIRECTION_CHOICES)
    amount = amount_field()
    notes = forms.CharField(max_length=500)

    def clean_notes(self):
        notes = normalize_whitespace(self.cleaned_data['notes'])
        if len(notes) < MIN_NOTE_LENGTH:
            raise ValidationError(f"Notes must be at least {MIN_NOTE_LENGTH} characters.")
        return notes


class BankTransferForm(forms.Form):
    type = forms.ChoiceField(choices=BankTransferModel.Type.choices)
    amount = amount_field()
    bank_name = forms.CharField(required=False, max_length=100)
    bank_reference = forms.CharField(required=False, max_length=100)
    carried_by = forms.CharField(required=False, max_length=100)
    description = forms.CharField(required=False, max_length=255)
    notes = forms.CharField(required=False, max_length=1000)
    transfer_date = forms.DateField(required=False)

    def clean_bank_name(self):
        return normalize_whitespace(self.cleaned_data.get('bank_name') or '') or 'Ecobank'


class TransactionForm(forms.Form):
    """Manual safe entries: other income, expenses and Orange Money fees."""
    TYPE_CHOICES = [
        (SafeTransactionModel.Type.OTHER_INCOME, 'Other income'),
        (SafeTransactionModel.Type.EXPENSE_PAYMENT, 'Expense payment'),
        (SafeTransactionModel.Type.MOBILE_MONEY_FEE, 'Mobile money fee'),
    ]

    type = forms.ChoiceField(choices=TYPE_CHOICES)
    amount = amount_field()
    description = forms.CharField(max_length=255)
    payer_name = forms.CharField(required=False, max_length=150)
    beneficiary_name = forms.CharField(required=False, max_length=150)
    category = forms.CharField(required=False, max_length=100)
    notes = forms.CharField(required=False, max_length=1000)

    def clean_description(self):
        description = normalize_whitespace(self.cleaned_data['description'])
        if not description:
            raise ValidationError("A description is required.")
        return description


class PaymentForm(forms.Form):
    enrollment = forms.ModelChoiceField(queryset=EnrollmentModel.objects.all())
    amount = amount_field()
    method = forms.ChoiceField(choices=PaymentModel.Method.choices)
    receipt_number = forms.CharField(required=False, max_length=50)
    transaction_ref = forms.CharField(required=False, max_length=100)
    notes = forms.CharField(required=False, max_length=1000)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('method') == PaymentModel.Method.ORANGE_MONEY and not cleaned_data.get('transaction_ref'):
            self.add_error('transaction_ref', "The Orange Money transaction reference is required.")
        return cleaned_data


class ReverseTransactionForm(forms.Form):
    reason = forms.CharField(max_length=1000)
    correct_amount = amount_field(required=False)
    correct_method = forms.ChoiceField(choices=PaymentModel.Method.choices, required=False)

    def clean_reason(self):
        reason = normalize_whitespace(self.cleaned_data['reason'])
        if len(reason) < MIN_NOTE_LENGTH:
            raise ValidationError(f"The reason must be at least {MIN_NOTE_LENGTH} characters.")
        return reason

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('correct_method') and cleaned_data.get('correct_amount') is None:
            self.add_error('correct_amount', "A corrected amount is required to change the method.")
        return cleaned_data


class DailyVerificationForm(forms.Form):
    counted_balance = amount_field(allow_zero=True)
    discrepancy_explanation = forms.CharField(required=False, max_length=1000)


class VerificationReviewForm(forms.Form):
    review_notes = forms.CharField(max_length=1000)


class BalanceAdjustmentForm(forms.Form):
    """Director-only correction of the treasury row. Omitted fields are left unchanged."""
    registry_balance = amount_field(required=False, allow_zero=True)
    safe_balance = amount_field(required=False, allow_zero=True)
    bank_balance = amount_field(required=False, allow_zero=True)
    mobile_money_balance = amount_field(required=False, allow_zero=True)
    registry_float_amount = amount_field(required=False)
    safe_threshold_min = amount_field(required=False, allow_zero=True)
    safe_threshold_max = amount_field(required=False)
    reason = forms.CharField(max_length=1000)

    BALANCE_FIELDS = (
        'registry_balance', 'safe_balance', 'bank_balance', 'mobile_money_balance',
        'registry_float_amount', 'safe_threshold_min', 'safe_threshold_max',
    )

    def clean_reason(self):
        reason = normalize_whitespace(self.cleaned_data['reason'])
        if len(reason) < MIN_NOTE_LENGTH:
            raise ValidationError(f"The reason must be at least {MIN_NOTE_LENGTH} characters.")
        return reason

    def clean(self):
        cleaned_data = super().clean()
        if all(cleaned_data.get(name) is None for name in self.BALANCE_FIELDS):
            raise ValidationError("Nothing to update.")
        return cleaned_data

    def values(self):
        return {name: self.cleaned_data[name] for name in self.BALANCE_FIELDS
                if self.cleaned_data.get(name) is not None}


class ExpenseForm(forms.ModelForm):

    class Meta:
        model = ExpenseModel
        fields = ['category', 'description', 'amount', 'method', 'expense_date', 'vendor_name', 'receipt_url']

    def clean_description(self):
        description = normalize_whitespace(self.cleaned_data['description'])
        if not description:
            raise ValidationError("A description is required.")
        return description

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount is not None and amount <= 0:
            raise ValidationError("The amount must be greater than zero.")
        return amount


class ExpenseDecisionForm(forms.Form):
    ACTION_CHOICES = [('approve', 'Approve'), ('reject', 'Reject')]

    action = forms.ChoiceField(choices=ACTION_CHOICES)
    rejection_reason = forms.CharField(required=False, max_length=1000)

    def clean(self):
        cleaned_data = super().clean()
        if cleaned_data.get('action') == 'reject' and not (cleaned_data.get('rejection_reason') or '').strip():
            self.add_error('rejection_reason', "A rejection reason is required.")
        return cleaned_data


class ExpensePaymentForm(forms.Form):
    notes = forms.CharField(required=False, max_length=1000)
