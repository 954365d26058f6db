from django.contrib import admin
from finance.models import TreasuryBalanceModel, SafeTransactionModel, BankTransferModel, DailyVerificationModel, \
    PaymentModel, ExpenseModel


class ReadOnlyLedgerAdmin(admin.ModelAdmin):
    """Ledger rows are written by the treasury services only."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(SafeTransactionModel)
class SafeTransactionAdmin(ReadOnlyLedgerAdmin):
    list_display = ('recorded_at', 'type', 'direction', 'amount', 'safe_balance_after', 'receipt_number')
    list_filter = ('type', 'direction', 'is_reversal')
    search_fields = ('receipt_number', 'description')


@admin.register(BankTransferModel)
class BankTransferAdmin(ReadOnlyLedgerAdmin):
    list_display = ('transfer_date', 'type', 'amount', 'bank_name', 'bank_reference')


admin.site.register(TreasuryBalanceModel, ReadOnlyLedgerAdmin)
admin.site.register(DailyVerificationModel)


@admin.register(PaymentModel)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('receipt_number', 'enrollment', 'amount', 'method', 'status', 'recorded_at')
    list_filter = ('method', 'status')
    search_fields = ('receipt_number', 'enrollment__enrollment_number', 'enrollment__last_name')


@admin.register(ExpenseModel)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ('expense_date', 'category', 'description', 'amount', 'method', 'status')
    list_filter = ('category', 'method', 'status')
    search_fields = ('description', 'vendor_name')
