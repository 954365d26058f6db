import decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


def money(**kwargs):
    return models.DecimalField(decimal_places=2, max_digits=14, **kwargs)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('student', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='TreasuryBalanceModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('registry_balance', money(default=0)),
                ('registry_float_amount', money(default=decimal.Decimal('2000000'),
                                                help_text='Cash put in the registry at daily opening')),
                ('safe_balance', money(default=0)),
                ('bank_balance', money(default=0)),
                ('mobile_money_balance', money(default=0)),
                ('safe_threshold_min', money(default=decimal.Decimal('5000000'))),
                ('safe_threshold_max', money(default=decimal.Decimal('20000000'))),
                ('last_verified_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('last_verified_by', models.ForeignKey(blank=True, null=True,
                                                       on_delete=django.db.models.deletion.SET_NULL,
                                                       related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Treasury Balance',
                'verbose_name_plural': 'Treasury Balance',
                'permissions': [
                    ('operate_registry', 'Can perform daily registry opening and closing'),
                    ('transfer_treasury_funds', 'Can move cash between safe and registry'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('registry_balance__gte', 0)),
                                           name='registry_balance_not_negative'),
                    models.CheckConstraint(condition=models.Q(('safe_balance__gte', 0)),
                                           name='safe_balance_not_negative'),
                    models.CheckConstraint(condition=models.Q(('bank_balance__gte', 0)),
                                           name='bank_balance_not_negative'),
                    models.CheckConstraint(condition=models.Q(('mobile_money_balance__gte', 0)),
                                           name='mobile_money_balance_not_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SafeTransactionModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[
                    ('student_payment', 'Student Payment'), ('other_income', 'Other Income'),
                    ('expense_payment', 'Expense Payment'), ('safe_to_registry', 'Safe To Registry'),
                    ('registry_to_safe', 'Registry To Safe'), ('registry_adjustment', 'Registry Adjustment'),
                    ('adjustment', 'Adjustment'), ('bank_deposit', 'Bank Deposit'),
                    ('bank_withdrawal', 'Bank Withdrawal'), ('mobile_money_income', 'Mobile Money Income'),
                    ('mobile_money_fee', 'Mobile Money Fee'), ('mobile_money_payment', 'Mobile Money Payment'),
                    ('reversal_student_payment', 'Reversal - Student Payment'),
                    ('reversal_expense_payment', 'Reversal - Expense Payment'),
                    ('reversal_other_income', 'Reversal - Other Income'),
                    ('reversal_bank_deposit', 'Reversal - Bank Deposit'),
                    ('reversal_bank_withdrawal', 'Reversal - Bank Withdrawal'),
                    ('reversal_mobile_money', 'Reversal - Mobile Money'),
                ], max_length=30)),
                ('direction', models.CharField(choices=[('in', 'In'), ('out', 'Out')], max_length=3)),
                ('amount', money()),
                ('registry_balance_after', money()),
                ('safe_balance_after', money()),
                ('bank_balance_after', money()),
                ('mobile_money_balance_after', money()),
                ('description', models.CharField(blank=True, max_length=255, null=True)),
                ('receipt_number', models.CharField(blank=True, db_index=True, max_length=50, null=True)),
                ('reference_type', models.CharField(blank=True, max_length=30, null=True)),
                ('reference_id', models.CharField(blank=True, max_length=50, null=True)),
                ('payer_name', models.CharField(blank=True, max_length=150, null=True)),
                ('beneficiary_name', models.CharField(blank=True, max_length=150, null=True)),
                ('category', models.CharField(blank=True, max_length=100, null=True)),
                ('notes', models.TextField(blank=True, null=True)),
                ('is_reversal', models.BooleanField(default=False)),
                ('reversal_reason', models.TextField(blank=True, null=True)),
                ('reversed_at', models.DateTimeField(blank=True, null=True)),
                ('recorded_at', models.DateTimeField(db_index=True)),
                ('student', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                              related_name='safe_transactions', to='student.studentmodel')),
                ('original_transaction', models.ForeignKey(blank=True, null=True,
                                                           on_delete=django.db.models.deletion.PROTECT,
                                                           related_name='reversals',
                                                           to='finance.safetransactionmodel')),
                ('reversed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  related_name='+', to=settings.AUTH_USER_MODEL)),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  related_name='safe_transactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Safe Transaction',
                'verbose_name_plural': 'Safe Transactions',
                'ordering': ['-recorded_at', '-id'],
                'permissions': [('reverse_safetransactionmodel', 'Can reverse treasury transactions')],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0)),
                                           name='safe_transaction_amount_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='BankTransferModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[('deposit', 'Deposit'), ('withdrawal', 'Withdrawal')],
                                          max_length=12)),
                ('amount', money()),
                ('bank_name', models.CharField(default='Ecobank', max_length=100)),
                ('bank_reference', models.CharField(blank=True, max_length=100, null=True)),
                ('description', models.CharField(blank=True, max_length=255, null=True)),
                ('carried_by', models.CharField(blank=True, help_text='Person who carried the cash to or from the bank',
                                                max_length=100, null=True)),
                ('transfer_date', models.DateField()),
                ('safe_balance_before', money()),
                ('safe_balance_after', money()),
                ('bank_balance_before', money()),
                ('bank_balance_after', money()),
                ('notes', models.TextField(blank=True, null=True)),
                ('recorded_at', models.DateTimeField(auto_now_add=True)),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-recorded_at'],
            },
        ),
        migrations.CreateModel(
            name='DailyVerificationModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('verification_date', models.DateField(unique=True)),
                ('expected_balance', money()),
                ('counted_balance', money()),
                ('discrepancy', money()),
                ('status', models.CharField(choices=[('matched', 'Matched'), ('discrepancy', 'Discrepancy'),
                                                     ('reviewed', 'Reviewed')], max_length=12)),
                ('discrepancy_note', models.TextField(blank=True, null=True)),
                ('verified_at', models.DateTimeField(auto_now_add=True)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
                ('review_note', models.TextField(blank=True, null=True)),
                ('verified_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  related_name='daily_verifications', to=settings.AUTH_USER_MODEL)),
                ('reviewed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-verification_date'],
            },
        ),
        migrations.CreateModel(
            name='ReceiptNumberGeneratorModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('prefix', models.CharField(max_length=10)),
                ('year', models.PositiveIntegerField()),
                ('last_number', models.PositiveIntegerField(default=0)),
            ],
            options={
                'constraints': [models.UniqueConstraint(fields=('prefix', 'year'), name='unique_receipt_counter')],
            },
        ),
        migrations.CreateModel(
            name='PaymentModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', money()),
                ('method', models.CharField(choices=[('cash', 'Cash'), ('orange_money', 'Orange Money')],
                                            max_length=15)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('confirmed', 'Confirmed'),
                                                     ('failed', 'Failed'), ('reversed', 'Reversed')],
                                            default='confirmed', max_length=10)),
                ('receipt_number', models.CharField(max_length=50, unique=True)),
                ('transaction_ref', models.CharField(blank=True, help_text='Orange Money transaction reference',
                                                     max_length=100, null=True)),
                ('notes', models.TextField(blank=True, null=True)),
                ('recorded_at', models.DateTimeField(auto_now_add=True)),
                ('confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('enrollment', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments',
                                                 to='student.enrollmentmodel')),
                ('payment_schedule', models.ForeignKey(blank=True, null=True,
                                                       on_delete=django.db.models.deletion.SET_NULL,
                                                       related_name='payments', to='student.paymentschedulemodel')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  related_name='recorded_payments', to=settings.AUTH_USER_MODEL)),
                ('confirmed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                   related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-recorded_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='payment_amount_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ExpenseModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('category', models.CharField(choices=[
                    ('supplies', 'Supplies'), ('maintenance', 'Maintenance'), ('utilities', 'Utilities'),
                    ('salary', 'Salary'), ('transport', 'Transport'), ('communication', 'Communication'),
                    ('other', 'Other'),
                ], max_length=15)),
                ('description', models.CharField(max_length=255)),
                ('amount', money()),
                ('method', models.CharField(choices=[('cash', 'Cash'), ('orange_money', 'Orange Money')],
                                            default='cash', max_length=15)),
                ('expense_date', models.DateField()),
                ('vendor_name', models.CharField(blank=True, max_length=150, null=True)),
                ('receipt_url', models.CharField(blank=True, max_length=255, null=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'),
                                                     ('rejected', 'Rejected'), ('paid', 'Paid')],
                                            default='pending', max_length=10)),
                ('rejection_reason', models.TextField(blank=True, null=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('requested_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                   related_name='requested_expenses', to=settings.AUTH_USER_MODEL)),
                ('approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  related_name='+', to=settings.AUTH_USER_MODEL)),
                ('paid_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                              related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-expense_date', '-id'],
                'permissions': [
                    ('approve_expensemodel', 'Can approve or reject expenses'),
                    ('pay_expensemodel', 'Can pay approved expenses'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='expense_amount_positive'),
                ],
            },
        ),
    ]
