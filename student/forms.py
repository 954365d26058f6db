from django import forms
from django.core.exceptions import ValidationError

from admin_site.models import GradeRoomModel
from finance.models import PaymentModel
from .models import EnrollmentModel, StudentModel
from .utils import clean_phone, normalize_gender


class EnrollmentForm(forms.ModelForm):
    """
    Form for a new enrollment draft. The tuition fee comes from the grade; a
    different amount can be agreed with a reason, which sends the enrollment
    to director review on submission.
    """
    gender = forms.CharField(required=False, max_length=10)

    class Meta:
        model = EnrollmentModel
        fields = [
            'school_year', 'grade', 'student', 'is_returning_student',
            'first_name', 'last_name', 'date_of_birth', 'gender', 'phone', 'email',
            'father_name', 'father_phone', 'mother_name', 'mother_phone', 'address',
            'adjusted_tuition_fee', 'adjustment_reason',
        ]

    def clean_gender(self):
        gender = self.cleaned_data.get('gender')
        if not gender:
            return None
        normalized = normalize_gender(gender)
        if normalized is None:
            raise ValidationError("Gender must be male or female.")
        return normalized

    def _clean_phone_field(self, name):
        value = self.cleaned_data.get(name)
        if not value:
            return None
        phone = clean_phone(value)
        if phone is None:
            raise ValidationError("Enter a valid phone number (at least 9 digits).")
        return phone

    def clean_phone(self):
        return self._clean_phone_field('phone')

    def clean_father_phone(self):
        return self._clean_phone_field('father_phone')

    def clean_mother_phone(self):
        return self._clean_phone_field('mother_phone')

    def clean(self):
        cleaned_data = super().clean()
        school_year = cleaned_data.get('school_year')
        grade = cleaned_data.get('grade')
        student = cleaned_data.get('student')

        if school_year and grade and grade.school_year_id != school_year.pk:
            self.add_error('grade', "This grade does not belong to the selected school year.")

        if cleaned_data.get('is_returning_student') and not student:
            self.add_error('student', "Select the returning student.")
        if student and school_year and EnrollmentModel.objects.filter(
            student=student, school_year=school_year
        ).exclude(status__in=[EnrollmentModel.Status.REJECTED, EnrollmentModel.Status.CANCELLED]).exists():
            self.add_error('student', "This student already has an enrollment for this school year.")

        adjusted = cleaned_data.get('adjusted_tuition_fee')
        if adjusted is not None:
            if adjusted < 0:
                self.add_error('adjusted_tuition_fee', "The tuition fee cannot be negative.")
            if not (cleaned_data.get('adjustment_reason') or '').strip():
                self.add_error('adjustment_reason', "A reason is required when the tuition fee is adjusted.")
        return cleaned_data


class SubmitEnrollmentForm(forms.Form):
    """Optional first payment taken at submission."""
    payment_amount = forms.DecimalField(required=False, max_digits=14, decimal_places=2, min_value=1)
    payment_method = forms.ChoiceField(choices=PaymentModel.Method.choices, required=False)
    receipt_number = forms.CharField(required=False, max_length=50)
    transaction_ref = forms.CharField(required=False, max_length=100)

    def clean(self):
        cleaned_data = super().clean()
        amount = cleaned_data.get('payment_amount')
        method = cleaned_data.get('payment_method')
        if amount and not method:
            self.add_error('payment_method', "Select a payment method.")
        if method == PaymentModel.Method.ORANGE_MONEY and amount and not cleaned_data.get('transaction_ref'):
            self.add_error('transaction_ref', "The Orange Money transaction reference is required.")
        return cleaned_data

    def payment(self):
        if not self.cleaned_data.get('payment_amount'):
            return None
        return {
            'amount': self.cleaned_data['payment_amount'],
            'method': self.cleaned_data['payment_method'],
            'receipt_number': self.cleaned_data.get('receipt_number') or None,
            'transaction_ref': self.cleaned_data.get('transaction_ref') or None,
        }


class EnrollmentDecisionForm(forms.Form):
    """Comment for approve, reason for reject and cancel."""
    comment = forms.CharField(max_length=2000)

    def clean_comment(self):
        comment = self.cleaned_data['comment'].strip()
        if not comment:
            raise ValidationError("This field is required.")
        return comment


class AutoAssignForm(forms.Form):
    room_ids = forms.TypedMultipleChoiceField(coerce=int, required=False)

    def __init__(self, *args, grade=None, **kwargs):
        super().__init__(*args, **kwargs)
        rooms = GradeRoomModel.objects.filter(grade=grade, is_active=True) if grade else GradeRoomModel.objects.none()
        self.fields['room_ids'].choices = [(room.pk, room.display_name) for room in rooms]


class RoomAssignmentForm(forms.Form):
    """Manual assignment or bulk move of students into a room."""
    room = forms.ModelChoiceField(queryset=GradeRoomModel.objects.filter(is_active=True))
    students = forms.ModelMultipleChoiceField(queryset=StudentModel.objects.all())
