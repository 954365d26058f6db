from django import forms
from django.core.exceptions import ValidationError
from .models import SchoolYearModel, TrimesterModel, TimePeriodModel, ScheduleSlotModel, school_year_name_for
from .timetable import overlapping_period


class SchoolYearForm(forms.ModelForm):
    """
    Form for SchoolYearModel with validation for date ranges. The name is
    derived from the start date when it is left empty.
    """
    name = forms.CharField(max_length=20, required=False)

    class Meta:
        model = SchoolYearModel
        fields = ['name', 'start_date', 'end_date', 'enrollment_start', 'enrollment_end', 'is_active']

    def clean(self):
        cleaned_data = super().clean()
        start_date = cleaned_data.get('start_date')
        end_date = cleaned_data.get('end_date')
        enrollment_start = cleaned_data.get('enrollment_start')
        enrollment_end = cleaned_data.get('enrollment_end')

        if start_date and end_date and end_date <= start_date:
            raise ValidationError("The end date must be after the start date.")
        if enrollment_start and enrollment_end and enrollment_end < enrollment_start:
            raise ValidationError("The enrollment period ends before it starts.")

        if start_date and not cleaned_data.get('name'):
            cleaned_data['name'] = school_year_name_for(start_date)
        if cleaned_data.get('name') and SchoolYearModel.objects.filter(name=cleaned_data['name']).exists():
            raise ValidationError(f"School year {cleaned_data['name']} already exists.")
        return cleaned_data

    def save(self, commit=True):
        instance = super().save(commit=False)
        instance.name = self.cleaned_data['name']
        # activation is handled by SchoolYearModel.activate() so the others get switched off
        instance.is_active = False
        if commit:
            instance.save()
        return instance


class TrimesterForm(forms.ModelForm):

    class Meta:
        model = TrimesterModel
        fields = ['school_year', 'number', 'name', 'start_date', 'end_date', 'is_active']

    def clean_number(self):
        number = self.cleaned_data.get('number')
        if number not in (1, 2, 3):
            raise ValidationError("A school year has three trimesters, numbered 1 to 3.")
        return number

    def clean(self):
        cleaned_data = super().clean()
        school_year = cleaned_data.get('school_year')
        start_date = cleaned_data.get('start_date')
        end_date = cleaned_data.get('end_date')

        if start_date and end_date and end_date <= start_date:
            raise ValidationError("The end date must be after the start date.")
        if school_year and start_date and end_date:
            if start_date < school_year.start_date or end_date > school_year.end_date:
                raise ValidationError("The trimester must fall inside its school year.")
        return cleaned_data

    def save(self, commit=True):
        instance = super().save(commit=False)
        instance.is_active = False
        if commit:
            instance.save()
        return instance


class TimePeriodForm(forms.ModelForm):

    class Meta:
        model = TimePeriodModel
        fields = ['school_year', 'name', 'name_fr', 'start_time', 'end_time', 'order', 'is_active']

    def clean(self):
        cleaned_data = super().clean()
        school_year = cleaned_data.get('school_year')
        start_time = cleaned_data.get('start_time')
        end_time = cleaned_data.get('end_time')

        if start_time and end_time:
            if start_time >= end_time:
                raise ValidationError("The start time must be before the end time.")
            if school_year:
                period = overlapping_period(school_year, start_time, end_time, exclude_pk=self.instance.pk)
                if period:
                    raise ValidationError(f"This period overlaps {period}.")
        return cleaned_data


class ScheduleSlotForm(forms.ModelForm):

    class Meta:
        model = ScheduleSlotModel
        fields = ['room', 'time_period', 'day_of_week', 'grade_subject', 'teacher', 'room_location', 'is_break',
                  'notes']

    def clean(self):
        cleaned_data = super().clean()
        room = cleaned_data.get('room')
        time_period = cleaned_data.get('time_period')
        grade_subject = cleaned_data.get('grade_subject')

        if not cleaned_data.get('is_break') and not grade_subject:
            self.add_error('grade_subject', "A subject is required for a lesson.")
        if room and grade_subject and grade_subject.grade_id != room.grade_id:
            self.add_error('grade_subject', "This subject is not taught in this grade.")
        if room and time_period and time_period.school_year_id != room.grade.school_year_id:
            self.add_error('time_period', "This period belongs to another school year.")
        return cleaned_data
