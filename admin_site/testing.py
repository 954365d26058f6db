"""Fixture helpers shared by the apps' test suites."""
from datetime import date
from decimal import Decimal

from django.contrib.auth.models import User, Permission

from .models import SchoolYearModel, GradeModel, GradeRoomModel, TrimesterModel


def create_school_year(name='2025 - 2026', start_date=date(2025, 9, 1), end_date=date(2026, 6, 30), **kwargs):
    kwargs.setdefault('is_active', True)
    return SchoolYearModel.objects.create(name=name, start_date=start_date, end_date=end_date, **kwargs)


def create_trimester(school_year, number=1, start_date=date(2025, 9, 1), end_date=date(2025, 12, 20), **kwargs):
    kwargs.setdefault('name', f"Trimester {number}")
    kwargs.setdefault('is_active', True)
    return TrimesterModel.objects.create(school_year=school_year, number=number, start_date=start_date,
                                         end_date=end_date, **kwargs)


def create_grade(school_year, name='6eme', tuition_fee=Decimal('900000'), **kwargs):
    kwargs.setdefault('level', GradeModel.Level.COLLEGE)
    return GradeModel.objects.create(school_year=school_year, name=name, tuition_fee=tuition_fee, **kwargs)


def create_room(grade, name='A', capacity=35, **kwargs):
    kwargs.setdefault('display_name', f"{grade.name} {name}")
    return GradeRoomModel.objects.create(grade=grade, name=name, capacity=capacity, **kwargs)


def create_user(username='staff', permissions=(), **kwargs):
    """`permissions` are 'app_label.codename' strings."""
    user = User.objects.create_user(username=username, password='password', **kwargs)
    for perm in permissions:
        app_label, codename = perm.split('.')
        user.user_permissions.add(Permission.objects.get(content_type__app_label=app_label, codename=codename))
    return user


def enroll_student(grade, first_name, last_name, gender='male', **kwargs):
    """A student with a completed enrollment in `grade`."""
    from student.models import StudentModel, EnrollmentModel

    student = StudentModel.objects.create(first_name=first_name, last_name=last_name, gender=gender, **kwargs)
    EnrollmentModel.objects.create(
        school_year=grade.school_year, grade=grade, student=student, first_name=first_name, last_name=last_name,
        gender=gender, original_tuition_fee=grade.tuition_fee, status=EnrollmentModel.Status.COMPLETED,
    )
    return student
