# student/utils.py

import re
from datetime import date
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

# Tuition is paid in three schedules of three months each.
PAYMENT_SCHEDULE_MONTHS = {
    1: ['September', 'October', 'May'],
    2: ['November', 'December', 'January'],
    3: ['February', 'March', 'April'],
}

MONTHS_FR = {
    'September': 'Septembre', 'October': 'Octobre', 'November': 'Novembre', 'December': 'Décembre',
    'January': 'Janvier', 'February': 'Février', 'March': 'Mars', 'April': 'Avril', 'May': 'Mai',
}


def calculate_payment_schedules(total_amount, school_year_start):
    """
    Splits a tuition fee into the three payment schedules.

    Schedules 1 and 2 get floor(total / 3); schedule 3 takes what is left so
    the three always add up to the total. Due dates are 1 September and
    1 November of the start year and 1 February of the following year.
    """
    total_amount = Decimal(total_amount)
    per_schedule = (total_amount / 3).to_integral_value(rounding=ROUND_FLOOR)
    remainder = total_amount - per_schedule * 2
    year = school_year_start.year

    return [
        {
            'schedule_number': 1,
            'amount': per_schedule,
            'months': list(PAYMENT_SCHEDULE_MONTHS[1]),
            'due_date': date(year, 9, 1),
        },
        {
            'schedule_number': 2,
            'amount': per_schedule,
            'months': list(PAYMENT_SCHEDULE_MONTHS[2]),
            'due_date': date(year, 11, 1),
        },
        {
            'schedule_number': 3,
            'amount': remainder,
            'months': list(PAYMENT_SCHEDULE_MONTHS[3]),
            'due_date': date(year + 1, 2, 1),
        },
    ]


def percentage(part, whole):
    """Whole-number percentage, halves rounded up."""
    return int((Decimal(part) / Decimal(whole) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def _counted_total(payments):
    # pending payments are counted too: the money has been handed over
    return sum(
        (Decimal(p['amount']) for p in payments if p['status'] in ('confirmed', 'pending')),
        Decimal('0')
    )


def calculate_payment_coverage(payment_amount, schedules, existing_payments):
    """
    Works out which schedules and months a new payment would cover, on top
    of what existing confirmed or pending payments already cover.

    `schedules` are dicts with schedule_number, amount and months;
    `existing_payments` are dicts with amount and status.
    """
    remaining_payment = Decimal(payment_amount)
    running_total = _counted_total(existing_payments)
    schedules_covered = []

    for schedule in sorted(schedules, key=lambda s: s['schedule_number']):
        if remaining_payment <= 0:
            break

        schedule_amount = Decimal(schedule['amount'])
        paid_before = min(running_total, schedule_amount)
        schedule_remaining = schedule_amount - paid_before
        running_total = max(Decimal('0'), running_total - schedule_amount)

        if schedule_remaining <= 0:
            continue

        amount_for_schedule = min(remaining_payment, schedule_remaining)
        percent_covered = percentage(paid_before + amount_for_schedule, schedule_amount)

        months = schedule['months']
        months_covered = []
        if percent_covered >= 33:
            months_covered.append(months[0])
        if percent_covered >= 66:
            months_covered.append(months[1])
        if percent_covered >= 100:
            months_covered.append(months[2])

        schedules_covered.append({
            'schedule_number': schedule['schedule_number'],
            'percent_covered': percent_covered,
            'months_covered': months_covered,
        })
        remaining_payment -= amount_for_schedule

    return {
        'schedules_covered': schedules_covered,
        'total_covered': Decimal(payment_amount) - remaining_payment,
        'remaining_amount': remaining_payment,
    }


def calculate_enrollment_summary(total_owed, payments):
    total_owed = Decimal(total_owed)
    total_paid = _counted_total(payments)
    total_remaining = max(Decimal('0'), total_owed - total_paid)
    percent_paid = percentage(total_paid, total_owed) if total_owed > 0 else 0
    return {
        'total_paid': total_paid,
        'total_remaining': total_remaining,
        'percent_paid': percent_paid,
        'is_fully_paid': total_remaining == 0,
    }


def clean_phone(phone_str):
    """
    Extracts the first usable phone number from a string, cleaning common
    formatting characters. Local Guinean numbers have 9 digits.
    Returns a cleaned number or None.
    """
    if not phone_str:
        return None

    phone_str = str(phone_str).strip()
    phones = re.split(r'[,;/]+', phone_str)

    for phone in phones:
        phone = phone.strip()
        # Remove non-digit characters, but keep a leading '+' if it exists
        cleaned_phone = re.sub(r'[^\d+]', '', phone)
        if cleaned_phone and len(cleaned_phone.lstrip('+')) >= 9:
            return cleaned_phone[:20]
    return None


def format_phone_number(phone):
    """Formats as +224 XXX XX XX XX, or XXX XX XX XX for local numbers."""
    if not phone:
        return ''
    cleaned = re.sub(r'[^\d+]', '', phone)
    if cleaned.startswith('+224'):
        number = cleaned[4:]
        return f"+224 {number[:3]} {number[3:5]} {number[5:7]} {number[7:]}"
    if len(cleaned) == 9:
        return f"{cleaned[:3]} {cleaned[3:5]} {cleaned[5:7]} {cleaned[7:]}"
    return phone


def normalize_gender(gender_str):
    """
    Normalizes various gender inputs (e.g., 'M', 'male', 'F', 'Fille')
    to the stored choices 'male' or 'female'.
    """
    if not gender_str:
        return None

    gender_str = str(gender_str).strip().upper()

    if gender_str in ['M', 'MALE', 'GARCON', 'GARÇON', 'MASCULIN']:
        return 'male'
    elif gender_str in ['F', 'FEMALE', 'FILLE', 'FEMININ', 'FÉMININ']:
        return 'female'
    return None
