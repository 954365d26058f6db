"""
Balanced distribution of a grade's students across its rooms.

Students are taken first come, first served (enrollment date) and each one
goes to the room where adding them disturbs the balance least:

* gender balance, weight 0.5
* age balance, weight 0.3
* occupancy, weight 0.2 (emptier rooms are preferred)

Students are plain dicts with ``id``, ``gender`` ('male', 'female' or None),
``date_of_birth``, ``enrollment_date`` and ``is_locked``. Rooms are dicts
with ``id``, ``display_name``, ``capacity`` and ``current_count``.
"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

GENDER_WEIGHT = 0.5
AGE_WEIGHT = 0.3
CAPACITY_WEIGHT = 0.2


def round_half_up(value, places=0):
    """Rounds halves up: 12.5 gives 13."""
    rounded = Decimal(str(value)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)


def age_on(date_of_birth, today):
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def _student_age(student, today):
    dob = student.get('date_of_birth')
    return age_on(dob, today) if dob else None


def gender_penalty(stats, gender, target_ratio):
    """0-100, lower is better. No penalty for unknown gender or a room without gendered students yet."""
    if gender not in ('male', 'female'):
        return 0
    total_with_gender = stats['male'] + stats['female']
    if total_with_gender == 0:
        return 0

    new_total = total_with_gender + 1
    new_male = stats['male'] + (1 if gender == 'male' else 0)
    new_female = stats['female'] + (1 if gender == 'female' else 0)

    male_deviation = abs(new_male / new_total - target_ratio['male'])
    female_deviation = abs(new_female / new_total - target_ratio['female'])
    return (male_deviation + female_deviation) * 50


def age_penalty(stats, age, overall_average_age):
    """0-100, lower is better. A two-year drift of the room average is the maximum penalty."""
    if age is None or stats['age_count'] == 0:
        return 0
    new_average = (stats['age_sum'] + age) / (stats['age_count'] + 1)
    return min(abs(new_average - overall_average_age) * 50, 100)


def room_score(room, stats, student, age, target_ratio, overall_average_age):
    score = gender_penalty(stats, student.get('gender'), target_ratio) * GENDER_WEIGHT
    score += age_penalty(stats, age, overall_average_age) * AGE_WEIGHT
    score += (stats['count'] / room['capacity']) * 100 * CAPACITY_WEIGHT
    return score


def overall_statistics(students, today):
    male = sum(1 for s in students if s.get('gender') == 'male')
    female = sum(1 for s in students if s.get('gender') == 'female')
    unknown = len(students) - male - female
    ages = [a for a in (_student_age(s, today) for s in students) if a is not None]

    total_with_gender = male + female
    ratio = {
        'male': male / total_with_gender if total_with_gender else 0.5,
        'female': female / total_with_gender if total_with_gender else 0.5,
        'unknown': unknown,
    }
    average_age = sum(ages) / len(ages) if ages else 0
    return ratio, average_age


def balance_score(distributions, target_ratio):
    """0-100, 100 being a perfect gender balance across rooms."""
    deviations = []
    for room in distributions:
        total_with_gender = room['male_count'] + room['female_count']
        if total_with_gender == 0:
            continue
        male_deviation = abs(room['male_count'] / total_with_gender - target_ratio['male'])
        female_deviation = abs(room['female_count'] / total_with_gender - target_ratio['female'])
        deviations.append(male_deviation + female_deviation)

    if not deviations:
        return 100
    average_deviation = sum(deviations) / len(deviations)
    return round_half_up(max(0, 100 - average_deviation * 200))


def auto_assign_students(students, rooms, today=None):
    """
    Returns a dict with ``assignments`` (list of (student_id, room_id)),
    ``unassigned`` (students that did not fit anywhere) and ``balance_report``.
    """
    today = today or date.today()

    eligible = sorted(
        (s for s in students if not s.get('is_locked')),
        key=lambda s: s['enrollment_date']
    )
    target_ratio, overall_average_age = overall_statistics(eligible, today)

    # Gender and age statistics only cover the students placed in this run.
    stats = {
        room['id']: {'male': 0, 'female': 0, 'unknown': 0, 'age_sum': 0, 'age_count': 0,
                     'count': room['current_count']}
        for room in rooms
    }
    free_places = {room['id']: room['capacity'] - room['current_count'] for room in rooms}

    assignments = []
    unassigned = []

    for student in eligible:
        available = [room for room in rooms if free_places[room['id']] > 0]
        if not available:
            unassigned.append(student)
            continue

        age = _student_age(student, today)
        # min() keeps the first room on equal scores, so room order breaks ties
        best_room = min(
            available,
            key=lambda room: room_score(room, stats[room['id']], student, age, target_ratio, overall_average_age)
        )
        assignments.append((student['id'], best_room['id']))

        room_stats = stats[best_room['id']]
        gender = student.get('gender')
        if gender in ('male', 'female'):
            room_stats[gender] += 1
        else:
            room_stats['unknown'] += 1
        if age is not None:
            room_stats['age_sum'] += age
            room_stats['age_count'] += 1
        room_stats['count'] += 1
        free_places[best_room['id']] -= 1

    distributions = []
    for room in rooms:
        room_stats = stats[room['id']]
        average_age = None
        if room_stats['age_count']:
            average_age = round_half_up(room_stats['age_sum'] / room_stats['age_count'], 1)
        distributions.append({
            'room_id': room['id'],
            'room_name': room['display_name'],
            'total_assigned': room_stats['count'] - room['current_count'],
            'male_count': room_stats['male'],
            'female_count': room_stats['female'],
            'unknown_gender_count': room_stats['unknown'],
            'average_age': average_age,
        })

    return {
        'assignments': assignments,
        'unassigned': unassigned,
        'balance_report': {
            'room_distributions': distributions,
            'overall_gender_ratio': {
                'male': round_half_up(target_ratio['male'] * 100),
                'female': round_half_up(target_ratio['female'] * 100),
                'unknown': target_ratio['unknown'],
            },
            'balance_score': balance_score(distributions, target_ratio),
        },
    }
