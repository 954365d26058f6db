# grading/calculations.py

from decimal import Decimal, ROUND_HALF_UP

SCALE = Decimal('20')
TWO_PLACES = Decimal('0.01')

# Share of each evaluation type in a subject average.
TYPE_WEIGHTS = {
    'interrogation': Decimal('0.2'),
    'devoir_surveille': Decimal('0.3'),
    'composition': Decimal('0.5'),
}

PASS_MARK = Decimal('10')
RESIT_MARK = Decimal('8')


def round2(value):
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def normalize_score(score, max_score=SCALE):
    """Brings a score marked out of `max_score` onto the /20 scale."""
    score, max_score = Decimal(score), Decimal(max_score)
    if max_score == SCALE:
        return score
    return score / max_score * SCALE


def _mean(values):
    return sum(values, Decimal('0')) / len(values)


def subject_average(evaluations):
    """
    Subject average of one student from (type, score, max_score) tuples.

    Each type is averaged on its own, then the type means are combined with
    TYPE_WEIGHTS. The weights are renormalised over the types that have at
    least one evaluation; a subject with no evaluation averages 0.
    """
    by_type = {eval_type: [] for eval_type in TYPE_WEIGHTS}
    for eval_type, score, max_score in evaluations:
        by_type[eval_type].append(normalize_score(score, max_score))

    means = {eval_type: _mean(scores) for eval_type, scores in by_type.items() if scores}
    total_weight = sum((TYPE_WEIGHTS[eval_type] for eval_type in means), Decimal('0'))
    if total_weight:
        average = sum((mean * TYPE_WEIGHTS[eval_type] for eval_type, mean in means.items()), Decimal('0'))
        average = average / total_weight
    else:
        average = Decimal('0')

    def type_mean(eval_type):
        return round2(means[eval_type]) if eval_type in means else None

    return {
        'interrogation_average': type_mean('interrogation'),
        'devoir_average': type_mean('devoir_surveille'),
        'composition_average': type_mean('composition'),
        'average': round2(average),
    }


def general_average(subject_averages):
    """Coefficient-weighted mean of (average, coefficient) pairs, None without any coefficient."""
    total_coefficients = sum(coefficient for _, coefficient in subject_averages)
    if not total_coefficients:
        return None
    weighted = sum((Decimal(average) * coefficient for average, coefficient in subject_averages), Decimal('0'))
    return round2(weighted / total_coefficients)


def rank(averages):
    """
    Competition ranking of {key: average}: highest first, equal averages
    share a rank and the next rank skips accordingly (1, 2, 2, 4).
    """
    ordered = sorted(averages.items(), key=lambda item: item[1], reverse=True)
    ranks = {}
    previous = None
    for position, (key, average) in enumerate(ordered, 1):
        if average != previous:
            current_rank = position
            previous = average
        ranks[key] = current_rank
    return ranks


def decision_for(average):
    if average is None:
        return 'pending'
    if average >= PASS_MARK:
        return 'admis'
    if average >= RESIT_MARK:
        return 'rattrapage'
    return 'redouble'


def class_statistics(averages):
    averages = [Decimal(a) for a in averages if a is not None]
    if not averages:
        return {
            'total_students': 0, 'class_average': Decimal('0'), 'highest_average': Decimal('0'),
            'lowest_average': Decimal('0'), 'pass_count': 0, 'pass_rate': Decimal('0'),
        }
    pass_count = sum(1 for a in averages if a >= PASS_MARK)
    return {
        'total_students': len(averages),
        'class_average': round2(_mean(averages)),
        'highest_average': max(averages),
        'lowest_average': min(averages),
        'pass_count': pass_count,
        'pass_rate': round2(Decimal(pass_count) / len(averages) * 100),
    }
