"""Grade arithmetic over plain grade records.

A grade record is a mapping with at least ``letter``, ``score``,
``max_score`` and ``weight``; ``course_code``, ``course_name`` and
``semester`` are used for grouping and filtering.
"""

GRADE_POINTS = {
    "A+": 4.0, "A": 4.0, "A-": 3.7,
    "B+": 3.3, "B": 3.0, "B-": 2.7,
    "C+": 2.3, "C": 2.0, "C-": 1.7,
    "D+": 1.3, "D": 1.0, "F": 0.0,
}

# (minimum percentage, letter), highest first
PERCENT_SCALE = [
    (97, "A+"), (93, "A"), (90, "A-"),
    (85, "B+"), (82, "B"), (80, "B-"),
    (77, "C+"), (73, "C"), (70, "C-"),
    (67, "D+"), (60, "D"),
]

POINTS_SCALE = [
    (4.0, "A"), (3.7, "A-"),
    (3.3, "B+"), (3.0, "B"), (2.7, "B-"),
    (2.3, "C+"), (2.0, "C"), (1.7, "C-"),
    (1.3, "D+"), (1.0, "D"),
]


def grade_points(letter):
    return GRADE_POINTS.get((letter or "").strip().upper(), 0.0)


def letter_for_percentage(pct):
    for minimum, letter in PERCENT_SCALE:
        if pct >= minimum:
            return letter
    return "F"


def letter_for_points(avg):
    # small epsilon so 3.6999999 from float sums still lands on A-
    for minimum, letter in POINTS_SCALE:
        if avg + 1e-9 >= minimum:
            return letter
    return "F"


def percentage(total, max_total):
    if not max_total:
        return 0.0
    return float(total) / float(max_total) * 100


def score_percent(grade):
    return percentage(grade.get("score") or 0, grade.get("max_score") or 0)


def gpa(grades):
    if not grades:
        return 0.0
    total = sum(grade_points(g["letter"]) for g in grades)
    return round(total / len(grades), 2)


def weighted_gpa(grades):
    total_weight = sum(float(g.get("weight") or 0) for g in grades)
    if total_weight <= 0:
        return 0.0
    weighted = sum(grade_points(g["letter"]) * float(g.get("weight") or 0) for g in grades)
    return round(weighted / total_weight, 2)


def average_score(grades):
    if not grades:
        return 0.0
    return round(sum(score_percent(g) for g in grades) / len(grades), 2)


def grade_distribution(grades):
    dist = {"A": 0, "B": 0, "C": 0, "D": 0, "F": 0}
    for g in grades:
        first = (g.get("letter") or "F")[:1].upper()
        if first in ("A", "B", "C", "D"):
            dist[first] += 1
        else:
            dist["F"] += 1
    return dist


def course_performance(grades):
    courses = {}
    for g in grades:
        code = g.get("course_code")
        if code not in courses:
            courses[code] = {
                "course_code": code,
                "course_name": g.get("course_name"),
                "grades": [],
                "total_weight": 0.0,
            }
        courses[code]["grades"].append(g)
        courses[code]["total_weight"] += float(g.get("weight") or 0)

    result = []
    for course in courses.values():
        items = course.pop("grades")
        avg_points = sum(grade_points(g["letter"]) for g in items) / len(items)
        course["count"] = len(items)
        course["average_score"] = average_score(items)
        course["average_points"] = round(avg_points, 2)
        course["average_grade"] = letter_for_points(avg_points)
        result.append(course)
    return result


def semesters(grades):
    seen = []
    for g in grades:
        sem = g.get("semester")
        if sem and sem not in seen:
            seen.append(sem)
    return seen


def filter_by_semester(grades, semester=None):
    if not semester or semester == "all":
        return list(grades)
    return [g for g in grades if g.get("semester") == semester]


def summarize(grades):
    return {
        "gpa": gpa(grades),
        "weighted_gpa": weighted_gpa(grades),
        "average_score": average_score(grades),
        "distribution": grade_distribution(grades),
        "courses": course_performance(grades),
        "count": len(grades),
    }
