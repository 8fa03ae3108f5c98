from datetime import date

from unierp import attendance_stats as stats


def rec(day, status, code="CS101", notes=None):
    return {
        "date": day, "status": status, "course_code": code,
        "course_name": {"CS101": "Intro to CS", "MATH201": "Calculus I"}[code],
        "instructor": "Dr. Smith" if code == "CS101" else "Dr. Johnson",
        "notes": notes,
    }


RECORDS = [
    rec(date(2024, 9, 2), "present"),                      # Monday
    rec(date(2024, 9, 3), "late", notes="Bus delay"),
    rec(date(2024, 9, 4), "absent", code="MATH201"),
    rec(date(2024, 9, 8), "present", code="MATH201"),      # Sunday
    rec(date(2024, 10, 1), "excused", notes="Medical"),
]


def test_summarize_counts_and_rates():
    s = stats.summarize(RECORDS)
    assert s["total"] == 5
    assert s["present"] == 2
    assert s["absent"] == 1
    assert s["late"] == 1
    assert s["excused"] == 1
    assert s["attendance_rate"] == 80.0
    assert s["punctuality_rate"] == 40.0


def test_summarize_empty():
    s = stats.summarize([])
    assert s["total"] == 0
    assert s["attendance_rate"] == 0.0
    assert s["punctuality_rate"] == 0.0


def test_by_course():
    rows = {r["course_code"]: r for r in stats.by_course(RECORDS)}
    assert rows["CS101"]["total"] == 3
    assert rows["CS101"]["attendance_rate"] == 100.0
    assert rows["CS101"]["punctuality_rate"] == 33.3
    assert rows["MATH201"]["attendance_rate"] == 50.0
    assert rows["MATH201"]["instructor"] == "Dr. Johnson"


def test_week_start_is_sunday():
    assert stats.week_start(date(2024, 9, 2)) == date(2024, 9, 1)
    assert stats.week_start(date(2024, 9, 8)) == date(2024, 9, 8)
    assert stats.week_start("2024-09-07") == date(2024, 9, 1)


def test_weekly_trends():
    weeks = stats.weekly_trends(RECORDS)
    assert [w["week"] for w in weeks] == ["2024-09-01", "2024-09-08", "2024-09-29"]
    first = weeks[0]
    assert first["total"] == 3
    assert first["rate"] == 66.7
    assert first["punctuality"] == 33.3


def test_filter_records():
    assert len(stats.filter_records(RECORDS, course="CS101")) == 3
    assert len(stats.filter_records(RECORDS, course="all")) == 5
    assert len(stats.filter_records(RECORDS, month=10)) == 1
    assert len(stats.filter_records(RECORDS, month="9")) == 4
    found = stats.filter_records(RECORDS, search="medical")
    assert [r["status"] for r in found] == ["excused"]
    assert len(stats.filter_records(RECORDS, search="johnson")) == 2


def test_sort_records():
    newest = stats.sort_records(RECORDS)
    assert newest[0]["date"] == date(2024, 10, 1)
    oldest = stats.sort_records(RECORDS, "date", "asc")
    assert oldest[0]["date"] == date(2024, 9, 2)
    by_status = stats.sort_records(RECORDS, "status", "asc")
    assert by_status[0]["status"] == "absent"
    assert stats.sort_records(RECORDS, "bogus") == RECORDS


def test_filter_options():
    opts = stats.filter_options(RECORDS)
    assert opts["courses"] == ["CS101", "MATH201"]
    assert opts["months"] == [9, 10]


def test_is_locked():
    today = date(2024, 9, 10)
    assert not stats.is_locked(date(2024, 9, 7), today, 3)
    assert stats.is_locked(date(2024, 9, 6), today, 3)


def test_below_threshold():
    rows = [
        {"student_id": 1, "total": 10, "attendance_rate": 70.0},
        {"student_id": 2, "total": 10, "attendance_rate": 75.0},
        {"student_id": 3, "total": 0, "attendance_rate": 0.0},
    ]
    assert [r["student_id"] for r in stats.below_threshold(rows, 75.0)] == [1]
