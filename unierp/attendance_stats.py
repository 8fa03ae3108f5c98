from datetime import date, datetime, timedelta

STATUSES = ("present", "absent", "late", "excused")


def as_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()


def _rate(part, total):
    if not total:
        return 0.0
    return round(part / total * 100, 1)


def _counts(records):
    counts = {s: 0 for s in STATUSES}
    for r in records:
        status = r.get("status")
        if status in counts:
            counts[status] += 1
    counts["total"] = len(records)
    # late and excused still count as attended
    attended = counts["present"] + counts["late"] + counts["excused"]
    counts["attendance_rate"] = _rate(attended, counts["total"])
    counts["punctuality_rate"] = _rate(counts["present"], counts["total"])
    return counts


def summarize(records):
    return _counts(list(records))


def by_course(records):
    groups = {}
    meta = {}
    for r in records:
        code = r.get("course_code")
        groups.setdefault(code, []).append(r)
        meta.setdefault(code, {
            "course_code": code,
            "course_name": r.get("course_name"),
            "instructor": r.get("instructor"),
        })
    result = []
    for code, items in groups.items():
        row = dict(meta[code])
        row.update(_counts(items))
        result.append(row)
    return result


def week_start(day):
    """Sunday that opens the week containing ``day``."""
    day = as_date(day)
    return day - timedelta(days=(day.weekday() + 1) % 7)


def weekly_trends(records):
    weeks = {}
    for r in records:
        weeks.setdefault(week_start(r["date"]), []).append(r)
    trends = []
    for start in sorted(weeks):
        c = _counts(weeks[start])
        trends.append({
            "week": start.isoformat(),
            "total": c["total"],
            "present": c["present"],
            "absent": c["absent"],
            "late": c["late"],
            "excused": c["excused"],
            "rate": c["attendance_rate"],
            "punctuality": c["punctuality_rate"],
        })
    return trends


def filter_records(records, course=None, month=None, search=None):
    result = list(records)
    if course and course != "all":
        result = [r for r in result if r.get("course_code") == course]
    if month and month != "all":
        month = int(month)
        result = [r for r in result if as_date(r["date"]).month == month]
    if search:
        needle = search.lower()
        fields = ("course_code", "course_name", "instructor", "notes")
        result = [
            r for r in result
            if any(needle in (r.get(f) or "").lower() for f in fields)
        ]
    return result


SORT_KEYS = {
    "date": lambda r: as_date(r["date"]),
    "course": lambda r: r.get("course_code") or "",
    "status": lambda r: r.get("status") or "",
}


def sort_records(records, sort_by="date", order="desc"):
    key = SORT_KEYS.get(sort_by)
    if key is None:
        return list(records)
    return sorted(records, key=key, reverse=(order != "asc"))


def filter_options(records):
    courses = []
    months = []
    for r in records:
        if r.get("course_code") not in courses:
            courses.append(r.get("course_code"))
        m = as_date(r["date"]).month
        if m not in months:
            months.append(m)
    return {"courses": courses, "months": sorted(months)}


def is_locked(day, today, lock_days):
    return (as_date(today) - as_date(day)).days > lock_days


def below_threshold(rows, threshold):
    return [r for r in rows if r["total"] and r["attendance_rate"] < threshold]
