"""
Deterministic recurrence occurrence generator for therapy schedules.

A rule is stored on the schedule as a JSON blob
({"frequency", "interval", "daysOfWeek", "startDate", "startTime"}) and is
parsed here into one frozen dataclass per frequency, so each variant only
carries the fields it needs.

Frequencies:
- daily: every N days
- weekly: one weekday, every week
- biweekly: one weekday, every other week (parity anchored on start_date)
- monthly: day-of-month of start_date, every N months (short months skipped)
- custom: a set of weekdays, cursor advanced by N days

Weekday indices follow the stored format: 0=Sunday .. 6=Saturday.
"""
import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, ClassVar, Union

from app.domain.errors import RecurrenceValidationError


DAILY = "daily"
WEEKLY = "weekly"
BIWEEKLY = "biweekly"
MONTHLY = "monthly"
CUSTOM = "custom"

VALID_FREQ = frozenset({DAILY, WEEKLY, BIWEEKLY, MONTHLY, CUSTOM})
SINGLE_WEEKDAY_FREQ = frozenset({WEEKLY, BIWEEKLY})

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class DailyRule:
    interval: int
    start_date: date
    start_time: time
    frequency: ClassVar[str] = DAILY


@dataclass(frozen=True)
class WeeklyRule:
    weekday: int  # 0=Sunday
    start_date: date
    start_time: time
    frequency: ClassVar[str] = WEEKLY

    @property
    def interval(self) -> int:
        return 1


@dataclass(frozen=True)
class BiweeklyRule:
    weekday: int  # 0=Sunday
    start_date: date
    start_time: time
    frequency: ClassVar[str] = BIWEEKLY

    @property
    def interval(self) -> int:
        return 2


@dataclass(frozen=True)
class MonthlyRule:
    interval: int
    start_date: date
    start_time: time
    frequency: ClassVar[str] = MONTHLY


@dataclass(frozen=True)
class CustomRule:
    interval: int
    days_of_week: frozenset[int]
    start_date: date
    start_time: time
    frequency: ClassVar[str] = CUSTOM


RecurrenceRule = Union[DailyRule, WeeklyRule, BiweeklyRule, MonthlyRule, CustomRule]


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    last = last_day_of_month(year, month)
    day = min(d.day, last)
    return date(year, month, day)


def sunday_weekday(d: date) -> int:
    """Weekday index with Sunday=0 (Python's weekday() has Monday=0)."""
    return (d.weekday() + 1) % 7


def days_of_week(rule: RecurrenceRule) -> frozenset[int]:
    if isinstance(rule, (WeeklyRule, BiweeklyRule)):
        return frozenset({rule.weekday})
    if isinstance(rule, CustomRule):
        return rule.days_of_week
    return frozenset()


# --- Parsing / serialization of the stored JSON shape ---

def _parse_interval(raw: Any) -> int:
    if raw is None:
        return 1
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise RecurrenceValidationError("interval must be an integer")
    if raw < 1:
        raise RecurrenceValidationError("interval must be >= 1")
    return raw


def _parse_days(raw: Any) -> frozenset[int]:
    if raw is None:
        return frozenset()
    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise RecurrenceValidationError("daysOfWeek must be a list of weekday indices")
    out: set[int] = set()
    for item in raw:
        if isinstance(item, bool) or not isinstance(item, int) or not 0 <= item <= 6:
            raise RecurrenceValidationError(f"invalid weekday index: {item!r}")
        out.add(item)
    return frozenset(out)


def _parse_date(raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise RecurrenceValidationError("startDate is required")
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError as e:
        raise RecurrenceValidationError(f"invalid startDate: {raw}") from e


def _parse_time(raw: Any) -> time:
    if isinstance(raw, time):
        return raw.replace(second=0, microsecond=0, tzinfo=None)
    if not isinstance(raw, str) or not raw.strip():
        raise RecurrenceValidationError("startTime is required")
    parts = raw.strip().split(":")
    try:
        hour, minute = int(parts[0]), int(parts[1])
        return time(hour, minute)
    except (IndexError, ValueError) as e:
        raise RecurrenceValidationError(f"invalid startTime: {raw}") from e


def parse_rule(data: dict[str, Any]) -> RecurrenceRule:
    """Validate a stored/submitted rule blob and build the matching variant.

    Raises RecurrenceValidationError for unknown frequency, interval < 1,
    missing daysOfWeek where the frequency needs it, or more than one weekday
    for weekly/biweekly.
    """
    if not isinstance(data, dict):
        raise RecurrenceValidationError("rule must be an object")

    freq = data.get("frequency")
    if freq not in VALID_FREQ:
        raise RecurrenceValidationError(f"invalid frequency: {freq}")

    interval = _parse_interval(data.get("interval"))
    days = _parse_days(data.get("daysOfWeek"))
    start_date = _parse_date(data.get("startDate"))
    start_time = _parse_time(data.get("startTime"))

    if freq == DAILY:
        return DailyRule(interval=interval, start_date=start_date, start_time=start_time)
    if freq == MONTHLY:
        return MonthlyRule(interval=interval, start_date=start_date, start_time=start_time)
    if not days:
        raise RecurrenceValidationError(f"{freq} requires daysOfWeek")
    if freq in SINGLE_WEEKDAY_FREQ:
        if len(days) != 1:
            raise RecurrenceValidationError(f"{freq} requires exactly one weekday")
        (weekday,) = days
        cls = WeeklyRule if freq == WEEKLY else BiweeklyRule
        return cls(weekday=weekday, start_date=start_date, start_time=start_time)
    return CustomRule(
        interval=interval, days_of_week=days, start_date=start_date, start_time=start_time,
    )


def rule_to_json(rule: RecurrenceRule) -> dict[str, Any]:
    """Inverse of parse_rule: the shape persisted in recurring_schedules.rrule_json."""
    return {
        "frequency": rule.frequency,
        "interval": rule.interval,
        "daysOfWeek": sorted(days_of_week(rule)),
        "startDate": rule.start_date.isoformat(),
        "startTime": rule.start_time.strftime("%H:%M"),
    }


# --- Generation ---

def _includes(rule: RecurrenceRule, d: date) -> bool:
    if isinstance(rule, DailyRule):
        return True
    if isinstance(rule, (WeeklyRule, CustomRule)):
        return sunday_weekday(d) in days_of_week(rule)
    if isinstance(rule, BiweeklyRule):
        weeks = (d - rule.start_date).days // 7
        return sunday_weekday(d) == rule.weekday and weeks % 2 == 0
    return False


def _step_days(rule: RecurrenceRule) -> int:
    if isinstance(rule, (DailyRule, CustomRule)):
        return rule.interval
    # weekly/biweekly scan one day at a time to land on the weekday
    return 1


def _monthly_dates(rule: MonthlyRule, horizon: date):
    by_md = rule.start_date.day
    k = 0
    while True:
        base = add_months(rule.start_date.replace(day=1), k * rule.interval)
        if base > horizon:
            return
        k += 1
        if by_md > last_day_of_month(base.year, base.month):
            continue
        yield date(base.year, base.month, by_md)


def _candidate_dates(rule: RecurrenceRule, horizon: date):
    if isinstance(rule, MonthlyRule):
        yield from _monthly_dates(rule, horizon)
        return
    step = timedelta(days=_step_days(rule))
    d = rule.start_date
    while d <= horizon:
        if _includes(rule, d):
            yield d
        d += step


def horizon_for(now: datetime, months_ahead: int, tz: tzinfo) -> datetime:
    local_now = now.astimezone(tz)
    end_date = add_months(local_now.date(), months_ahead)
    return datetime.combine(end_date, local_now.timetz())


def generate(
    rule: RecurrenceRule,
    months_ahead: int,
    clock: Clock,
    tz: tzinfo = timezone.utc,
) -> list[datetime]:
    """Occurrences from rule.start_date up to (excluding) now + months_ahead.

    Deterministic for a given clock reading. Returned datetimes are aware,
    expressed in ``tz`` (the practice wall-clock zone), ascending.
    """
    if months_ahead < 0:
        raise RecurrenceValidationError("months_ahead must be >= 0")
    horizon = horizon_for(clock(), months_ahead, tz)

    out: list[datetime] = []
    for d in _candidate_dates(rule, horizon.date()):
        occurrence = datetime.combine(d, rule.start_time, tzinfo=tz)
        if occurrence >= horizon:
            break
        out.append(occurrence)
    return out


def count_occurrences_in_month(rule: RecurrenceRule, month_start: date) -> int:
    """How many occurrences fall in the calendar month containing month_start."""
    first = month_start.replace(day=1)
    last = first.replace(day=last_day_of_month(first.year, first.month))
    return sum(1 for d in _candidate_dates(rule, last) if d >= first)
