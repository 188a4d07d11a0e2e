import calendar
from datetime import date, datetime
from typing import List, NamedTuple, Tuple, Union
from zoneinfo import ZoneInfo

from ..config.config import settings

_LOCAL_TZ = ZoneInfo(settings.ATTENDANCE_TIMEZONE)


class DateKey(NamedTuple):
    """Zero-padded calendar fields naming one log partition."""
    year: str
    month: str
    day: str

    @property
    def path(self) -> str:
        return f"{self.year}-{self.month}-{self.day}"


def local_now() -> datetime:
    return datetime.now(tz=_LOCAL_TZ)


def local_today() -> date:
    return local_now().date()


def to_local(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(_LOCAL_TZ)


def ensure_aware(moment: datetime) -> datetime:
    """Naive timestamps (legacy rows) are read as attendance-timezone wall time."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=_LOCAL_TZ)
    return moment


def to_wall_time(moment: datetime) -> datetime:
    """Naive attendance-timezone wall time, the form the legacy table stores."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(_LOCAL_TZ).replace(tzinfo=None)


def date_key(moment: Union[date, datetime]) -> DateKey:
    """
    Partition key of a point in time. Aware datetimes are read in the
    attendance timezone, naive ones and plain dates as given.
    """
    if isinstance(moment, datetime):
        moment = to_local(moment)
    return DateKey(f"{moment.year:04d}", f"{moment.month:02d}", f"{moment.day:02d}")


def parse_date_key(path: str) -> date:
    return date.fromisoformat(path)


def months_between(start: Union[date, datetime], end: Union[date, datetime]) -> List[Tuple[str, str]]:
    """Every (year, month) from start's month to end's month, ascending."""
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append((f"{year:04d}", f"{month:02d}"))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def days_in_month(year: int, month: int) -> List[date]:
    _, last_day = calendar.monthrange(year, month)
    return [date(year, month, day) for day in range(1, last_day + 1)]


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Start (inclusive) and end (inclusive) of a calendar day in the attendance timezone."""
    start = datetime(day.year, day.month, day.day, tzinfo=_LOCAL_TZ)
    end = datetime(day.year, day.month, day.day, 23, 59, 59, 999999, tzinfo=_LOCAL_TZ)
    return start, end
