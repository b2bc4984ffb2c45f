from datetime import datetime, timezone

from sqlalchemy import types


def utcnow() -> datetime:
    """Current time as an aware UTC datetime, the form every table stores."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """Normalise datetimes to aware UTC; naive values are taken to be UTC already.

    Anything that is not a datetime passes through untouched, so this can sit
    in front of optional fields and validators.
    """
    if not isinstance(value, datetime):
        return value
    if value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(types.TypeDecorator):
    """Timestamp column that always hands back aware UTC datetimes.

    SQLite and MySQL keep no offset, so values are written as UTC wall time
    and re-tagged on the way out.
    """

    impl = types.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)
