from datetime import datetime, timezone

# Single timestamp layout shared by the string-to-sign, the SAS query and the KeyInfo body
SAS_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to already be in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_sas_timestamp(value: datetime) -> str:
    """
    Formats a datetime as an ISO-8601 UTC timestamp with second precision.

    Args:
        value (datetime): Aware or naive (UTC) datetime.

    Returns:
        str: Timestamp such as ``2024-01-01T00:00:00Z``.
    """
    return to_utc(value).strftime(SAS_TIMESTAMP_FORMAT)
