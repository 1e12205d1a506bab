from datetime import datetime, timezone


def utc_now_iso():
    """Return a UTC timestamp string in ISO 8601 format (second precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso8601(raw_ts):
    """Parse stored timestamps while stripping milliseconds and enforcing UTC."""
    if not raw_ts:
        return None
    normalized = raw_ts[:-1] + "+00:00" if raw_ts.endswith("Z") else raw_ts
    try:
        dt = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)


def format_timestamp(dt):
    """Return the catalog's timestamp form (UTC, second precision)."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def chunked(iterable, size):
    """Yield iterable slices of fixed size (used for batched API lookups)."""
    batch = []
    for item in iterable:
        batch.append(item)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


def in_groups(items, count):
    """
    Split items into `count` contiguous groups whose sizes differ by at most one.
    Leading groups take the remainder; empty groups are not returned.
    """
    items = list(items)
    if count <= 0:
        raise ValueError("group count must be positive")
    size, remainder = divmod(len(items), count)
    groups = []
    start = 0
    for index in range(count):
        end = start + size + (1 if index < remainder else 0)
        if end > start:
            groups.append(items[start:end])
        start = end
    return groups


def normalize_title(title):
    """Convert a display title to database form (underscores, no outer whitespace)."""
    if not isinstance(title, str):
        return ""
    return title.strip().replace(" ", "_")


def display_title(title):
    """Convert a database-form title back to its display form."""
    if not isinstance(title, str):
        return ""
    return title.replace("_", " ")
