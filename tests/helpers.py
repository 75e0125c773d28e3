from datetime import datetime, timedelta

from models import Actor

# service-level tests pin "now" so date rules are exact
NOW = datetime(2030, 1, 1, 9, 0, 0)


def days(n: float) -> timedelta:
    return timedelta(days=n)


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def headers_for(actor: Actor) -> dict:
    return {"X-User-Id": actor.user_id, "X-User-Role": actor.role.value}
