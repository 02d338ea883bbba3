"""Client accounting cascade.

Visit operations never touch ``Client.visit_count``, ``total_spent``,
``loyalty_points`` or ``membership_level`` directly: they call one of the
named effect functions below. Every function clamps decrements at zero and
finishes by recomputing the membership tier from ``visit_count``.
"""

import structlog

from .models import Client

logger = structlog.get_logger("spadesk.loyalty")

# Highest threshold first; the first row whose minimum is reached wins.
MEMBERSHIP_TIERS = (
    (30, "platinum"),
    (20, "gold"),
    (10, "silver"),
    (0, "standard"),
)


def membership_level_for(visit_count: int) -> str:
    count = max(0, int(visit_count or 0))
    for minimum, level in MEMBERSHIP_TIERS:
        if count >= minimum:
            return level
    return "standard"


def refresh_membership(client: Client) -> str:
    previous = client.membership_level
    client.membership_level = membership_level_for(client.visit_count)
    if previous and previous != client.membership_level:
        logger.info(
            "membership_level_changed",
            client_id=client.id,
            from_level=previous,
            to_level=client.membership_level,
        )
    return client.membership_level


def _money(value) -> float:
    return round(float(value or 0), 2)


def record_visit(client: Client, amount: float, points: int) -> Client:
    """Credit a newly recorded visit: one more visit, its spend and its points."""
    client.visit_count = int(client.visit_count or 0) + 1
    client.total_spent = _money(_money(client.total_spent) + _money(amount))
    client.loyalty_points = int(client.loyalty_points or 0) + int(points or 0)
    refresh_membership(client)
    return client


def reconcile_points(client: Client, difference: int) -> Client:
    """Apply a corrected visit's point delta; visit count and spend stay as they are."""
    client.loyalty_points = max(0, int(client.loyalty_points or 0) + int(difference or 0))
    refresh_membership(client)
    return client


def void_visit_points(client: Client, points: int) -> Client:
    """Take back the points of a cancelled visit."""
    client.loyalty_points = max(0, int(client.loyalty_points or 0) - int(points or 0))
    refresh_membership(client)
    return client


def erase_visit(client: Client, amount: float, points: int) -> Client:
    """Fully reverse a deleted visit: count, spend and points."""
    client.visit_count = max(0, int(client.visit_count or 0) - 1)
    client.total_spent = max(0.0, _money(_money(client.total_spent) - _money(amount)))
    client.loyalty_points = max(0, int(client.loyalty_points or 0) - int(points or 0))
    refresh_membership(client)
    return client


def set_loyalty_points(client: Client, points: int, adjustment: bool = False) -> Client:
    if adjustment:
        client.loyalty_points = int(client.loyalty_points or 0) + int(points)
    else:
        client.loyalty_points = int(points)
    if client.loyalty_points < 0:
        client.loyalty_points = 0
    refresh_membership(client)
    return client
