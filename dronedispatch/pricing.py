# drone-dispatch/dronedispatch/pricing.py
"""
Fee and delivery-time estimation.

Both functions are deterministic and side-effect free. They are called once,
when an order is submitted, and their results are stored on the order.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Union

from . import config
from .models import Urgency


def get_urgency_multiplier(urgency: Union[Urgency, str]) -> float:
    """
    Fee multiplier for an urgency tier.

    Raises:
        ValueError: If the urgency is not a known tier
    """
    return config.URGENCY_FEE_MULTIPLIERS[Urgency.parse(urgency).value]


def estimate_fee(distance_km: float, urgency: Union[Urgency, str], weight_kg: float) -> float:
    """
    Price a delivery.

    fee = (BASE_FEE + distance * FEE_PER_KM + weight * FEE_PER_KG) * multiplier,
    rounded to cents.

    Args:
        distance_km: Pickup-to-delivery distance
        urgency: Urgency tier (enum or name)
        weight_kg: Package weight

    Returns:
        Delivery fee rounded to 2 decimals

    Example:
        >>> estimate_fee(10.0, "PRIORITY", 2.0)
        15.6
    """
    base_fee = config.BASE_FEE
    base_fee += distance_km * config.FEE_PER_KM
    base_fee += weight_kg * config.FEE_PER_KG
    return round(base_fee * get_urgency_multiplier(urgency), 2)


def estimate_delivery_deadline(now: datetime, urgency: Union[Urgency, str]) -> datetime:
    """Promised delivery time: now plus the tier's fixed window."""
    minutes = config.URGENCY_DELIVERY_MINUTES[Urgency.parse(urgency).value]
    return now + timedelta(minutes=minutes)
