# pricewatch/models/quota.py

"""Quota snapshot returned to whatever presentation layer asks for it."""

from dataclasses import dataclass


@dataclass(frozen=True)
class QuotaStatus:
    """An owner's URL quota after reconciliation."""

    limit: int
    used: int
    remaining: int
    exceeded: bool
