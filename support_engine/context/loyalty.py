"""Loyalty tier and support priority derivation."""

from __future__ import annotations

from ..config import LoyaltyThresholds
from .schemas import CustomerStats, LoyaltyTier, SupportPriority


def loyalty_tier(stats: CustomerStats, thresholds: LoyaltyThresholds) -> LoyaltyTier:
    """Classify a customer by lifetime spend or order count, whichever is higher."""

    spend = stats.lifetime_spend
    orders = stats.order_count
    if spend >= thresholds.platinum_spend or orders >= thresholds.platinum_orders:
        return LoyaltyTier.PLATINUM
    if spend >= thresholds.gold_spend or orders >= thresholds.gold_orders:
        return LoyaltyTier.GOLD
    if spend >= thresholds.silver_spend or orders >= thresholds.silver_orders:
        return LoyaltyTier.SILVER
    return LoyaltyTier.BRONZE


def support_priority(tier: LoyaltyTier) -> SupportPriority:
    if tier == LoyaltyTier.PLATINUM:
        return SupportPriority.HIGH
    if tier == LoyaltyTier.GOLD:
        return SupportPriority.MEDIUM
    return SupportPriority.LOW
