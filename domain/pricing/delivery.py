"""
Delivery fee policy - tiered fee schedule keyed by locality class and weight.

Algorithm:
1. classify the province as a major locality (case-insensitive) or other
2. start from the base fee of that class
3. add one step fee for every 0.5 kg of excess weight above the class
   threshold, subtracting 0.5 while the excess is strictly greater than 0.5
   (an excess of exactly 0.5 kg adds nothing)
4. rush fee = normal fee + rush surcharge
5. orders whose subtotal exceeds the free-shipping threshold get the
   delivery discount on the *normal* fee only
6. rush orders pay the rush fee, everything else the normal fee
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from domain.pricing.schedule import PricingSchedule, DEFAULT_SCHEDULE

Weight = Union[Decimal, float, int, str]


class DeliveryType(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    RUSH = "rush"


@dataclass(frozen=True)
class DeliveryQuote:
    normal_fee: int
    rush_fee: Optional[int]
    fee: int


class DeliveryFeePolicy:
    def __init__(self, schedule: PricingSchedule = DEFAULT_SCHEDULE) -> None:
        self.schedule = schedule
        self._major = {p.casefold() for p in schedule.major_localities}
        self._supported = {p.casefold() for p in schedule.supported_provinces}
        self._remote = [p.casefold() for p in schedule.remote_provinces]

    def is_major_locality(self, province: Optional[str]) -> bool:
        return bool(province) and province.strip().casefold() in self._major

    def is_supported_province(self, province: Optional[str]) -> bool:
        return bool(province) and province.strip().casefold() in self._supported

    def is_remote_province(self, province: Optional[str]) -> bool:
        if not province:
            return False
        name = province.casefold()
        return any(remote in name for remote in self._remote)

    def is_rush_eligible(self, province: Optional[str]) -> bool:
        """Rush delivery is only offered inside major localities."""
        return self.is_major_locality(province)

    def _weight_fee(self, base_fee: int, threshold: Decimal, total_weight_kg: Decimal) -> int:
        fee = base_fee
        step = self.schedule.weight_step_kg
        excess = total_weight_kg - threshold
        while excess > step:
            fee += self.schedule.weight_step_fee
            excess -= step
        return fee

    def quote(
        self,
        province: Optional[str],
        total_weight_kg: Weight,
        is_rush_order: bool,
        order_subtotal: int,
    ) -> DeliveryQuote:
        s = self.schedule
        weight = Decimal(str(total_weight_kg))
        if self.is_major_locality(province):
            normal_fee = self._weight_fee(s.major_base_fee, s.major_weight_threshold_kg, weight)
        else:
            normal_fee = self._weight_fee(s.other_base_fee, s.other_weight_threshold_kg, weight)

        rush_fee = normal_fee + s.rush_surcharge if is_rush_order else None

        if order_subtotal > s.free_shipping_threshold:
            normal_fee = max(0, normal_fee - s.delivery_discount)

        fee = rush_fee if rush_fee is not None else normal_fee
        return DeliveryQuote(normal_fee=normal_fee, rush_fee=rush_fee, fee=fee)

    def compute_delivery_fee(
        self,
        province: Optional[str],
        total_weight_kg: Weight,
        is_rush_order: bool,
        order_subtotal: int,
    ) -> int:
        return self.quote(province, total_weight_kg, is_rush_order, order_subtotal).fee

    def estimated_delivery_date(
        self,
        delivery_type: DeliveryType,
        province: Optional[str],
        now: Optional[datetime] = None,
    ) -> datetime:
        s = self.schedule
        now = now or datetime.now(timezone.utc)
        if delivery_type == DeliveryType.RUSH:
            return now + timedelta(days=s.rush_lead_days)
        if delivery_type == DeliveryType.EXPRESS:
            return now + timedelta(days=s.express_lead_days)
        days = s.standard_lead_days
        if self.is_remote_province(province):
            days += s.remote_extra_days
        return now + timedelta(days=days)
