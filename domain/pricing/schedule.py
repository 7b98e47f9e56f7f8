"""
Pricing schedule - immutable fee/tax constants passed into the calculators.

Values are VND (the smallest currency unit used by the shop) and kilograms.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class PricingSchedule:
    vat_rate: int = 10
    minimum_order_amount: int = 10_000

    major_localities: frozenset[str] = field(
        default_factory=lambda: frozenset({"Hanoi", "Ho Chi Minh City"})
    )
    supported_provinces: frozenset[str] = field(
        default_factory=lambda: frozenset({
            "Hanoi", "Ho Chi Minh City", "Hai Phong", "Thanh Hoa", "Nghe An",
            "Hung Yen", "Da Nang", "Hue", "Nha Trang",
        })
    )
    remote_provinces: frozenset[str] = field(
        default_factory=lambda: frozenset({
            "Lào Cai", "Điện Biên", "Lai Châu", "Sơn La", "Hà Giang",
            "Cao Bằng", "Bắc Kạn", "Lang Sơn", "Kon Tum", "Gia Lai",
            "Đắk Lắk", "Đắk Nông", "Lâm Đồng", "Cà Mau", "An Giang",
        })
    )

    major_base_fee: int = 22_000
    major_weight_threshold_kg: Decimal = Decimal("3")
    other_base_fee: int = 30_000
    other_weight_threshold_kg: Decimal = Decimal("1")
    weight_step_kg: Decimal = Decimal("0.5")
    weight_step_fee: int = 2_500

    rush_surcharge: int = 10_000
    free_shipping_threshold: int = 100_000
    delivery_discount: int = 25_000

    # estimated delivery lead times (days)
    rush_lead_days: int = 1
    express_lead_days: int = 2
    standard_lead_days: int = 3
    remote_extra_days: int = 2

    def __post_init__(self) -> None:
        if not 0 <= self.vat_rate <= 100:
            raise ValueError(f"vat_rate must be within 0..100: {self.vat_rate}")
        if self.weight_step_kg <= 0:
            raise ValueError("weight_step_kg must be positive")
        if self.other_base_fee <= self.major_base_fee:
            raise ValueError("other_base_fee must exceed major_base_fee")
        if self.other_weight_threshold_kg >= self.major_weight_threshold_kg:
            raise ValueError("other_weight_threshold_kg must be below major_weight_threshold_kg")


DEFAULT_SCHEDULE = PricingSchedule()
