"""Vehicle mileage and home office deductions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

MILEAGE_RATE = 0.67
HOME_OFFICE_RATE = 5.0
HOME_OFFICE_MAX_SQFT = 300


@dataclass
class DeductionSettings:
    mileage_rate: float = MILEAGE_RATE
    home_office_rate: float = HOME_OFFICE_RATE
    home_office_max_sqft: int = HOME_OFFICE_MAX_SQFT

    @classmethod
    def from_config(cls, config: Dict[str, object] | None) -> "DeductionSettings":
        section = (config or {}).get("deductions") or {}
        return cls(
            mileage_rate=float(section.get("mileage_rate", MILEAGE_RATE)),
            home_office_rate=float(section.get("home_office_rate", HOME_OFFICE_RATE)),
            home_office_max_sqft=int(section.get("home_office_max_sqft", HOME_OFFICE_MAX_SQFT)),
        )


@dataclass
class HomeOfficeDeduction:
    deduction: float
    method: str


def vehicle_deduction(business_miles: int, settings: DeductionSettings | None = None) -> float:
    settings = settings or DeductionSettings()
    if business_miles < 0:
        raise ValueError("Business miles cannot be negative")
    return business_miles * settings.mileage_rate


def home_office_deduction(
    home_office_sqft: int,
    total_home_sqft: int,
    use_simplified: bool = True,
    settings: DeductionSettings | None = None,
) -> HomeOfficeDeduction:
    """Compute the home office deduction.

    The simplified method pays a flat rate per square foot up to the cap.
    The actual-expense method depends on costs this tool does not track, so
    it reports 0.0 together with the business-use share of the home.
    """
    settings = settings or DeductionSettings()
    validate_home_office(home_office_sqft, total_home_sqft, use_simplified)

    if use_simplified:
        sqft = min(home_office_sqft, settings.home_office_max_sqft)
        return HomeOfficeDeduction(
            deduction=sqft * settings.home_office_rate,
            method=f"simplified (${settings.home_office_rate:g}/sq ft)",
        )

    share = (home_office_sqft / total_home_sqft * 100) if total_home_sqft else 0.0
    return HomeOfficeDeduction(deduction=0.0, method=f"actual ({share:.1f}% of home)")


def validate_home_office(home_office_sqft: int, total_home_sqft: int, use_simplified: bool) -> None:
    if home_office_sqft < 0 or total_home_sqft < 0:
        raise ValueError("Square footage cannot be negative")
    if not use_simplified and home_office_sqft > total_home_sqft:
        raise ValueError("Office square footage cannot exceed total home square footage")


def saved_deductions(store, settings: DeductionSettings | None = None) -> Dict[str, object]:
    """Compute both deductions from the stored deduction data (zeros when none saved)."""
    data = store.get_deduction_data() or {
        "business_miles": 0,
        "home_office_sqft": 0,
        "total_home_sqft": 0,
        "use_simplified": True,
    }
    settings = settings or DeductionSettings()
    office = home_office_deduction(
        data["home_office_sqft"], data["total_home_sqft"], data["use_simplified"], settings
    )
    return {
        **data,
        "vehicle_deduction": vehicle_deduction(data["business_miles"], settings),
        "home_office_deduction": office.deduction,
        "home_office_method": office.method,
    }
