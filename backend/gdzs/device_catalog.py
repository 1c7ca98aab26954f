from __future__ import annotations

from types import MappingProxyType
from typing import Any

from .enums import DeviceType
from .errors import report_invariant_violation
from .schemas import DeviceProfile, normalize_device_type

# Источник: паспортные характеристики аппаратов, используемых в ланках ГДЗС.
# Давления в бар, объём баллона в литрах, расход в л/мин.
DEVICE_PROFILES_SEED: tuple[dict[str, Any], ...] = (
    {
        "device_type": DeviceType.DRAGER_PSS3000,
        "cylinder_count": 1,
        "cylinder_volume": 6.8,
        "reserve_pressure": 50.0,
        "nominal_air_consumption": 40.0,
    },
    {
        "device_type": DeviceType.DRAGER_PSS4000,
        "cylinder_count": 1,
        "cylinder_volume": 7.0,
        "reserve_pressure": 50.0,
        "nominal_air_consumption": 40.0,
    },
    {
        "device_type": DeviceType.MSA,
        "cylinder_count": 1,
        "cylinder_volume": 6.0,
        "reserve_pressure": 50.0,
        "nominal_air_consumption": 45.0,
    },
    {
        "device_type": DeviceType.ASP2,
        "cylinder_count": 2,
        "cylinder_volume": 4.5,
        "reserve_pressure": 30.0,
        "nominal_air_consumption": 54.0,
    },
)


def _build_catalog() -> MappingProxyType:
    profiles = {}
    for row in DEVICE_PROFILES_SEED:
        profile = DeviceProfile(**row)
        profiles[profile.device_type] = profile
    missing = [device_type for device_type in DeviceType if device_type not in profiles]
    if missing:
        report_invariant_violation(
            f"Device catalog has no profile for {', '.join(item.value for item in missing)}",
            strict=True,
        )
    return MappingProxyType(profiles)


DEVICE_PROFILES: MappingProxyType = _build_catalog()


def get_device_profile(device_type: DeviceType | str) -> DeviceProfile:
    canonical = normalize_device_type(device_type)
    if not isinstance(canonical, DeviceType):
        try:
            canonical = DeviceType(str(device_type))
        except ValueError as exc:
            allowed_values = ", ".join(entry.value for entry in DeviceType)
            raise ValueError(f"device_type must be one of: {allowed_values}") from exc
    return DEVICE_PROFILES[canonical]


def list_device_profiles() -> list[DeviceProfile]:
    return [DEVICE_PROFILES[device_type] for device_type in DeviceType]
