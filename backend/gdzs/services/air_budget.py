"""
Air-budget formulas for SCBA teams.

Every time figure is the universal work-time formula applied to a different
working-pressure delta:

    t = (N * V * P_work) / (Q * P_atm)

Pressures are bar, volumes litres, consumption l/min, times minutes.
Intermediate values stay floating point; any time that leaves this module as
an integer goes through ``truncate_minutes`` (floor toward zero), so a safety
margin is never rounded up in the team's favour.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from .. import physics_config as PhysicsCfg
from ..enums import WorkMode
from ..errors import report_invariant_violation
from ..schemas import DeviceProfile, TeamMember


@dataclass(frozen=True)
class ConsumptionEstimate:
    rate: float
    raw_rate: float
    anomaly: bool


@dataclass(frozen=True)
class BudgetSummary:
    min_pressure: int
    protection_time: int
    critical_pressure: int
    hood_pressure: int
    evacuation_time_with_victim: int
    exit_timer_seconds: int


def truncate_minutes(value: float) -> int:
    if not math.isfinite(value):
        report_invariant_violation(f"non-finite time value {value!r}")
        return 0
    if value <= 0:
        return 0
    return int(math.floor(value))


def truncate_pressure(value: float) -> int:
    if not math.isfinite(value):
        report_invariant_violation(f"non-finite pressure value {value!r}")
        return 0
    return int(value)


def work_time_minutes(
    cylinder_count: float,
    cylinder_volume: float,
    working_pressure: float,
    consumption_rate: float,
    p_atm: float = PhysicsCfg.P_ATM_BAR,
) -> float:
    if consumption_rate <= 0 or p_atm <= 0:
        report_invariant_violation(
            f"work time requested with consumption={consumption_rate}, p_atm={p_atm}"
        )
        return 0.0
    if working_pressure <= 0:
        return 0.0
    return (cylinder_count * cylinder_volume * working_pressure) / (consumption_rate * p_atm)


def team_min_pressure(members: Iterable[TeamMember]) -> int:
    pressures = [
        member.pressure
        for member in members
        if member.is_active and member.pressure is not None
    ]
    return min(pressures) if pressures else 0


def protection_time(min_pressure: float, device: DeviceProfile) -> int:
    minutes = work_time_minutes(
        device.cylinder_count,
        device.cylinder_volume,
        min_pressure - device.reserve_pressure,
        device.nominal_air_consumption,
    )
    return truncate_minutes(minutes)


def critical_pressure(p_incl: float, p_res: float) -> float:
    return (p_incl - p_res) / 2


def hood_pressure(
    p_incl: float,
    p_start_work: float,
    is_victim_assist: bool,
    p_res: float,
) -> float:
    diff = p_incl - p_start_work
    factor = (
        PhysicsCfg.HOOD_FACTOR_VICTIM_ASSIST
        if is_victim_assist
        else PhysicsCfg.HOOD_FACTOR_SELF_RESCUE
    )
    return factor * diff + p_res


def exit_start_pressure(min_pressure: float, pressure_at_work: float, device: DeviceProfile) -> int:
    pressure_spent_on_path = min_pressure - pressure_at_work
    return truncate_pressure(pressure_spent_on_path + device.reserve_pressure)


def actual_air_consumption(
    initial_pressure: float,
    current_pressure: float,
    search_time_minutes: float,
    device: DeviceProfile,
) -> ConsumptionEstimate:
    nominal = device.nominal_air_consumption
    pressure_spent = initial_pressure - current_pressure
    if pressure_spent <= 0:
        return ConsumptionEstimate(rate=nominal, raw_rate=nominal, anomaly=False)

    effective_search_time = max(search_time_minutes, PhysicsCfg.MIN_SEARCH_TIME_MIN)
    volume_spent = (
        device.cylinder_count * device.cylinder_volume * pressure_spent
    ) / PhysicsCfg.P_ATM_BAR
    raw_rate = volume_spent / effective_search_time

    lower = nominal * PhysicsCfg.ACTUAL_CONSUMPTION_MIN_FACTOR
    upper = nominal * PhysicsCfg.ACTUAL_CONSUMPTION_MAX_FACTOR
    return ConsumptionEstimate(
        rate=max(lower, min(upper, raw_rate)),
        raw_rate=raw_rate,
        anomaly=raw_rate > upper,
    )


def work_mode_consumption(device: DeviceProfile, work_mode: WorkMode) -> float:
    if work_mode == WorkMode.HEAVY:
        return device.nominal_air_consumption * PhysicsCfg.HEAVY_WORK_FACTOR
    return device.nominal_air_consumption * PhysicsCfg.AVERAGE_WORK_FACTOR


def victim_hood_pressure(min_pressure: float, device: DeviceProfile) -> float:
    p_critical = critical_pressure(min_pressure, device.reserve_pressure)
    return hood_pressure(
        min_pressure,
        p_critical,
        is_victim_assist=True,
        p_res=device.reserve_pressure,
    )


def evacuation_time_with_victim(
    min_pressure: float,
    device: DeviceProfile,
    work_mode: WorkMode,
) -> int:
    p_hood = victim_hood_pressure(min_pressure, device)
    if min_pressure < p_hood:
        return 0
    consumption = work_mode_consumption(device, work_mode) * PhysicsCfg.EVACUATION_CONSUMPTION_FACTOR
    minutes = work_time_minutes(
        device.cylinder_count,
        device.cylinder_volume,
        min_pressure - p_hood,
        consumption,
    )
    return truncate_minutes(minutes)


def exit_timer_at_entry(min_pressure: float, device: DeviceProfile) -> int:
    """Seconds until the team must abandon the search.

    The search may use up to the critical pressure; spending it at rated
    consumption gives the turn-back countdown.
    """
    p_critical = critical_pressure(min_pressure, device.reserve_pressure)
    minutes = work_time_minutes(
        device.cylinder_count,
        device.cylinder_volume,
        p_critical,
        device.nominal_air_consumption,
    )
    return truncate_minutes(minutes) * PhysicsCfg.SECONDS_PER_MINUTE


def build_budget_summary(
    min_pressure: int,
    device: DeviceProfile,
    work_mode: WorkMode = WorkMode.AVERAGE,
) -> BudgetSummary:
    return BudgetSummary(
        min_pressure=min_pressure,
        protection_time=protection_time(min_pressure, device),
        critical_pressure=truncate_pressure(
            critical_pressure(min_pressure, device.reserve_pressure)
        ),
        hood_pressure=truncate_pressure(victim_hood_pressure(min_pressure, device)),
        evacuation_time_with_victim=evacuation_time_with_victim(min_pressure, device, work_mode),
        exit_timer_seconds=exit_timer_at_entry(min_pressure, device),
    )
