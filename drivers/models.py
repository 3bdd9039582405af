"""
Purpose: Core data models for the drivers domain.
What it does:
Defines the read-only projection of a driver that the matching engine filters and scores,
plus the "current state" snapshots (availability, battery, connectivity) and the weekly
performance rollup, without relying on Django ORM constraints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union

LatLon = Tuple[float, float]


class DriverAvailabilityStatus(str, Enum):
    """
    The state a driver reports from the app.
    Only AVAILABLE drivers are offered work.
    """
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    BUSY = "BUSY"
    AVAILABLE = "AVAILABLE"
    BREAK = "BREAK"
    EMERGENCY = "EMERGENCY"
    MAINTENANCE = "MAINTENANCE"


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class VehicleType(str, Enum):
    BICYCLE = "BICYCLE"
    MOTORCYCLE = "MOTORCYCLE"
    CAR = "CAR"
    VAN = "VAN"
    TRUCK = "TRUCK"


class ServiceType(str, Enum):
    FOOD_DELIVERY = "FOOD_DELIVERY"
    RIDESHARE = "RIDESHARE"
    BOTH = "BOTH"


class ConnectionType(str, Enum):
    WIFI = "WIFI"
    CELLULAR = "CELLULAR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class BatteryStatus:
    """
    Most recent battery report from the driver's device.
    """
    battery_level: float  # percent, 0-100
    low_battery: bool = False
    critical_battery: bool = False
    is_charging: bool = False
    reported_at: Optional[datetime] = None


@dataclass(frozen=True)
class ConnectivityStatus:
    """
    Most recent connectivity report from the driver's device.
    """
    is_connected: bool = True
    signal_strength: float = 0  # 0-100
    connection_type: ConnectionType = ConnectionType.UNKNOWN
    reported_at: Optional[datetime] = None


@dataclass(frozen=True)
class DriverMatchingPreferences:
    """
    Per-driver limits the driver sets for themselves in the app.
    """
    max_distance_km: Optional[float] = 15
    min_order_value: Optional[float] = None
    max_order_value: Optional[float] = None


@dataclass(frozen=True)
class DriverPerformanceMetrics:
    """
    Weekly rollup of a driver's assignment history.
    One row per (driver_id, period_start); recomputed in place.
    """
    driver_id: str
    period_start: datetime
    period_end: datetime
    period: str = "weekly"

    total_assignments: int = 0
    accepted_assignments: int = 0
    rejected_assignments: int = 0
    expired_assignments: int = 0
    completed_assignments: int = 0

    acceptance_rate: float = 0.0
    completion_rate: float = 0.0
    avg_response_time: float = 0.0  # seconds


@dataclass(frozen=True)
class DriverCandidate:
    """
    A purely stateless projection of a Driver at a specific point in time.
    The availability/battery/connectivity fields hold the *current* snapshot only.
    """
    id: str
    location: Optional[LatLon]
    vehicle_type: VehicleType = VehicleType.CAR

    rating: float = 5.0
    total_deliveries: int = 0
    total_rides: int = 0

    is_available: bool = False
    verification_status: VerificationStatus = VerificationStatus.PENDING
    service_types: FrozenSet[ServiceType] = field(default_factory=lambda: frozenset({ServiceType.BOTH}))

    availability_status: Optional[DriverAvailabilityStatus] = None
    availability_since: Optional[datetime] = None
    battery: Optional[BatteryStatus] = None
    connectivity: Optional[ConnectivityStatus] = None
    metrics: Optional[DriverPerformanceMetrics] = None
    preferences: Optional[DriverMatchingPreferences] = None

    name: str = ""

    @classmethod
    def new(
        cls,
        driver_id: str,
        lat: Optional[float],
        lon: Optional[float],
        *,
        vehicle_type: Union[str, VehicleType] = VehicleType.CAR,
        rating: float = 5.0,
        status: Union[str, DriverAvailabilityStatus, None] = DriverAvailabilityStatus.AVAILABLE,
        verified: bool = True,
        service_types: tuple = (ServiceType.BOTH,),
        **extra,
    ) -> DriverCandidate:
        if isinstance(vehicle_type, str):
            vehicle_type = VehicleType(vehicle_type.upper())
        if isinstance(status, str):
            status = DriverAvailabilityStatus(status.upper())

        location = (lat, lon) if lat is not None and lon is not None else None

        return cls(
            id=driver_id,
            location=location,
            vehicle_type=vehicle_type,
            rating=rating,
            is_available=status == DriverAvailabilityStatus.AVAILABLE,
            verification_status=VerificationStatus.VERIFIED if verified else VerificationStatus.PENDING,
            service_types=frozenset(ServiceType(s) for s in service_types),
            availability_status=status,
            availability_since=datetime.now(timezone.utc) if status else None,
            **extra,
        )
