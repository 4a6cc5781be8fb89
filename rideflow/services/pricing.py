"""
Fare estimation engine.

Pure and deterministic: the same (distance, duration, vehicle class) always
produces the same quote, so a frozen ride fare can be recomputed exactly when
a fare is disputed.
"""
from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP

from rideflow.config import get_settings

settings = get_settings()


@dataclass(frozen=True)
class Tariff:
    base_fare: int
    per_km_rate: int
    per_minute_rate: int
    service_fee_percent: int
    capacity: int = 1

    def __post_init__(self) -> None:
        if self.base_fare <= 0:
            raise ValueError("base_fare must be positive")
        if min(self.per_km_rate, self.per_minute_rate, self.service_fee_percent) < 0:
            raise ValueError("tariff rates must be non-negative")


# ---------------------------------------------------------------------------
# Class tariffs (smallest currency unit)
# ---------------------------------------------------------------------------
PRICING_TABLE: dict[str, Tariff] = {
    "bicycle": Tariff(base_fare=200, per_km_rate=50, per_minute_rate=10, service_fee_percent=5, capacity=1),
    "motorcycle": Tariff(base_fare=300, per_km_rate=100, per_minute_rate=15, service_fee_percent=8, capacity=2),
    "car": Tariff(base_fare=500, per_km_rate=150, per_minute_rate=20, service_fee_percent=10, capacity=4),
}


@dataclass(frozen=True)
class FareQuote:
    vehicle_class: str
    distance_km: float
    duration_min: int
    base_fare: int
    distance_fare: int
    time_fare: int
    service_fee: int
    total_fare: int
    currency: str

    def as_dict(self) -> dict:
        return asdict(self)


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_tariff(vehicle_class: str, table: dict[str, Tariff] | None = None) -> Tariff:
    table = PRICING_TABLE if table is None else table
    key = getattr(vehicle_class, "value", vehicle_class)
    try:
        return table[key]
    except KeyError:
        raise ValueError(f"Unknown vehicle class: {key!r}") from None


def estimate(
    distance_km: float,
    duration_min: float,
    vehicle_class: str,
    table: dict[str, Tariff] | None = None,
) -> FareQuote:
    """
    Price a ride.

      distance_fare = round(distance_km * per_km_rate)
      time_fare     = round(duration_min * per_minute_rate)
      subtotal      = base_fare + distance_fare + time_fare
      service_fee   = round(subtotal * service_fee_percent / 100)
      total         = subtotal + service_fee

    Every rounding is half-up to a whole currency unit.
    """
    if distance_km < 0:
        raise ValueError("distance_km must be non-negative")
    if duration_min < 0:
        raise ValueError("duration_min must be non-negative")

    tariff = get_tariff(vehicle_class, table)

    # str() first so binary float noise (e.g. 2.675) does not leak into rounding
    distance = Decimal(str(distance_km))
    duration = Decimal(str(duration_min))

    distance_fare = _round_half_up(distance * tariff.per_km_rate)
    time_fare = _round_half_up(duration * tariff.per_minute_rate)
    subtotal = tariff.base_fare + distance_fare + time_fare
    service_fee = _round_half_up(Decimal(subtotal) * tariff.service_fee_percent / 100)

    return FareQuote(
        vehicle_class=getattr(vehicle_class, "value", vehicle_class),
        distance_km=distance_km,
        duration_min=duration_min,
        base_fare=tariff.base_fare,
        distance_fare=distance_fare,
        time_fare=time_fare,
        service_fee=service_fee,
        total_fare=subtotal + service_fee,
        currency=settings.currency,
    )
