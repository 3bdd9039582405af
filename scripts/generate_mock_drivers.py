import numpy as np
import pandas as pd

VEHICLE_TYPES = ["BICYCLE", "MOTORCYCLE", "CAR", "VAN"]
SERVICE_TYPES = ["FOOD_DELIVERY", "RIDESHARE", "BOTH"]
CONNECTION_TYPES = ["WIFI", "CELLULAR"]


def generate_mock_drivers(count=100, output_file="mock_drivers.csv", seed=None):
    """
    Generates a driver pool scattered around the city center, with the device health
    and rating spread the matching engine scores on.
    """
    # Center around Harare, Zimbabwe
    CENTER_LAT = -17.824858
    CENTER_LON = 31.053028

    rng = np.random.default_rng(seed)
    data = []

    for driver_index in range(count):
        # Scatter drivers randomly around the city center (roughly +/- 8km)
        lat = CENTER_LAT + rng.uniform(-0.075, 0.075)
        lon = CENTER_LON + rng.uniform(-0.075, 0.075)

        battery_level = float(np.round(rng.uniform(3, 100), 0))

        data.append({
            "driver_id": f"DRV-{str(driver_index + 1).zfill(3)}",
            "lat": np.round(lat, 6),
            "lon": np.round(lon, 6),
            # 80% available, the rest offline or on a break
            "status": rng.choice(["AVAILABLE", "OFFLINE", "BREAK"], p=[0.8, 0.1, 0.1]),
            "vehicle_type": rng.choice(VEHICLE_TYPES, p=[0.1, 0.5, 0.3, 0.1]),
            "service_type": rng.choice(SERVICE_TYPES, p=[0.4, 0.2, 0.4]),
            "rating": np.round(rng.uniform(2.5, 5.0), 2),
            "verified": bool(rng.random() < 0.95),
            "battery_level": battery_level,
            "is_charging": bool(rng.random() < 0.2),
            "signal_strength": int(rng.integers(20, 101)),
            "connection_type": rng.choice(CONNECTION_TYPES, p=[0.3, 0.7]),
        })

    df = pd.DataFrame(data)
    df.to_csv(output_file, index=False)
    print(f"Generated {count} mock drivers into '{output_file}'")
    print(df["status"].value_counts().to_string())
    return df


if __name__ == "__main__":
    generate_mock_drivers()
