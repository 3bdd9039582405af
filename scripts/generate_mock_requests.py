import uuid
from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd


def generate_mock_requests(num_requests=200, num_merchants=30, ride_share=0.3,
                           output_file="mock_requests.csv", seed=None):
    """
    Generates a mix of food orders and rides.
    Orders originate from a fixed set of merchants so pickups cluster the way
    real restaurant demand does; rides start anywhere in the city.
    """
    # Center around Harare, Zimbabwe
    CENTER_LAT = -17.824858
    CENTER_LON = 31.053028

    rng = np.random.default_rng(seed)

    # 1. Fixed merchants (pickups) within ~5km of the center
    merchants = []
    for merchant_index in range(num_merchants):
        merchants.append({
            "id": f"m_{str(uuid.uuid4())[:8]}",
            "name": f"Restaurant {merchant_index + 1}",
            "lat": CENTER_LAT + rng.uniform(-0.05, 0.05),
            "lon": CENTER_LON + rng.uniform(-0.05, 0.05),
        })

    data = []
    now = datetime.now(timezone.utc)

    # 2. Requests
    for request_index in range(num_requests):
        is_ride = rng.random() < ride_share

        if is_ride:
            pickup_lat = CENTER_LAT + rng.uniform(-0.08, 0.08)
            pickup_lon = CENTER_LON + rng.uniform(-0.08, 0.08)
            pickup_address = "Street pickup"
        else:
            merchant = merchants[int(rng.integers(0, num_merchants))]
            pickup_lat, pickup_lon = merchant["lat"], merchant["lon"]
            pickup_address = merchant["name"]

        data.append({
            "request_id": f"{'r' if is_ride else 'o'}_{str(request_index + 1).zfill(6)}",
            "request_type": "RIDE" if is_ride else "ORDER",
            "service_type": "RIDESHARE" if is_ride else "FOOD_DELIVERY",
            "created_at": (now - timedelta(minutes=int(rng.integers(0, 60)))).isoformat(),
            "pickup_lat": np.round(pickup_lat, 6),
            "pickup_lon": np.round(pickup_lon, 6),
            "pickup_address": pickup_address,
            # Dropoff placed within ~5-10km of the pickup
            "dropoff_lat": np.round(pickup_lat + rng.uniform(-0.08, 0.08), 6),
            "dropoff_lon": np.round(pickup_lon + rng.uniform(-0.08, 0.08), 6),
            "estimated_value": np.round(rng.uniform(5.0, 60.0), 2),
            "priority": int(rng.choice([0, 1], p=[0.9, 0.1])),
        })

    # 3. Save to CSV
    df = pd.DataFrame(data)
    df.to_csv(output_file, index=False)
    print(f"Generated {num_requests} requests and saved to '{output_file}'")
    print(df["request_type"].value_counts().to_string())
    return df


if __name__ == "__main__":
    generate_mock_requests()
