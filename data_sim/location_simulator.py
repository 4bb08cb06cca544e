import random
import sys
import time

import requests

API_URL = "http://localhost:8000"

# Riders keep a position and drift a little on each tick
positions = {}


def random_coord(center=(6.5244, 3.3792), spread=0.05):
    return center[0] + random.uniform(-spread, spread), center[1] + random.uniform(-spread, spread)


def location_update(rider_id):
    if rider_id not in positions:
        positions[rider_id] = random_coord()
    lat, lng = positions[rider_id]
    lat, lng = lat + random.uniform(-0.001, 0.001), lng + random.uniform(-0.001, 0.001)
    positions[rider_id] = (lat, lng)
    return {
        "riderId": rider_id,
        "lat": lat,
        "lng": lng,
        "heading": round(random.uniform(0, 360), 1),
    }


def main(rider_count=20, interval=2.0):
    print("🚀 Starting PicknGet location simulator...")
    print(f"📡 Posting positions for {rider_count} riders to {API_URL}/location/update")

    session = requests.Session()
    riders = list(range(1, rider_count + 1))
    batch_num = 0

    while True:
        batch_num += 1
        sent = failed = 0
        for rider_id in random.sample(riders, min(10, len(riders))):
            try:
                response = session.post(f"{API_URL}/location/update", json=location_update(rider_id), timeout=5)
                response.raise_for_status()
                sent += 1
            except requests.exceptions.RequestException as e:
                failed += 1
                print(f"❌ Update for rider {rider_id} failed: {e}")

        if batch_num <= 5 or batch_num % 10 == 0:
            print(f"📊 Batch #{batch_num}: Sent {sent} updates | Failed: {failed}")
        time.sleep(interval)


if __name__ == "__main__":
    main(int(sys.argv[1]) if len(sys.argv) > 1 else 20)
