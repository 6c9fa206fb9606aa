import json
import os
import sys
from datetime import datetime, timedelta, timezone

from errors import ValidationError
from generator import TrafficGenerator, congestion_level
from geo import estimate_route, valid_coordinates
from store import StateStore


class DebugColors:
    HEADER = '\033[95m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def print_pass(msg):
    print(f"{DebugColors.OKGREEN}[PASS] {msg}{DebugColors.ENDC}")


def print_fail(msg):
    print(f"{DebugColors.FAIL}[FAIL] {msg}{DebugColors.ENDC}")


def print_info(msg):
    print(f"{DebugColors.OKCYAN}[INFO] {msg}{DebugColors.ENDC}")


def check_config(config_path="roadwatch_config.json"):
    print_info(f"Checking configuration file: {config_path}")
    if not os.path.exists(config_path):
        print_fail(f"Config file not found: {config_path}")
        return False

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        print_fail(f"Invalid JSON: {e}")
        return False

    required_keys = ['server', 'simulation', 'retention', 'broadcast', 'geocoding', 'zones']
    for k in required_keys:
        if k not in data:
            print_fail(f"Missing root key: '{k}'")
            return False

    zones = data.get('zones', [])
    if not zones:
        print_fail("No traffic zones defined")
        return False

    for i, zone in enumerate(zones):
        if 'lat' not in zone or 'lng' not in zone:
            print_fail(f"Zone at index {i} missing 'lat' or 'lng'")
            return False
        if not valid_coordinates(zone['lat'], zone['lng']):
            print_fail(f"Zone at index {i} has out-of-range coordinates")
            return False

    print_pass("Configuration structure is valid.")
    return True


def check_store_logic():
    print_info("Testing store logic...")
    clock_now = [datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)]
    store = StateStore(clock=lambda: clock_now[0])

    user = store.create_user("debug", 14.08, -87.20)
    if user.id != 1:
        print_fail(f"First user id should be 1, got {user.id}")
        return False

    try:
        store.create_report("pothole", 14.08, -87.20, "bad type", user.id)
        print_fail("Invalid report type was accepted")
        return False
    except ValidationError:
        pass

    store.create_report("traffic", 14.0818, -87.2068, "jam", user.id)
    stats = store.stats()
    if (stats.users_online, stats.total_reports) != (1, 1):
        print_fail(f"Unexpected stats after inserts: {stats}")
        return False

    clock_now[0] += timedelta(hours=25)
    store.sweep()
    stats = store.stats()
    if stats.users_online or stats.total_reports:
        print_fail(f"Sweep left expired records behind: {stats}")
        return False

    print_pass("Store create/validate/sweep behave as expected.")
    return True


def check_simulator_logic():
    print_info("Testing traffic model...")
    gen = TrafficGenerator()
    speed = gen.calculate_speed(0, 8, 110)
    if speed != 25 or congestion_level(speed).value != "high":
        print_fail(f"Rush hour sample mismatch: speed={speed}")
        return False
    print_pass(f"Rush hour sample: {speed} km/h ({congestion_level(speed).value})")
    return True


def check_route_logic():
    print_info("Testing route estimate...")
    route = estimate_route(14.0818, -87.2068, 14.0950, -87.2150)
    if len(route.points) != 11:
        print_fail(f"Route should have 11 points, got {len(route.points)}")
        return False
    end = route.points[-1]
    if route.points[0] != route.origin or abs(end.lat - route.destination.lat) > 1e-9 or abs(end.lng - route.destination.lng) > 1e-9:
        print_fail("Route endpoints do not match origin and destination")
        return False
    print_pass(f"Route: {route.distance_km:.2f} km, {route.duration_min} min heading {route.direction}")
    return True


def main():
    print(f"{DebugColors.HEADER}=== RoadWatch Debug Suite ==={DebugColors.ENDC}")

    overall_pass = True
    for check in (check_config, check_store_logic, check_simulator_logic, check_route_logic):
        if not check():
            overall_pass = False
        print("-" * 30)

    if overall_pass:
        print(f"{DebugColors.OKGREEN}{DebugColors.BOLD}ALL CHECKS PASSED.{DebugColors.ENDC}")
        sys.exit(0)
    else:
        print(f"{DebugColors.FAIL}{DebugColors.BOLD}SOME CHECKS FAILED.{DebugColors.ENDC}")
        sys.exit(1)


if __name__ == "__main__":
    main()
