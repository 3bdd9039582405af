import random

from scripts.generate_mock_drivers import generate_mock_drivers
from scripts.generate_mock_requests import generate_mock_requests
from scripts.run_matching_simulation import load_drivers, load_requests, run_simulation


def test_generated_drivers_load_as_candidates(tmp_path):
    path = tmp_path / "drivers.csv"
    df = generate_mock_drivers(count=25, output_file=str(path), seed=7)

    drivers = load_drivers(str(path))

    assert len(df) == 25
    assert {"driver_id", "lat", "lon", "status", "vehicle_type", "battery_level"} <= set(df.columns)
    assert [d.id for d in drivers] == list(df["driver_id"])
    assert all(d.battery is not None and d.connectivity is not None for d in drivers)


def test_generated_requests_are_valid(tmp_path):
    path = tmp_path / "requests.csv"
    generate_mock_requests(num_requests=40, output_file=str(path), seed=7)

    requests = load_requests(str(path), limit=30)

    assert len(requests) == 30
    assert all(r.pickup.is_complete() for r in requests)
    assert all(r.destination is not None for r in requests)


def test_simulation_runs_end_to_end(tmp_path, capsys):
    random.seed(3)
    drivers = tmp_path / "drivers.csv"
    requests = tmp_path / "requests.csv"
    generate_mock_drivers(count=30, output_file=str(drivers), seed=3)
    generate_mock_requests(num_requests=15, output_file=str(requests), seed=3)

    run_simulation(str(drivers), str(requests), limit=15)

    output = capsys.readouterr().out
    assert "SIMULATION COMPLETE" in output
    assert "Requests assigned:" in output
