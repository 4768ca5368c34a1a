"""Tests for the health endpoint and mission validation script."""

from aiohttp import test_utils

from scripts.health_server import HealthServer
from scripts.validate_missions import main as validate_main


class TestHealthServer:
    async def test_reports_status(self):
        server = HealthServer(status_provider=lambda: {"speed": 10.0, "pending_timers": 3})
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            data = await resp.json()
        assert data["status"] == "running"
        assert data["speed"] == 10.0
        assert data["pending_timers"] == 3
        assert "uptime_seconds" in data

    async def test_provider_failure_degrades(self):
        def broken():
            raise RuntimeError("engine gone")

        server = HealthServer(status_provider=broken)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            data = await (await client.get("/health")).json()
        assert data["status"] == "degraded"


class TestValidateMissions:
    def test_tutorial_valid(self, capsys):
        assert validate_main(["validate", "config/missions"]) == 0
        assert "✓" in capsys.readouterr().out

    def test_invalid_file(self, tmp_path, capsys):
        bad = tmp_path / "bad.yaml"
        bad.write_text("missionId: m1\nobjectives:\n  - id: o1\n    type: teleport\n")
        assert validate_main(["validate", str(bad)]) == 1
        assert "unknown type 'teleport'" in capsys.readouterr().out

    def test_missing_path(self, tmp_path):
        assert validate_main(["validate", str(tmp_path / "nope")]) == 1

    def test_usage(self):
        assert validate_main(["validate"]) == 2


class TestSnapshot:
    def test_provider_keys_override_defaults(self):
        server = HealthServer(status_provider=lambda: {"status": "paused", "speed": 1.0})
        assert server.snapshot()["status"] == "paused"
        assert server.snapshot()["uptime_seconds"] >= 0

    def test_without_provider(self):
        assert set(HealthServer().snapshot()) == {"status", "uptime_seconds"}
