"""
Tests for the governance HTTP routes.
"""

import os
import random
import tempfile
from unittest.mock import patch

import yaml

from conftest import FakeClock, no_cooldown_settings
from generation_guard.config.loader import AppConfig
from generation_guard.config.settings_store import SettingsStore
from generation_guard.core.admission import AdmissionController
from generation_guard.core.identity import Identity
from generation_guard.core.ledger import HOUR
from generation_guard.storage.repository import UsageRepository
from generation_guard.web.factory import create_app, create_governance_module


ADMIN_HEADERS = {"X-Admin-Key": "s3cret"}


class RoutesTestCase:
    """Flask test client around an in-process controller."""

    def setup_method(self):
        """Set up test environment."""
        self.clock = FakeClock()
        self.controller = self._controller()
        self.client = create_app(self.controller).test_client()

    def _controller(self, settings=None, app_config=None):
        return AdmissionController(
            settings_store=SettingsStore(initial=settings),
            clock=self.clock,
            rng=random.Random(9),
            app_config=app_config or AppConfig(admin_secret="s3cret"),
        )


class TestAdminSettingsRoutes(RoutesTestCase):
    """Test /api/admin/settings."""

    def test_requires_admin_key(self):
        assert self.client.get("/api/admin/settings").status_code == 403
        response = self.client.get("/api/admin/settings", headers={"X-Admin-Key": "wrong"})
        assert response.status_code == 403
        assert response.get_json() == {"error": "Unauthorized - Admin access required"}

    def test_get_settings(self):
        response = self.client.get("/api/admin/settings", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["settings"]["hourly_batch_limit"] == 12

    def test_unconfigured_secret(self):
        controller = self._controller(app_config=AppConfig())
        client = create_app(controller).test_client()

        response = client.get("/api/admin/settings", headers=ADMIN_HEADERS)

        assert response.status_code == 500
        assert response.get_json() == {"error": "ADMIN_SECRET_KEY not configured"}

    def test_patch_settings(self):
        response = self.client.patch(
            "/api/admin/settings",
            json={"hourly_batch_limit": 20, "unknown": True},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["settings"]["hourly_batch_limit"] == 20
        assert body["version"] == 1
        assert "unknown" not in body["settings"]
        assert self.controller.get_settings().hourly_batch_limit == 20

    def test_put_settings(self):
        response = self.client.put(
            "/api/admin/settings", json={"tier_a_max": 4}, headers=ADMIN_HEADERS
        )
        assert response.status_code == 200

    def test_no_valid_keys(self):
        response = self.client.patch(
            "/api/admin/settings", json={"unknown": 1}, headers=ADMIN_HEADERS
        )
        assert response.status_code == 400
        assert response.get_json() == {"error": "No valid settings provided"}

    def test_invalid_range(self):
        response = self.client.patch(
            "/api/admin/settings",
            json={"cooldown_tier_a_min": 100, "cooldown_tier_a_max": 50},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 400
        assert self.controller.get_settings().version == 0

    def test_non_object_body(self):
        response = self.client.patch("/api/admin/settings", json=[1, 2], headers=ADMIN_HEADERS)
        assert response.status_code == 400

    def test_unsupported_method(self):
        response = self.client.delete("/api/admin/settings", headers=ADMIN_HEADERS)
        assert response.status_code == 405


class TestBoostRoutes(RoutesTestCase):
    """Test /api/boosts."""

    def test_balance_requires_user(self):
        response = self.client.get("/api/boosts")
        assert response.status_code == 400
        assert response.get_json() == {"error": "User ID required"}

    def test_balance(self):
        self.controller.add_boost("alice", 2)

        response = self.client.get("/api/boosts?userId=alice")

        assert response.status_code == 200
        assert response.get_json() == {
            "balance": 2,
            "active_boost_batches": 0,
            "batches_per_boost": 3,
        }

    def test_redeem_without_balance(self):
        response = self.client.post("/api/boosts", json={"userId": "alice", "action": "redeem"})
        assert response.status_code == 400
        assert response.get_json() == {"error": "insufficient balance", "balance": 0}

    def test_redeem(self):
        self.controller.add_boost("alice", 1)

        response = self.client.post("/api/boosts", json={"userId": "alice", "action": "redeem"})

        assert response.status_code == 200
        body = response.get_json()
        assert body["new_balance"] == 0
        assert body["batches_granted"] == 3
        assert body["active_boost_batches"] == 3

    def test_add_requires_admin_key(self):
        response = self.client.post(
            "/api/boosts", json={"userId": "alice", "action": "add", "amount": 5}
        )
        assert response.status_code == 403
        assert self.controller.get_boost_balance("alice").balance == 0

    def test_add(self):
        response = self.client.post("/api/boosts", json={
            "userId": "alice",
            "action": "add",
            "amount": 5,
            "adminKey": "s3cret",
            "adminId": "ops",
            "reason": "promo",
        })

        assert response.status_code == 200
        assert response.get_json()["new_balance"] == 5
        trail = self.controller.boosts.transactions("alice")
        assert trail[0].reason == "promo"
        assert trail[0].admin_id == "ops"

    def test_add_invalid_amount(self):
        response = self.client.post("/api/boosts", json={
            "userId": "alice", "action": "add", "amount": 0, "adminKey": "s3cret",
        })
        assert response.status_code == 400
        assert response.get_json() == {"error": "Valid amount required"}

    def test_add_with_non_string_admin_key(self):
        response = self.client.post("/api/boosts", json={
            "userId": "alice", "action": "add", "amount": 1, "adminKey": 12345,
        })

        assert response.status_code == 403
        assert response.get_json() == {"error": "Unauthorized - Admin access required"}
        assert self.controller.get_boost_balance("alice").balance == 0

    def test_unknown_action(self):
        response = self.client.post("/api/boosts", json={"userId": "alice", "action": "gift"})
        assert response.status_code == 400


class TestAdmissionRoutes(RoutesTestCase):
    """Test /api/admission, /api/usage and /api/stats."""

    def test_admitted(self):
        response = self.client.post("/api/admission", json={"userId": "alice", "weight": 1})

        assert response.status_code == 200
        body = response.get_json()
        assert body["can_generate"] is True
        assert body["tier"] == "A"
        assert body["model"] == "gpt-4o"

    def test_cooldown_blocked(self):
        alice = Identity(ip_address="127.0.0.1", user_id="alice")
        for _ in range(5):
            self.controller.record_usage(alice, 1.0, "A")

        response = self.client.post("/api/admission", json={"userId": "alice", "weight": 1})

        assert response.status_code == 429
        body = response.get_json()
        assert body["error"] == "generation_blocked"
        assert body["status"] == "cooldown"
        assert body["can_generate"] is False
        assert "Try again in" in body["message"]

    def test_admission_requires_weight(self):
        response = self.client.post("/api/admission", json={"userId": "alice"})

        assert response.status_code == 400
        assert response.get_json() == {"error": "weight is required"}
        assert self.controller.check_admission(Identity(ip_address="127.0.0.1", user_id="alice")).hourly_count == 0

    def test_pending_reservation_wait_and_release(self):
        self.controller = self._controller(
            no_cooldown_settings(tier_a_max=1, tier_b_max=2, hourly_batch_limit=2)
        )
        self.client = create_app(self.controller).test_client()
        request = {"userId": "alice", "weight": 1}
        for _ in range(2):
            assert self.client.post("/api/admission", json=request).status_code == 200

        self.clock.advance(seconds=30)
        response = self.client.post("/api/admission", json=request)

        assert response.status_code == 429
        body = response.get_json()
        assert body["status"] == "hourly_limit"
        assert body["cooldown_seconds"] == 90
        assert "Try again in" in body["message"]

        response = self.client.post("/api/admission/release", json={"userId": "alice"})
        assert response.status_code == 200
        assert response.get_json() == {"success": True}

        assert self.client.post("/api/admission", json=request).status_code == 200

    def test_anonymous_uses_forwarded_ip(self):
        self.client.post(
            "/api/usage",
            json={"weight": 1, "tier": "A"},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )
        assert self.controller.ledger.hourly_count("ip:203.0.113.7") == 1

    def test_record_usage(self):
        response = self.client.post(
            "/api/usage",
            json={"userId": "alice", "weight": 0.25, "tier": "B", "ideasCount": 1},
            headers={"User-Agent": "pytest"},
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["tier"] == "B"
        assert body["hourly_count"] == 0.25
        events = self.controller.ledger.window_events("user:alice", HOUR)
        assert events[0].user_agent == "pytest"

    def test_record_usage_requires_weight_and_tier(self):
        response = self.client.post("/api/usage", json={"userId": "alice", "tier": "A"})
        assert response.status_code == 400

    def test_record_usage_invalid_tier(self):
        response = self.client.post("/api/usage", json={"userId": "alice", "weight": 1, "tier": "Z"})
        assert response.status_code == 400

    def test_stats(self):
        self.client.post("/api/usage", json={"userId": "alice", "weight": 1, "tier": "A", "ideasCount": 5})

        response = self.client.get("/api/stats?userId=alice")

        assert response.status_code == 200
        body = response.get_json()
        assert body["hourly_stats"]["batch_count"] == 1
        assert body["hourly_stats"]["remaining"] == 11
        assert body["daily_stats"]["ideas_count"] == 5

    def test_unexpected_error_is_500(self):
        with patch.object(self.controller, "get_hourly_stats", side_effect=RuntimeError("boom")):
            response = self.client.get("/api/stats?userId=alice")

        assert response.status_code == 500
        assert response.get_json() == {"error": "Internal server error"}


class TestFactory:
    """Test module and app construction."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_module_from_config(self):
        db_path = os.path.join(self.temp_dir, "guard.db")
        settings_path = os.path.join(self.temp_dir, "settings.yaml")
        with open(settings_path, 'w', encoding='utf-8') as f:
            yaml.dump({"hourly_batch_limit": 20}, f)

        module = create_governance_module(app_config=AppConfig(
            admin_secret="s3cret", db_path=db_path, settings_path=settings_path,
        ))

        controller = module["controller"]
        assert isinstance(controller.ledger, UsageRepository)
        assert controller.get_settings().hourly_batch_limit == 20
        assert module["blueprint"].name == "governance"

    def test_app_from_environment(self):
        db_path = os.path.join(self.temp_dir, "guard.db")
        with patch.dict(os.environ, {"GENERATION_GUARD_DB": db_path, "ADMIN_SECRET_KEY": "s3cret"}):
            app = create_app()

        controller = app.extensions["generation_guard"]
        assert isinstance(controller.ledger, UsageRepository)
        response = app.test_client().get("/api/admin/settings", headers=ADMIN_HEADERS)
        assert response.status_code == 200

    def test_existing_controller_is_used(self):
        controller = AdmissionController(settings_store=SettingsStore(initial=no_cooldown_settings()))
        module = create_governance_module(controller)
        assert module["controller"] is controller
