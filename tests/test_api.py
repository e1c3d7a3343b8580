import unittest
import json
import os
import sys
import tempfile
import shutil
from datetime import datetime, timedelta
from unittest import mock
from fastapi.testclient import TestClient
from loguru import logger

import main

class TestApi(unittest.TestCase):
    """Tests de las rutas HTTP con la base en un directorio temporal"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        config_file = os.path.join(self.temp_dir, "system.json")
        with open(config_file, "w") as f:
            json.dump({
                "data_path": os.path.join(self.temp_dir, "data"),
                "log_path": os.path.join(self.temp_dir, "logs"),
                "alert_poll_interval": 1
            }, f)

        self.env = mock.patch.dict(os.environ, {"CONDOGUARD_CONFIG": config_file, "LOG_LEVEL": "WARNING"})
        self.env.start()
        os.environ.pop("CONDOGUARD_DATA_PATH", None)
        self.client = TestClient(main.app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)
        self.env.stop()
        logger.remove()
        logger.add(sys.stderr)
        shutil.rmtree(self.temp_dir)

    def _issue_pass(self, **overrides):
        data = {
            "guest_name": "Carla Ruiz",
            "access_type": "vehicular",
            "validity": "bounded",
            "condominio_id": "c1",
            "resident_id": "r1",
            "expires_at": (datetime.now() + timedelta(hours=1)).isoformat(),
            "license_plate": "xyz987"
        }
        data.update(overrides)
        return self.client.post("/api/passes", json=data)

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")
        self.assertEqual(response.json()["oracle"], "keyword")

    def test_pass_lifecycle(self):
        """Test emitir, resolver, validar y revocar"""
        response = self._issue_pass()
        self.assertEqual(response.status_code, 200)
        guest_pass = response.json()
        token = guest_pass["token"]
        self.assertEqual(guest_pass["license_plate"], "XYZ987")

        self.assertEqual(self.client.get(f"/api/passes/{token}").json()["guest_name"], "Carla Ruiz")
        self.assertTrue(self.client.get(f"/api/passes/{token}/validity").json()["valid"])

        later = (datetime.now() + timedelta(hours=2)).isoformat()
        validity = self.client.get(f"/api/passes/{token}/validity", params={"at": later}).json()
        self.assertFalse(validity["valid"])

        self.assertEqual(self.client.get("/api/passes", params={"condominio_id": "c1"}).json()["total"], 1)

        self.assertEqual(self.client.delete(f"/api/passes/{token}", params={"requested_by": "r2"}).status_code, 400)
        self.assertEqual(self.client.delete(f"/api/passes/{token}", params={"requested_by": "r1"}).status_code, 200)
        self.assertEqual(self.client.delete(f"/api/passes/{token}").status_code, 404)
        self.assertEqual(self.client.get(f"/api/passes/{token}").status_code, 404)

    def test_vehicular_pass_requires_plate(self):
        response = self._issue_pass(license_plate=None)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "ValidationError")

    def test_gate_admit(self):
        token = self._issue_pass().json()["token"]

        admitted = self.client.post("/api/gate/admit", json={
            "access_type": "vehicular", "condominio_id": "c1", "token": token
        }).json()
        self.assertEqual(admitted["outcome"], "admitted")
        self.assertEqual(admitted["registration"]["full_name"], "Carla Ruiz")

        denied = self.client.post("/api/gate/admit", json={
            "access_type": "pedestrian", "condominio_id": "c1", "token": token
        }).json()
        self.assertEqual(denied["outcome"], "denied")
        self.assertEqual(denied["reason"], "type_mismatch")
        self.assertIsNone(denied["guest_pass"])

        registrations = self.client.get("/api/gate/registrations", params={"condominio_id": "c1"}).json()
        self.assertEqual(registrations["total"], 2)

    def test_alert_flow(self):
        """Test levantar, consultar y atender una alerta"""
        alert = self.client.post("/api/alerts", json={"guard_id": "g1", "condominio_id": "c1"}).json()

        active = self.client.get("/api/alerts/active", params={"condominio_id": "c1"}).json()
        self.assertEqual([a["id"] for a in active["alerts"]], [alert["id"]])
        self.assertEqual(active["poll_interval"], 1)

        state = self.client.get("/api/alerts/state", params={"guard_id": "g1", "condominio_id": "c1"}).json()
        self.assertEqual(state["state"], "active")

        cleared = self.client.post(f"/api/alerts/{alert['id']}/clear", json={"cleared_by": "admin"})
        self.assertEqual(cleared.status_code, 200)
        self.assertTrue(cleared.json()["cleared"])

        again = self.client.post(f"/api/alerts/{alert['id']}/clear", json={})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(self.client.post("/api/alerts/panic-x/clear", json={}).status_code, 404)

        history = self.client.get("/api/alerts/history", params={"condominio_id": "c1"}).json()
        self.assertEqual(history["total"], 1)

    def test_bitacora_escalation(self):
        entry = self.client.post("/api/bitacora", json={
            "condominio_id": "c1", "author_id": "g1", "text": "water leak detected in parking garage"
        }).json()
        self.client.post("/api/bitacora", json={
            "condominio_id": "c1", "author_id": "g1", "text": "routine patrol completed, nothing to report"
        })

        escalated = self.client.post(f"/api/bitacora/{entry['id']}/escalate").json()
        self.assertEqual(escalated["outcome"]["kind"], "escalated")

        again = self.client.post(f"/api/bitacora/{entry['id']}/escalate")
        self.assertEqual(again.status_code, 400)

        batch = self.client.post("/api/bitacora/escalate", params={"condominio_id": "c1"}).json()
        self.assertEqual(batch["total"], 1)
        self.assertEqual(batch["results"][0]["outcome"]["kind"], "no_action")

        petitions = self.client.get("/api/petitions", params={"condominio_id": "c1"}).json()
        self.assertEqual(petitions["total"], 1)
        self.assertEqual(petitions["petitions"][0]["status"], "Abierta")

    def test_ai_routes(self):
        binnacle = self.client.post("/api/ai/binnacle", json={"report": "Luz rota en el pasillo"}).json()
        self.assertEqual(binnacle["suggestedAction"], "create_petition")

        payroll = self.client.post("/api/ai/payroll", json={"payroll_period": "junio", "guards_data": []})
        self.assertEqual(payroll.status_code, 502)

        image = self.client.post("/api/ai/plate", json={"photo_data_uri": "no es imagen"})
        self.assertEqual(image.status_code, 400)

    def test_export(self):
        self.client.post("/api/alerts", json={"guard_id": "g1", "condominio_id": "c1"})

        exported = self.client.get("/api/data/export", params={"condominio_id": "c1", "type": "panic_alerts"})
        self.assertEqual(len(exported.json()["data"]), 1)

        invalid = self.client.get("/api/data/export", params={"condominio_id": "c1", "type": "usuarios"})
        self.assertEqual(invalid.status_code, 400)

if __name__ == '__main__':
    unittest.main()
