import unittest
from unittest.mock import patch

import orjson
from fastapi.testclient import TestClient

from app.config import settings
from app.main import create_app
from tests.fakes import MemoryLedger, ScriptedRNG, build_system

ADMIN_KEY = "test-admin-key"


class TestWagerApi(unittest.TestCase):
    def setUp(self):
        self.ledger = MemoryLedger({"alice": 500, "bob": 500, "carol": 1000})
        self.rng = ScriptedRNG(choices=[0])
        self.app = create_app(wager_factory=lambda: build_system(ledger=self.ledger, rng=self.rng))
        self.client = TestClient(self.app)
        self.client.__enter__()
        self.wager = self.app.state.wager

        admin_patch = patch.object(settings.security, "admin_key", ADMIN_KEY)
        admin_patch.start()
        self.addCleanup(admin_patch.stop)

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def test_health_reports_started(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_duel_request_flow(self):
        response = self.client.post(
            "/api/duels/requests", json={"sender_id": "alice", "receiver_id": "bob", "amount": 50}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["request"]["pot"], 100)

        listing = self.client.get("/api/duels/requests/bob").json()
        self.assertEqual(listing["incoming"][0]["sender_id"], "alice")
        self.assertIsNone(listing["outgoing"])

        response = self.client.post("/api/duels/requests/accept", json={"receiver_id": "bob"})
        self.assertEqual(response.status_code, 200)
        duel = response.json()["duel"]
        self.assertNotIn("winner", duel)
        self.assertEqual(self.ledger.balances["alice"], 450)

        active = self.client.get("/api/duels/active").json()["duels"]
        self.assertEqual([d["id"] for d in active], [duel["id"]])

        self.wager.ctx.scheduler.advance(5)
        self.assertEqual(self.ledger.balances["alice"], 550)
        self.assertEqual(self.client.get("/api/duels/active").json()["duels"], [])

    def test_duel_errors_map_to_status_codes(self):
        response = self.client.post(
            "/api/duels/requests", json={"sender_id": "alice", "receiver_id": "alice", "amount": 10}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "self_duel")

        self.client.post("/api/duels/requests", json={"sender_id": "alice", "receiver_id": "bob", "amount": 10})
        response = self.client.post(
            "/api/duels/requests", json={"sender_id": "alice", "receiver_id": "carol", "amount": 10}
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "already_sent_request")

        response = self.client.post("/api/duels/requests/deny", json={"receiver_id": "carol"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "no_pending_request")

    def test_deny_and_cancel(self):
        self.client.post("/api/duels/requests", json={"sender_id": "alice", "receiver_id": "bob", "amount": 10})
        response = self.client.post("/api/duels/requests/deny", json={"receiver_id": "bob"})
        self.assertEqual(response.status_code, 200)

        self.client.post("/api/duels/requests", json={"sender_id": "alice", "receiver_id": "bob", "amount": 10})
        response = self.client.delete("/api/duels/requests/alice")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/duels/requests/bob").json()["incoming"], [])

    def test_malformed_body_is_rejected(self):
        response = self.client.post(
            "/api/jackpot/enter", json={"player_id": "alice", "amount": "lots"}
        )
        self.assertEqual(response.status_code, 422)

    def test_jackpot_entry_and_status(self):
        response = self.client.post(
            "/api/jackpot/enter", json={"player_id": "alice", "amount": 100, "display_name": "Alice"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["win_chance"], 100.0)

        response = self.client.post("/api/jackpot/enter", json={"player_id": "bob", "amount": 50})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "below_minimum")
        self.assertEqual(self.ledger.balances["bob"], 500)

        status = self.client.get("/api/jackpot/status").json()
        self.assertTrue(status["active"])
        self.assertEqual(status["pot"], 100)
        self.assertEqual(status["entrants"], 1)

    def test_admin_routes_require_key(self):
        self.assertEqual(self.client.post("/admin/jackpot/force-draw").status_code, 403)
        response = self.client.get("/admin/escrow", headers={"X-Admin-Key": "wrong"})
        self.assertEqual(response.status_code, 403)

    def test_force_draw_records_winner(self):
        self.client.post("/api/jackpot/enter", json={"player_id": "carol", "amount": 400, "display_name": "Carol"})
        escrow = self.client.get("/admin/escrow", headers={"X-Admin-Key": ADMIN_KEY}).json()
        self.assertEqual(escrow["total"], 400)

        response = self.client.post("/admin/jackpot/force-draw", headers={"X-Admin-Key": ADMIN_KEY})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["winner"]["display_name"], "Carol")
        self.assertFalse(body["status"]["active"])

        winners = self.client.get("/api/jackpot/winners", params={"page": 0}).json()["winners"]
        self.assertEqual([w["amount_won"] for w in winners], [400])
        self.assertEqual(self.client.get("/api/jackpot/winners?page=1").json()["winners"], [])

        response = self.client.post("/admin/jackpot/force-draw", headers={"X-Admin-Key": ADMIN_KEY})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "no_active_jackpot")

    def test_win_chance_shown_to_two_decimals(self):
        self.rng.below.append(150)
        self.client.post("/api/jackpot/enter", json={"player_id": "alice", "amount": 100})
        response = self.client.post("/api/jackpot/enter", json={"player_id": "bob", "amount": 200})
        self.assertEqual(response.json()["win_chance"], 66.67)

        body = self.client.post("/admin/jackpot/force-draw", headers={"X-Admin-Key": ADMIN_KEY}).json()
        self.assertEqual(body["winner"]["win_chance"], 66.67)
        self.assertAlmostEqual(self.wager.list_winners(0)[0].win_chance, 200 / 3)

        winners = self.client.get("/api/jackpot/winners").json()["winners"]
        self.assertEqual(winners[0]["win_chance"], 66.67)

    def test_websocket_ping_and_events(self):
        with self.client.websocket_connect("/ws") as websocket:
            websocket.send_text(orjson.dumps({"type": "ping"}).decode())
            self.assertEqual(orjson.loads(websocket.receive_bytes()), {"type": "pong"})

            websocket.send_text(orjson.dumps({"type": "unsubscribe", "topic": "duels"}).decode())
            self.assertEqual(orjson.loads(websocket.receive_bytes())["type"], "status")

            self.client.post("/api/duels/requests", json={"sender_id": "alice", "receiver_id": "bob", "amount": 10})
            self.client.post("/api/jackpot/enter", json={"player_id": "carol", "amount": 100})

            event = orjson.loads(websocket.receive_bytes())
            self.assertEqual(event["type"], "jackpot_bet")
            self.assertEqual(event["pot"], 100)


if __name__ == "__main__":
    unittest.main()
