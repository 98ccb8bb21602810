import contextlib
import unittest

from starlette.websockets import WebSocketDisconnect

from campuschat.realtime import AUTH_FAILED_CLOSE_CODE

from tests.support import AppTestCase, bearer


class WebSocketTests(AppTestCase):
    def _connect(self, token):
        return self.client.websocket_connect(f"/ws?token={token}")

    def test_connect_without_valid_token_is_refused(self):
        for query in ("", "?token=", "?token=forged.token.value"):
            with self.subTest(query=query):
                with self.assertRaises(WebSocketDisconnect) as ctx:
                    with self.client.websocket_connect(f"/ws{query}") as ws:
                        ws.receive_json()
                self.assertEqual(ctx.exception.code, AUTH_FAILED_CLOSE_CODE)

    def test_token_in_authorization_header(self):
        alice = self.make_user("alice")
        with self.client.websocket_connect("/ws", headers=bearer(alice)) as ws:
            self.assertEqual(ws.receive_json(), {"type": "connected", "you": "alice"})

    def test_rest_send_is_pushed_to_receiver_and_sender(self):
        alice = self.make_user("alice")
        bob = self.make_user("bob")
        with self._connect(alice) as ws_alice, self._connect(bob) as ws_bob:
            ws_alice.receive_json()
            ws_bob.receive_json()

            sent = self.client.post("/api/messages", json={"receiver": "bob", "text": "hi bob"},
                                    headers=bearer(alice)).json()

            self.assertEqual(ws_bob.receive_json(), {"type": "message", "data": sent})
            self.assertEqual(ws_alice.receive_json()["data"]["id"], sent["id"])

    def test_every_device_of_an_identity_receives_the_push(self):
        alice = self.make_user("alice")
        bob = self.make_user("bob")
        with self._connect(bob) as phone, self._connect(bob) as laptop:
            phone.receive_json()
            laptop.receive_json()
            self.assertEqual(self.client.get("/api/presence/bob", headers=bearer(alice)).json()["channels"], 2)

            self.client.post("/api/messages", json={"receiver": "bob", "text": "both?"}, headers=bearer(alice))
            self.assertEqual(phone.receive_json()["data"]["text"], "both?")
            self.assertEqual(laptop.receive_json()["data"]["text"], "both?")

    def test_send_over_websocket_persists_and_dispatches(self):
        alice = self.make_user("alice")
        bob = self.make_user("bob")
        with self._connect(alice) as ws_alice, self._connect(bob) as ws_bob:
            ws_alice.receive_json()
            ws_bob.receive_json()

            ws_alice.send_json({"type": "send-message",
                                "data": {"sender": "alice", "receiver": "bob", "text": "via socket", "isGroup": False}})

            pushed = ws_bob.receive_json()
            self.assertEqual(pushed["type"], "message")
            self.assertEqual(pushed["data"]["text"], "via socket")
            self.assertEqual(ws_alice.receive_json()["data"]["id"], pushed["data"]["id"])

        history = self.client.get("/api/messages/bob/alice", headers=bearer(bob)).json()
        self.assertEqual([m["id"] for m in history], [pushed["data"]["id"]])

    def test_group_fan_out_over_websocket(self):
        tokens = {name: self.make_user(name) for name in ("u1", "u2", "u3", "outsider")}
        group_id = self.client.post(
            "/api/groups/create", json={"name": "trio", "members": ["u2", "u3"]}, headers=bearer(tokens["u1"])
        ).json()["id"]

        with contextlib.ExitStack() as stack:
            opened = {name: stack.enter_context(self._connect(token)) for name, token in tokens.items()}
            for ws in opened.values():
                ws.receive_json()
            opened["outsider"].send_json({"type": "send-message",
                                          "data": {"receiver": group_id, "text": "hello all", "isGroup": True}})
            for name in ("u1", "u2", "u3", "outsider"):
                frame = opened[name].receive_json()
                self.assertEqual(frame["data"]["text"], "hello all")
                self.assertIs(frame["data"]["isGroup"], True)

    def test_deletion_notice_reaches_receiver(self):
        alice = self.make_user("alice")
        bob = self.make_user("bob")
        with self._connect(bob) as ws_bob:
            ws_bob.receive_json()
            msg = self.client.post("/api/messages", json={"receiver": "bob", "text": "regret"},
                                   headers=bearer(alice)).json()
            ws_bob.receive_json()

            self.client.delete(f"/api/message/{msg['id']}/alice", headers=bearer(alice))
            self.assertEqual(ws_bob.receive_json(), {"type": "message-deleted", "data": {"id": msg["id"]}})

    def test_bad_frames_get_error_replies(self):
        alice = self.make_user("alice")
        with self._connect(alice) as ws:
            ws.receive_json()

            ws.send_text("{not json")
            self.assertEqual(ws.receive_json()["error"], "validation_error")

            ws.send_bytes(b"\x00\x01")
            self.assertEqual(ws.receive_json(), {"type": "error", "error": "validation_error",
                                                 "message": "expected a text frame"})

            ws.send_json({"type": "dance"})
            self.assertEqual(ws.receive_json()["type"], "error")

            ws.send_json({"type": "send-message", "data": {"sender": "bob", "receiver": "carol", "text": "x"}})
            self.assertEqual(ws.receive_json(), {"type": "error", "error": "forbidden",
                                                 "message": "sender must be the authenticated user"})

            ws.send_json({"type": "send-message", "data": {"receiver": "carol"}})
            self.assertEqual(ws.receive_json()["error"], "validation_error")

    def test_is_group_string_false_sends_a_direct_message(self):
        alice = self.make_user("alice")
        bob = self.make_user("bob")
        with self._connect(alice) as ws_alice, self._connect(bob) as ws_bob:
            ws_alice.receive_json()
            ws_bob.receive_json()

            ws_alice.send_json({"type": "send-message", "data": {"receiver": "bob", "text": "hi", "isGroup": "false"}})
            pushed = ws_bob.receive_json()
            self.assertIs(pushed["data"]["isGroup"], False)
            self.assertEqual(ws_alice.receive_json()["data"]["id"], pushed["data"]["id"])

        history = self.client.get("/api/messages/alice/bob", headers=bearer(alice)).json()
        self.assertEqual([(m["text"], m["isGroup"]) for m in history], [("hi", False)])

    def test_disconnect_unbinds(self):
        alice = self.make_user("alice")
        bob = self.make_user("bob")
        with self._connect(bob) as ws:
            ws.receive_json()
            self.assertIs(self.client.get("/api/presence/bob", headers=bearer(alice)).json()["online"], True)
        self.assertIs(self.client.get("/api/presence/bob", headers=bearer(alice)).json()["online"], False)

        # stored even though nobody is listening
        self.client.post("/api/messages", json={"receiver": "bob", "text": "offline"}, headers=bearer(alice))
        self.assertEqual(len(self.client.get("/api/messages/bob/alice", headers=bearer(bob)).json()), 1)


if __name__ == "__main__":
    unittest.main()
