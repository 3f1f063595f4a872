import asyncio
import logging
import unittest

from fake_broker import FakeBroker
from stompie import (
    BrokerError,
    ConnectionState,
    ErrorKind,
    Frame,
    StompClient,
    StompConnectionError,
)


class StompClientTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.broker = FakeBroker()
        await self.broker.start()
        self.client = StompClient(
            self.broker.url, read_timeout=0.05, connect_timeout=1.0, receipt_timeout=1.0
        )

    async def asyncTearDown(self):
        await self.client.disconnect()
        await self.broker.stop()

    async def test_connect(self):
        self.assertEqual(self.client.state, ConnectionState.Disconnected)
        self.assertIsNone(self.client.get_session_id())

        with self.assertLogs("stompie.client", level=logging.INFO) as log:
            result = await self.client.connect()
        self.assertTrue(result)
        self.assertIn("Connected to 127.0.0.1", log.output[-1])

        self.assertTrue(self.client.connected)
        self.assertEqual(self.client.state, ConnectionState.Connected)
        self.assertEqual(self.client.session_id, "session-1")
        self.assertEqual(self.client.get_session_id(), "session-1")
        self.assertEqual(self.client.server, "fake-broker/1.0")

        (connect,) = self.broker.received("CONNECT")
        self.assertEqual(connect.get("accept-version"), "1.1")
        self.assertEqual(connect.get("host"), "127.0.0.1")
        self.assertEqual(connect.get("login"), "guest")
        self.assertEqual(connect.get("passcode"), "secret")

        # Connecting again while connected is a no-op
        self.assertTrue(await self.client.connect())
        self.assertEqual(len(self.broker.received("CONNECT")), 1)

    async def test_connect_without_credentials(self):
        client = StompClient(f"tcp://127.0.0.1:{self.broker.port}/vhost-a")
        self.assertTrue(await client.connect())
        (connect,) = self.broker.received("CONNECT")
        self.assertEqual(connect.get("host"), "vhost-a")
        self.assertIsNone(connect.get("login"))
        self.assertIsNone(connect.get("passcode"))
        await client.disconnect()

    async def test_connect_refused(self):
        await self.broker.stop()

        with self.assertLogs("stompie.transport", level=logging.ERROR):
            result = await self.client.connect()
        self.assertFalse(result)
        self.assertEqual(result.error, ErrorKind.CONNECTION)
        self.assertEqual(self.client.state, ConnectionState.Disconnected)

        # Operations on a disconnected client fail without raising
        result = await self.client.send("/queue/a", b"x")
        self.assertFalse(result)
        self.assertEqual(result.error, ErrorKind.CONNECTION)
        self.assertFalse(await self.client.subscribe("/queue/a"))
        self.assertFalse(await self.client.begin("tx-1"))
        self.assertFalse(await self.client.has_frame())
        self.assertIsNone(self.client.read_frame())

    async def test_connect_rejected_by_broker(self):
        self.broker.connect_reply = Frame("ERROR", {"message": "bad credentials"})

        with self.assertLogs("stompie.client", level=logging.ERROR):
            result = await self.client.connect()
        self.assertEqual(result.error, ErrorKind.BROKER)
        self.assertIn("bad credentials", result.detail)
        self.assertEqual(self.client.state, ConnectionState.Disconnected)

    async def test_connect_unexpected_reply(self):
        self.broker.connect_reply = Frame("RECEIPT-LIKE", {"x": "1"})
        with self.assertLogs("stompie.client", level=logging.ERROR):
            result = await self.client.connect()
        self.assertEqual(result.error, ErrorKind.PROTOCOL)
        self.assertFalse(self.client.connected)

    async def test_connect_timeout(self):
        self.broker.silent.add("CONNECT")
        self.client.connect_timeout = 0.2

        with self.assertLogs("stompie.client", level=logging.ERROR):
            result = await self.client.connect()
        self.assertEqual(result.error, ErrorKind.TIMEOUT)
        self.assertEqual(self.client.state, ConnectionState.Disconnected)

    async def test_context_manager(self):
        async with StompClient(self.broker.url, read_timeout=0.05) as client:
            self.assertTrue(client.connected)
        self.assertFalse(client.connected)
        self.assertEqual(self.broker.commands(), ["CONNECT", "DISCONNECT"])

        self.broker.connect_reply = Frame("ERROR", {"message": "go away"})
        with self.assertRaises(BrokerError):
            async with StompClient(self.broker.url, read_timeout=0.05):
                pass

    async def test_send(self):
        await self.client.connect()

        result = await self.client.send(
            "/queue/a", b"hello", {"priority": 4, "destination": "/queue/ignored"}
        )
        self.assertTrue(result)
        self.assertTrue(result.receipt_id.startswith("send-"))

        (send,) = self.broker.received("SEND")
        self.assertEqual(send.get("destination"), "/queue/a")
        self.assertEqual(send.get("priority"), "4")
        self.assertEqual(send.get("content-length"), "5")
        self.assertEqual(send.get("content-type"), "application/octet-stream")
        self.assertEqual(send.get("receipt"), result.receipt_id)
        self.assertEqual(send.body, b"hello")

    async def test_send_keeps_caller_content_type(self):
        await self.client.connect()
        await self.client.send("/queue/a", "text", {"content-type": "text/x-custom"})
        (send,) = self.broker.received("SEND")
        self.assertEqual(send.get("content-type"), "text/x-custom")
        self.assertEqual(send.body, b"text")

    async def test_send_with_unencodable_body(self):
        await self.client.connect()
        with self.assertLogs("stompie.client", level=logging.ERROR):
            result = await self.client.send("/queue/a", object())
        self.assertEqual(result.error, ErrorKind.PROTOCOL)
        self.assertFalse(self.broker.received("SEND"))

    async def test_messages_before_receipt_are_queued(self):
        await self.client.connect()
        self.broker.before_receipt = [
            Frame("MESSAGE", {"message-id": "a", "subscription": "0"}, b"first"),
            Frame("MESSAGE", {"message-id": "b", "subscription": "0"}, b"second"),
        ]

        self.assertTrue(await self.client.send("/queue/a", b"x"))

        self.assertTrue(await self.client.has_frame())
        self.assertEqual(self.client.read_frame().body, b"first")
        self.assertEqual(self.client.read_frame().body, b"second")
        self.assertIsNone(self.client.read_frame())

    async def test_late_receipt_can_be_collected(self):
        await self.client.connect()
        self.broker.silent.add("SEND")
        self.client.receipt_timeout = 0.1

        with self.assertLogs("stompie.receipts", level=logging.WARNING):
            result = await self.client.send("/queue/a", b"x")
        self.assertFalse(result)
        self.assertEqual(result.error, ErrorKind.CORRELATION)
        self.assertTrue(self.client.connected)

        await self.broker.push(Frame("RECEIPT", {"receipt-id": result.receipt_id}))
        late = await self.client.wait_for_receipt(result.receipt_id, timeout=1.0)
        self.assertTrue(late)
        self.assertEqual(late.receipt_id, result.receipt_id)

    async def test_receipt_from_previous_connection_is_abandoned(self):
        await self.client.connect()
        self.broker.silent.add("SEND")
        self.client.receipt_timeout = 0.05
        with self.assertLogs("stompie.receipts", level=logging.WARNING):
            result = await self.client.send("/queue/a", b"x")

        self.assertTrue(await self.client.reconnect())
        self.assertEqual(self.client.session_id, "session-2")

        with self.assertLogs("stompie.receipts", level=logging.WARNING):
            late = await self.client.wait_for_receipt(result.receipt_id, timeout=0.1)
        self.assertEqual(late.error, ErrorKind.CORRELATION)

    async def test_wait_for_receipt_when_disconnected(self):
        result = await self.client.wait_for_receipt("send-1")
        self.assertEqual(result.error, ErrorKind.CORRELATION)

    async def test_broker_error_for_request(self):
        await self.client.connect()
        self.broker.reject.add("SEND")

        with self.assertLogs("stompie.client", level=logging.ERROR):
            result = await self.client.send("/queue/a", b"x")
        self.assertEqual(result.error, ErrorKind.BROKER)
        self.assertIn("SEND refused", result.detail)
        with self.assertRaises(BrokerError):
            result.raise_for_error()

    async def test_connection_dropped_during_request(self):
        await self.client.connect()
        self.broker.drop_on.add("SEND")

        with self.assertLogs("stompie.client", level=logging.ERROR):
            result = await self.client.send("/queue/a", b"x")
        self.assertEqual(result.error, ErrorKind.CONNECTION)
        self.assertEqual(self.client.state, ConnectionState.Disconnected)
        with self.assertRaises(StompConnectionError):
            result.raise_for_error()

        # The client can connect again afterwards
        self.assertTrue(await self.client.connect())

    async def test_subscribe(self):
        await self.client.connect()

        result = await self.client.subscribe("/queue/a")
        self.assertTrue(result)
        self.assertEqual(self.client.destination, "/queue/a")

        (subscribe,) = self.broker.received("SUBSCRIBE")
        self.assertEqual(subscribe.get("id"), "0")
        self.assertEqual(subscribe.get("destination"), "/queue/a")
        self.assertEqual(subscribe.get("ack"), "client-individual")
        self.assertEqual(subscribe.get("receipt"), result.receipt_id)

        # Subscribing again replaces the active subscription
        self.assertTrue(await self.client.subscribe("/queue/b"))
        self.assertEqual(
            self.broker.commands(),
            ["CONNECT", "SUBSCRIBE", "UNSUBSCRIBE", "SUBSCRIBE"],
        )
        (unsubscribe,) = self.broker.received("UNSUBSCRIBE")
        self.assertEqual(unsubscribe.get("destination"), "/queue/a")
        self.assertEqual(self.client.destination, "/queue/b")

    async def test_subscribe_replacement_discards_previous_deliveries(self):
        await self.client.connect()
        await self.client.subscribe("/queue/a")
        await self.broker.push(
            Frame("MESSAGE", {"message-id": "1", "destination": "/queue/a"}, b"old")
        )
        self.assertTrue(await self.client.has_frame())

        self.broker.before_receipt = [
            Frame("MESSAGE", {"message-id": "2", "destination": "/queue/a"}, b"late"),
            Frame("MESSAGE", {"message-id": "3", "destination": "/queue/b"}, b"new"),
        ]
        self.assertTrue(await self.client.subscribe("/queue/b"))

        self.assertEqual(self.client.read_frame().body, b"new")
        self.assertIsNone(self.client.read_frame())

    async def test_unsubscribe_discards_queued_frames(self):
        await self.client.connect()
        await self.client.subscribe("/queue/a")
        await self.broker.push(Frame("MESSAGE", {"message-id": "1"}, b"pending"))
        self.assertTrue(await self.client.has_frame())

        self.assertTrue(await self.client.unsubscribe())
        self.assertIsNone(self.client.destination)
        self.assertIsNone(self.client.read_frame())

        # UNSUBSCRIBE carries no receipt, a later request shows it arrived
        self.assertTrue(await self.client.send("/queue/a", b"x"))
        self.assertEqual(self.broker.commands()[-2:], ["UNSUBSCRIBE", "SEND"])

    async def test_ack_and_nack(self):
        await self.client.connect()
        self.broker.echo = True
        await self.client.subscribe("/queue/a")
        await self.client.send("/queue/a", b"one")
        await self.client.send("/queue/a", b"two")

        self.assertTrue(await self.client.has_frame())
        first = self.client.read_frame()
        second = self.client.read_frame()

        self.assertTrue(await self.client.ack(first))
        self.assertTrue(await self.client.nack(second, transaction="tx-1"))

        (ack,) = self.broker.received("ACK")
        self.assertEqual(ack.get("message-id"), first.get("message-id"))
        self.assertEqual(ack.get("subscription"), "0")
        self.assertIsNone(ack.get("transaction"))
        (nack,) = self.broker.received("NACK")
        self.assertEqual(nack.get("message-id"), second.get("message-id"))
        self.assertEqual(nack.get("transaction"), "tx-1")

    async def test_ack_requires_message_id(self):
        await self.client.connect()
        result = await self.client.ack(Frame("MESSAGE", {}, b""))
        self.assertEqual(result.error, ErrorKind.PROTOCOL)
        self.assertFalse(self.broker.received("ACK"))

    async def test_rejected_ack(self):
        await self.client.connect()
        self.broker.reject.add("ACK")
        with self.assertLogs("stompie.client", level=logging.ERROR):
            result = await self.client.ack(Frame("MESSAGE", {"message-id": "9"}))
        self.assertEqual(result.error, ErrorKind.BROKER)

    async def test_ack_without_receipt_returns_false(self):
        await self.client.connect()
        self.broker.silent.add("ACK")
        self.client.receipt_timeout = 0.1

        with self.assertLogs("stompie.receipts", level=logging.WARNING):
            result = await self.client.ack(Frame("MESSAGE", {"message-id": "9"}))
        self.assertFalse(result)
        self.assertEqual(result.error, ErrorKind.CORRELATION)
        self.assertTrue(self.client.connected)

    async def test_transactions(self):
        await self.client.connect()

        self.assertTrue(await self.client.begin("tx-1"))
        self.assertTrue(await self.client.commit("tx-1", receipt=True))
        self.assertTrue(await self.client.abort("tx-2"))
        # Let the fake broker process frames sent without a receipt
        await self.client.send("/queue/a", b"x")

        self.assertEqual(
            self.broker.commands(), ["CONNECT", "BEGIN", "COMMIT", "ABORT", "SEND"]
        )
        begin, commit, abort = self.broker.frames[1:4]
        self.assertEqual(begin.get("transaction"), "tx-1")
        self.assertIsNone(begin.get("receipt"))
        self.assertIsNotNone(commit.get("receipt"))
        self.assertEqual(abort.get("transaction"), "tx-2")

    async def test_disconnect(self):
        await self.client.connect()
        await self.client.disconnect()
        self.assertEqual(self.client.state, ConnectionState.Disconnected)
        self.assertIsNone(self.client.session_id)

        (disconnect,) = self.broker.received("DISCONNECT")
        self.assertIsNotNone(disconnect.get("receipt"))

        # Disconnecting twice is harmless
        await self.client.disconnect()
        self.assertEqual(len(self.broker.received("DISCONNECT")), 1)

    async def test_has_frame_on_quiet_connection(self):
        await self.client.connect()
        loop = asyncio.get_running_loop()
        started = loop.time()
        self.assertFalse(await self.client.has_frame())
        self.assertLess(loop.time() - started, 0.5)

    async def test_set_read_timeout(self):
        self.client.set_read_timeout(1, 500000)
        self.assertEqual(self.client.read_timeout, 1.5)
        self.client.set_read_timeout(2)
        self.assertEqual(self.client.read_timeout, 2)

    async def test_invalid_ack_mode(self):
        with self.assertRaises(ValueError):
            StompClient(self.broker.url, ack_mode="sometimes")

    async def test_serialized_and_compressed_round_trip(self):
        await self.client.connect()
        self.broker.echo = True
        await self.client.subscribe("/queue/a")

        data = {"temperature": 21.5, "tags": ["a", "b"]}
        self.assertTrue(
            await self.client.send(
                "/queue/a", data, serialization="json", compression="zlib"
            )
        )

        self.assertTrue(await self.client.has_frame())
        frame = self.client.read_frame()
        self.assertEqual(frame.get("content-type"), "application/json")
        self.assertEqual(frame.get("compression"), "application/zlib")
        self.assertEqual(self.client.decode_body(frame), data)


class StompClientConfigurationTestCase(unittest.TestCase):
    def test_tls_url_creates_ssl_context(self):
        client = StompClient("ssl://broker.example.com")
        self.assertIsNotNone(client.ssl)
        self.assertEqual(client.address.port, 61614)

    def test_explicit_credentials_override_url(self):
        client = StompClient(
            "tcp://a:b@broker.example.com:61000", username="c", password="d"
        )
        self.assertEqual((client.username, client.password), ("c", "d"))
        self.assertEqual(client.address.port, 61000)
        self.assertIsNone(client.ssl)

    def test_invalid_url(self):
        with self.assertRaises(Exception):
            StompClient("http://broker.example.com")


if __name__ == "__main__":
    unittest.main()
