"""
Unit tests for services/live_chat.py

Covers the room lifecycle, the capped message log, presence expiry,
publish ordering and graceful degradation when Redis fails.
"""

import itertools
import json
import unittest
from unittest.mock import patch

import redis

from backend import RedisBackend
from schemas.chat import MessageType
from services.live_chat import LiveChatService, short_wallet
from tests.fake_redis import FakeClock, FakeRedis


class LiveChatTestCase(unittest.TestCase):
    """Service wired to an in-memory Redis with a manual clock."""

    def setUp(self):
        self.clock = FakeClock()
        self.redis = FakeRedis(self.clock)
        self.backend = RedisBackend(self.redis)
        self.service = LiveChatService(self.backend)


class TestRoomRegistry(LiveChatTestCase):

    def test_create_room_is_active(self):
        self.assertTrue(self.service.create_chat_room("stream42", "room42"))
        self.assertTrue(self.service.is_room_active("room42"))

        room = json.loads(self.redis.get("chat:room:room42"))
        self.assertEqual(room["streamId"], "stream42")
        self.assertEqual(room["participantCount"], 0)
        self.assertEqual(self.redis.ttl("chat:room:room42"), 24 * 60 * 60)

    def test_create_twice_is_idempotent(self):
        self.service.create_chat_room("s", "r")
        self.service.add_message("r", "0xA", "0xA", "hi")
        self.assertTrue(self.service.create_chat_room("s", "r"))

        self.assertTrue(self.service.is_room_active("r"))
        messages = self.service.get_messages("r", 10)
        self.assertEqual([m.message for m in messages], ["hi"])

    def test_unknown_room_is_not_active(self):
        self.assertFalse(self.service.is_room_active("nope"))

    def test_end_room_keeps_history(self):
        self.service.create_chat_room("s", "r")
        self.service.add_message("r", "0xA", "0xA", "one")
        self.service.add_message("r", "0xB", "0xB", "two")
        before = self.service.get_messages("r", 10)

        self.assertTrue(self.service.end_chat_room("r", archive=False))

        self.assertFalse(self.service.is_room_active("r"))
        self.assertEqual(self.service.get_messages("r", 10), before)
        room = json.loads(self.redis.get("chat:room:r"))
        self.assertEqual(room["streamId"], "s")

    def test_end_room_refreshes_ttl_and_keeps_fields(self):
        self.service.create_chat_room("s", "r")
        created = json.loads(self.redis.get("chat:room:r"))
        self.clock.advance(23 * 60 * 60)

        self.assertTrue(self.service.end_chat_room("r"))

        self.assertEqual(self.redis.ttl("chat:room:r"), 24 * 60 * 60)
        ended = json.loads(self.redis.get("chat:room:r"))
        self.assertEqual(ended["createdAt"], created["createdAt"])
        self.assertEqual(ended["streamId"], "s")
        self.assertEqual(ended["roomId"], "r")
        self.assertFalse(ended["isActive"])

        self.clock.advance(2 * 60 * 60)
        self.assertIsNotNone(self.redis.get("chat:room:r"))
        self.assertFalse(self.service.is_room_active("r"))

    def test_end_room_with_archive_posts_farewell(self):
        self.service.create_chat_room("s", "r")
        self.assertTrue(self.service.end_chat_room("r", archive=True))

        last = self.service.get_messages("r", 10)[-1]
        self.assertEqual(last.type, MessageType.SYSTEM)
        self.assertEqual(last.wallet_address, "system")
        self.assertIn("Stream ended", last.message)

    def test_recreate_after_end_reactivates(self):
        self.service.create_chat_room("s", "r")
        self.service.end_chat_room("r")
        self.service.create_chat_room("s", "r")
        self.assertTrue(self.service.is_room_active("r"))

    def test_end_missing_room_succeeds(self):
        self.assertTrue(self.service.end_chat_room("ghost"))
        self.assertIsNone(self.redis.get("chat:room:ghost"))

    def test_room_expires_after_ttl(self):
        self.service.create_chat_room("s", "r")
        self.clock.advance(24 * 60 * 60 + 1)
        self.assertFalse(self.service.is_room_active("r"))

    def test_message_refreshes_room_ttl(self):
        self.service.create_chat_room("s", "r")
        self.clock.advance(23 * 60 * 60)
        self.service.add_message("r", "0xA", "0xA", "still live")
        self.clock.advance(2 * 60 * 60)
        self.assertTrue(self.service.is_room_active("r"))

    def test_corrupt_room_record_reads_inactive(self):
        self.redis.set("chat:room:r", "{broken")
        self.assertFalse(self.service.is_room_active("r"))
        self.assertFalse(self.service.get_room_stats("r").is_active)


class TestMessageLog(LiveChatTestCase):

    def test_message_fields_are_generated(self):
        message = self.service.add_message("r", "0xA", "0xA...A2", "hello", MessageType.MODERATOR)

        self.assertTrue(message.id.startswith("msg_"))
        self.assertEqual(message.room_id, "r")
        self.assertEqual(message.type, MessageType.MODERATOR)
        self.assertGreater(message.timestamp, 0)
        stored = json.loads(self.redis.lrange("chat:messages:r", 0, 0)[0])
        self.assertEqual(stored["walletAddress"], "0xA")
        self.assertEqual(stored["type"], "moderator")

    def test_log_is_capped_at_1000(self):
        for i in range(1005):
            self.service.add_message("r", "0xA", "0xA", f"m{i}")

        messages = self.service.get_messages("r", 1000)
        self.assertEqual(len(messages), 1000)
        self.assertEqual(messages[0].message, "m5")
        self.assertEqual(messages[-1].message, "m1004")
        self.assertEqual(self.redis.llen("chat:messages:r"), 1000)
        self.assertNotIn("m4", [m.message for m in self.service.get_messages("r", 2000)])

    def test_messages_are_chronological(self):
        with patch("services.live_chat.now_ms", side_effect=itertools.count(1000, 7)):
            for i in range(20):
                self.service.add_message("r", "0xA", "0xA", f"m{i}")

        messages = self.service.get_messages("r", 10)
        timestamps = [m.timestamp for m in messages]
        self.assertEqual(timestamps, sorted(timestamps))
        self.assertEqual([m.message for m in messages], [f"m{i}" for i in range(10, 20)])

    def test_limit_bounds_result(self):
        for i in range(5):
            self.service.add_message("r", "0xA", "0xA", f"m{i}")
        self.assertEqual([m.message for m in self.service.get_messages("r", 2)], ["m3", "m4"])
        self.assertEqual(self.service.get_messages("r", 0), [])

    def test_malformed_entries_are_skipped(self):
        self.service.add_message("r", "0xA", "0xA", "first")
        self.redis.lpush("chat:messages:r", "not json at all")
        self.redis.lpush("chat:messages:r", json.dumps({"id": "x"}))
        self.service.add_message("r", "0xA", "0xA", "second")

        self.assertEqual([m.message for m in self.service.get_messages("r", 10)], ["first", "second"])

    def test_send_adds_participant(self):
        self.service.add_message("r", "0xA", "0xA", "hi")
        self.service.add_message("r", "0xA", "0xA", "again")
        self.assertEqual(self.service.get_room_stats("r").participant_count, 1)

    def test_message_log_ttl_refreshed(self):
        self.service.add_message("r", "0xA", "0xA", "hi")
        self.clock.advance(60)
        self.service.add_message("r", "0xA", "0xA", "hi")
        self.assertEqual(self.redis.ttl("chat:messages:r"), 24 * 60 * 60)
        self.assertEqual(self.redis.ttl("chat:participants:r"), 24 * 60 * 60)

    def test_missing_room_reads_empty(self):
        self.assertEqual(self.service.get_messages("ghost", 10), [])


class TestEventBroadcaster(LiveChatTestCase):

    def test_message_is_published_on_room_channel(self):
        message = self.service.add_message("r", "0xA", "0xA", "hi")

        self.assertEqual(len(self.redis.published), 1)
        channel, payload = self.redis.published[0]
        self.assertEqual(channel, "chat:r")
        event = json.loads(payload)
        self.assertEqual(event["type"], "message")
        self.assertEqual(event["data"]["id"], message.id)
        self.assertEqual(event["data"]["roomId"], "r")

    def test_failed_persist_does_not_publish(self):
        with patch.object(self.redis, "lpush", side_effect=redis.ConnectionError("down")):
            self.assertIsNone(self.service.add_message("r", "0xA", "0xA", "hi"))
        self.assertEqual(self.redis.published, [])

    def test_publish_failure_keeps_message(self):
        with patch.object(self.redis, "publish", side_effect=redis.ConnectionError("down")):
            message = self.service.add_message("r", "0xA", "0xA", "hi")

        self.assertIsNotNone(message)
        self.assertEqual([m.id for m in self.service.get_messages("r", 10)], [message.id])


class TestPresence(LiveChatTestCase):

    def test_online_uses_set_semantics(self):
        self.service.set_user_online("r", "0xA")
        self.assertEqual(self.service.get_room_stats("r").online_count, 1)
        self.service.set_user_online("r", "0xA")
        self.assertEqual(self.service.get_room_stats("r").online_count, 1)
        self.service.set_user_online("r", "0xB")
        self.assertEqual(self.service.get_room_stats("r").online_count, 2)

    def test_offline_removes_only_that_user(self):
        self.service.set_user_online("r", "0xA")
        self.service.set_user_online("r", "0xB")
        self.service.set_user_offline("r", "0xA")
        self.assertEqual(self.service.get_room_stats("r").online_count, 1)

        self.service.set_user_offline("r", "0xZ")
        self.assertEqual(self.service.get_room_stats("r").online_count, 1)

    def test_offline_keeps_participants(self):
        self.service.add_message("r", "0xA", "0xA", "hi")
        self.service.set_user_online("r", "0xA")
        self.service.set_user_offline("r", "0xA")
        stats = self.service.get_room_stats("r")
        self.assertEqual(stats.online_count, 0)
        self.assertEqual(stats.participant_count, 1)

    def test_online_set_expires_as_a_whole(self):
        self.service.add_message("r", "0xA", "0xA", "hi")
        self.service.set_user_online("r", "0xA")
        self.clock.advance(200)
        self.service.set_user_online("r", "0xB")
        self.clock.advance(200)
        # 0xB refreshed the whole set, so 0xA is still counted
        self.assertEqual(self.service.get_room_stats("r").online_count, 2)

        self.clock.advance(5 * 60 + 1)
        stats = self.service.get_room_stats("r")
        self.assertEqual(stats.online_count, 0)
        self.assertEqual(stats.participant_count, 1)


class TestRoomStats(LiveChatTestCase):

    def test_welcome_scenario(self):
        self.service.create_chat_room("stream42", "room42")
        self.service.add_message("room42", "system", "System", "Welcome", MessageType.SYSTEM)

        messages = self.service.get_messages("room42", 10)
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0].type, MessageType.SYSTEM)
        self.assertEqual(messages[0].message, "Welcome")

        stats = self.service.get_room_stats("room42")
        self.assertEqual(stats.message_count, 1)
        self.assertEqual(stats.participant_count, 1)
        self.assertEqual(stats.online_count, 0)
        self.assertTrue(stats.is_active)

    def test_two_users_scenario(self):
        self.service.set_user_online("r", "0xA")
        self.service.add_message("r", "0xA", "0xA1...A2", "hi", MessageType.NORMAL)
        self.service.set_user_online("r", "0xB")
        self.service.add_message("r", "0xB", "0xB1...B2", "hello", MessageType.NORMAL)

        stats = self.service.get_room_stats("r")
        self.assertEqual(stats.participant_count, 2)
        self.assertEqual(stats.message_count, 2)
        self.assertEqual(stats.online_count, 2)

    def test_missing_room_stats_are_zero(self):
        stats = self.service.get_room_stats("ghost")
        self.assertEqual(stats.model_dump(),
                         {"participant_count": 0, "message_count": 0, "is_active": False, "online_count": 0})


class TestStoreFailures(LiveChatTestCase):

    def test_create_room_failure_returns_false(self):
        with patch.object(self.redis, "set", side_effect=redis.ConnectionError("down")):
            self.assertFalse(self.service.create_chat_room("s", "r"))

    def test_end_room_failure_returns_false(self):
        self.service.create_chat_room("s", "r")
        with patch.object(self.redis, "get", side_effect=redis.TimeoutError("slow")):
            self.assertFalse(self.service.end_chat_room("r"))

    def test_reads_degrade(self):
        with patch.object(self.redis, "lrange", side_effect=redis.ConnectionError("down")):
            self.assertEqual(self.service.get_messages("r", 10), [])
        with patch.object(self.redis, "get", side_effect=redis.ConnectionError("down")):
            self.assertFalse(self.service.is_room_active("r"))
        with patch.object(self.redis, "scard", side_effect=redis.ConnectionError("down")):
            self.assertEqual(self.service.get_room_stats("r").online_count, 0)

    def test_presence_failures_are_swallowed(self):
        with patch.object(self.redis, "sadd", side_effect=redis.ConnectionError("down")):
            self.service.set_user_online("r", "0xA")
        with patch.object(self.redis, "srem", side_effect=redis.ConnectionError("down")):
            self.service.set_user_offline("r", "0xA")

    def test_health_reports_ping(self):
        self.assertTrue(self.service.health())
        with patch.object(self.redis, "ping", side_effect=redis.ConnectionError("down")):
            self.assertFalse(self.service.health())


class TestChatFlows(LiveChatTestCase):

    def test_create_with_welcome(self):
        self.assertTrue(self.service.create_chat_room_with_welcome("s", "r"))
        messages = self.service.get_messages("r", 10)
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0].username, "System")

    def test_join_marks_wallet_online(self):
        self.service.create_chat_room_with_welcome("s", "r")
        messages, stats = self.service.join_chat_room("r", "0xA")
        self.assertEqual(len(messages), 1)
        self.assertEqual(stats.online_count, 0)
        self.assertEqual(self.service.get_room_stats("r").online_count, 1)

    def test_join_without_wallet(self):
        self.service.join_chat_room("r")
        self.assertEqual(self.service.get_room_stats("r").online_count, 0)

    def test_send_message_derives_username(self):
        result = self.service.send_message("r", "7xKXabcdWq9z", "  gm  ")
        self.assertTrue(result.ok)
        self.assertEqual(result.message.username, "7xKX...Wq9z")
        self.assertEqual(result.message.message, "gm")
        self.assertEqual(self.service.get_room_stats("r").online_count, 1)

    def test_send_message_rejects_blank(self):
        self.assertEqual(self.service.send_message("r", "0xA", "   ").error, "invalid")
        self.assertEqual(self.service.send_message("r", "", "hi").error, "invalid")
        self.assertEqual(self.service.send_message("r", "0xA", "hi", "shout").error, "invalid")

    def test_send_message_store_failure(self):
        with patch.object(self.redis, "lpush", side_effect=redis.ConnectionError("down")):
            result = self.service.send_message("r", "0xA", "hi")
        self.assertEqual(result.error, "failed")
        self.assertEqual(self.service.get_room_stats("r").online_count, 0)

    def test_short_wallet(self):
        self.assertEqual(short_wallet("0xA1bcdefA2"), "0xA1...efA2")


if __name__ == '__main__':
    unittest.main()
