import unittest

from cDeck.event_bus import EventBus, log_topic
from cDeck.models import LogEvent, LogEventKind


def data_event(line: str, container_id: str = "abc") -> LogEvent:
    return LogEvent(kind=LogEventKind.DATA, container_id=container_id, line=line)


class TestEventBus(unittest.TestCase):

    def setUp(self):
        self.bus = EventBus(queue_size=10)

    def test_log_topic_is_stable(self):
        self.assertEqual(log_topic("abc"), "logs/abc")
        self.assertEqual(log_topic("abc"), log_topic("abc"))
        self.assertNotEqual(log_topic("abc"), log_topic("def"))

    def test_events_are_delivered_in_order(self):
        subscription = self.bus.subscribe("logs/abc")

        for line in ("one", "two", "three"):
            self.bus.publish("logs/abc", data_event(line))

        self.assertEqual([event.line for event in subscription.drain()], ["one", "two", "three"])

    def test_every_subscriber_receives_the_event(self):
        first = self.bus.subscribe("logs/abc")
        second = self.bus.subscribe("logs/abc")
        other = self.bus.subscribe("logs/def")

        self.bus.publish("logs/abc", data_event("hello"))

        self.assertEqual(len(first.drain()), 1)
        self.assertEqual(len(second.drain()), 1)
        self.assertEqual(other.drain(), [])
        self.assertEqual(self.bus.subscriber_count("logs/abc"), 2)

    def test_unsubscribe(self):
        subscription = self.bus.subscribe("logs/abc")
        self.bus.unsubscribe(subscription)

        self.bus.publish("logs/abc", data_event("hello"))

        self.assertEqual(subscription.drain(), [])
        self.assertEqual(self.bus.subscriber_count("logs/abc"), 0)

    def test_slow_subscriber_drops_oldest_events(self):
        bus = EventBus(queue_size=2)
        subscription = bus.subscribe("logs/abc")

        for line in ("one", "two", "three", "four"):
            bus.publish("logs/abc", data_event(line))

        self.assertEqual([event.line for event in subscription.drain()], ["three", "four"])
        self.assertEqual(subscription.dropped, 2)

    def test_events_iterator_stops_at_terminal_event(self):
        subscription = self.bus.subscribe("logs/abc")
        self.bus.publish("logs/abc", data_event("line"))
        self.bus.publish("logs/abc", LogEvent(kind=LogEventKind.ERROR, container_id="abc", message="boom"))
        self.bus.publish("logs/abc", data_event("late"))

        kinds = [event.kind for event in subscription.events(timeout=1)]

        self.assertEqual(kinds, [LogEventKind.DATA, LogEventKind.ERROR])
        self.assertEqual(subscription.drain()[0].line, "late")

    def test_get_times_out(self):
        subscription = self.bus.subscribe("logs/abc")

        self.assertIsNone(subscription.get(timeout=0.01))
        self.assertEqual(list(subscription.events(timeout=0.01)), [])


if __name__ == "__main__":
    unittest.main()
