import logging
import queue
import threading
from typing import Dict, Iterator, List, Optional

from cDeck.models import LogEvent

DEFAULT_QUEUE_SIZE = 1000


def log_topic(container_id: str) -> str:
    """
    The topic on which log events of a container are published
    """
    return f"logs/{container_id}"


class Subscription:
    """
    A subscriber's bounded inbox on a topic. When the subscriber falls behind, the oldest pending event is dropped to
    make room for the newest one.
    """

    def __init__(self, topic: str, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.topic = topic
        self.dropped = 0
        self.__queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.__lock = threading.Lock()

    def put(self, event: LogEvent) -> None:
        with self.__lock:
            while True:
                try:
                    self.__queue.put_nowait(event)
                    return
                except queue.Full:
                    try:
                        self.__queue.get_nowait()
                        self.dropped += 1
                    except queue.Empty:
                        pass

    def get(self, timeout: Optional[float] = None) -> Optional[LogEvent]:
        """
        Waits for the next event.

        :param timeout: Seconds to wait, None blocks until an event arrives
        :return: The next event or None if the timeout expired
        """
        try:
            return self.__queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[LogEvent]:
        """
        Returns every pending event without blocking
        """
        events = []
        while True:
            try:
                events.append(self.__queue.get_nowait())
            except queue.Empty:
                return events

    def events(self, timeout: Optional[float] = None) -> Iterator[LogEvent]:
        """
        Yields events until a terminal one (error or end of stream) was yielded, or until no event arrives within
        `timeout` seconds.
        """
        while True:
            event = self.get(timeout)
            if event is None:
                return
            yield event
            if event.is_terminal:
                return


class EventBus:
    """Pub/sub channel delivering log events to subscribers of a topic, in publishing order."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self.__subscribers: Dict[str, List[Subscription]] = {}
        self.__lock = threading.Lock()

    def subscribe(self, topic: str) -> Subscription:
        subscription = Subscription(topic, self.queue_size)
        with self.__lock:
            self.__subscribers.setdefault(topic, []).append(subscription)
        logging.debug(f"EventBus - Subscriber added to topic {topic}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self.__lock:
            subscribers = self.__subscribers.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self.__subscribers.pop(subscription.topic, None)
        logging.debug(f"EventBus - Subscriber removed from topic {subscription.topic}")

    def publish(self, topic: str, event: LogEvent) -> None:
        # Held during fan-out: every subscriber of a topic sees the same event order
        with self.__lock:
            for subscription in self.__subscribers.get(topic, []):
                subscription.put(event)

    def subscriber_count(self, topic: str) -> int:
        with self.__lock:
            return len(self.__subscribers.get(topic, []))
