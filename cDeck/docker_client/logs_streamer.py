import concurrent.futures
import logging
import struct
import threading
from typing import Callable, Dict, Iterator, List, Optional

from cDeck.config import LOG_SESSION_POLICIES
from cDeck.docker_client.info_streamer import InfoStreamer
from cDeck.errors import SessionConflictError
from cDeck.event_bus import EventBus, log_topic
from cDeck.models import LogEvent, LogEventKind, SessionState

# Multiplexed streams prefix every frame with [stream type, 0, 0, 0, payload size (4 bytes, big endian)]
FRAME_HEADER_SIZE = 8


def strip_frame_header(frame: bytes) -> bytes:
    """
    Removes the multiplexing header of a log frame. Frames that aren't longer than a header are returned as-is.
    """
    if len(frame) > FRAME_HEADER_SIZE:
        return frame[FRAME_HEADER_SIZE:]
    return frame


def read_frame(stream) -> bytes:
    """
    Reads one multiplexed frame, header included, from a file-like stream

    :return: The frame bytes, b'' at the end of the stream
    """
    header = stream.read(FRAME_HEADER_SIZE)
    if len(header) < FRAME_HEADER_SIZE:
        return header
    _, length = struct.unpack('>BxxxL', header)
    return header + stream.read(length)


class LogFeed:
    """
    A follow-mode log response of the Docker API. Containers without a TTY send multiplexed frames; TTY containers
    send the raw output, which is read line by line.
    """

    def __init__(self, response, multiplexed: bool = True):
        self.response = response
        self.multiplexed = multiplexed
        self.__closed = False

    def __iter__(self) -> Iterator[bytes]:
        stream = self.response.raw
        if not self.multiplexed:
            yield from iter(stream.readline, b'')
            return

        while True:
            frame = read_frame(stream)
            if not frame:
                return
            yield frame

    def close(self) -> None:
        if not self.__closed:
            self.__closed = True
            self.response.close()


class LogStreamSession(InfoStreamer):
    """
    Follows the logs of a container and publishes each line on the container's log topic
    """

    def __init__(self, container_id: str, feed_opener: Callable[[], LogFeed], event_bus: EventBus):
        super().__init__(container_id)
        self.topic = log_topic(container_id)
        self.feed: Optional[LogFeed] = None
        self.__feed_opener = feed_opener
        self.__event_bus = event_bus

    def __publish(self, kind: LogEventKind, **kwargs) -> None:
        self.__event_bus.publish(self.topic, LogEvent(kind=kind, container_id=self.container_id, **kwargs))

    def open_stream(self) -> Iterator[bytes]:
        self.feed = self.__feed_opener()
        logging.info(f"LogStreamSession - Following logs of `{self.container_id}`")
        return iter(self.feed)

    def close_stream(self) -> None:
        if self.feed is not None:
            self.feed.close()

    def stream_handler(self, streamed_value: bytes) -> None:
        if self.feed is None or self.feed.multiplexed:
            streamed_value = strip_frame_header(streamed_value)
        line = streamed_value.decode('utf-8', errors='replace').rstrip('\r\n')
        self.__publish(LogEventKind.DATA, line=line)

    def on_stream_error(self, error: Exception) -> None:
        self.__publish(LogEventKind.ERROR, message=str(error) or type(error).__name__)

    def on_stream_end(self) -> None:
        self.__publish(LogEventKind.ENDED)

    def on_stop_requested(self) -> None:
        logging.info(f"LogStreamSession - Stop requested for `{self.container_id}`")
        self.__publish(LogEventKind.STOP_REQUESTED)


class LogSessionRegistry:
    """
    Keeps at most one active LogStreamSession per container id. Starting a session for a container that is already
    followed either supersedes the old session (`supersede`) or fails (`reject`).
    """

    def __init__(self, event_bus: EventBus, policy: str = 'supersede', stop_timeout: float = 5.0):
        if policy not in LOG_SESSION_POLICIES:
            raise ValueError(f"Unknown log session policy `{policy}`")
        self.event_bus = event_bus
        self.policy = policy
        self.stop_timeout = stop_timeout
        self.__sessions: Dict[str, LogStreamSession] = {}
        self.__lock = threading.Lock()
        self.__container_locks: Dict[str, threading.Lock] = {}

    def __retire(self, session: LogStreamSession) -> None:
        if session.state is SessionState.STREAMING and self.policy == 'reject':
            raise SessionConflictError(f"Logs of `{session.container_id}` are already being streamed")

        logging.debug(f"LogSessionRegistry - Superseding log session of `{session.container_id}`")
        session.stop_stream()
        try:
            session.wait(self.stop_timeout)
        except concurrent.futures.TimeoutError:
            logging.warning(f"LogSessionRegistry - Old log session of `{session.container_id}` did not end within "
                            f"{self.stop_timeout}s")

    def __container_lock(self, container_id: str) -> threading.Lock:
        with self.__lock:
            return self.__container_locks.setdefault(container_id, threading.Lock())

    def start(self, container_id: str, feed_opener: Callable[[], LogFeed]) -> LogStreamSession:
        """
        Starts following the logs of a container. Returns once the feed is open.

        Starts for the same container are serialized, the registry itself stays available to other containers while
        an old session is retired and the new feed opens.

        :raise SessionConflictError: if the container is already followed and the policy is `reject`
        """
        with self.__container_lock(container_id):
            with self.__lock:
                existing = self.__sessions.get(container_id)
            if existing is not None and existing.is_active():
                self.__retire(existing)

            session = LogStreamSession(container_id, feed_opener, self.event_bus)
            session.start_stream()
            with self.__lock:
                self.__sessions[container_id] = session
            return session

    def stop(self, container_id: str) -> bool:
        """
        Requests the session of the container to stop

        :return: False if there is no active session for the container
        """
        with self.__lock:
            session = self.__sessions.get(container_id)
        if session is None:
            return False
        return session.stop_stream()

    def get(self, container_id: str) -> Optional[LogStreamSession]:
        with self.__lock:
            return self.__sessions.get(container_id)

    def active_container_ids(self) -> List[str]:
        with self.__lock:
            return [key for key, session in self.__sessions.items() if session.is_active()]

    def stop_all(self) -> None:
        for container_id in self.active_container_ids():
            self.stop(container_id)
