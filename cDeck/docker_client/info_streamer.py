import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Thread
from typing import Iterator, Optional

from cDeck.errors import SessionConflictError
from cDeck.models import SessionState

_END_OF_STREAM = object()


def run_event_loop(event_loop: asyncio.AbstractEventLoop) -> None:
    """
    A utility method used to run the event loop for streaming in a background thread.
    """
    asyncio.set_event_loop(event_loop)
    event_loop.run_forever()


class InfoStreamer(ABC):
    """
    Reads a blocking stream of a container on the shared background event loop. Each blocking read happens on a
    private single thread executor, so a slow stream never holds up the streams of other containers.

    A streamer is single use: IDLE -> STREAMING -> (STOPPING ->) ENDED or FAILED.
    """
    __event_loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
    __event_loop_thread: Thread = Thread(target=run_event_loop, args=(__event_loop,), name='cDeck-streaming')
    __event_loop_thread.daemon = True
    __event_loop_lock = threading.Lock()

    def __init__(self, container_id: str):
        self.container_id: str = container_id
        self.state: SessionState = SessionState.IDLE

        # To stream and stop when not required
        self.__stream_task: Optional[Future] = None
        self.__stream_iterator: Optional[Iterator] = None
        self.__stop_requested = threading.Event()
        # Guards state transitions and the handler calls, nothing is handled after a stop was announced
        self.__state_lock = threading.RLock()

        self.__start_event_loop_thread()

    @classmethod
    def __start_event_loop_thread(cls) -> None:
        """
        Starts the background event loop thread if its not started yet. Returns if its already started
        """
        with cls.__event_loop_lock:
            if not cls.__event_loop_thread.is_alive():
                cls.__event_loop_thread.start()

    @abstractmethod
    def open_stream(self) -> Iterator:
        """
        Opens the underlying stream and returns the blocking iterator to read from. Must be overridden.
        """
        ...

    @abstractmethod
    def close_stream(self) -> None:
        """
        Releases the underlying stream. Called from any thread, it must unblock a pending read. Must be overridden.
        """
        ...

    @abstractmethod
    def stream_handler(self, streamed_value) -> None:
        """
        The handler for each value read from the stream. Must be overridden.
        """
        ...

    def on_stream_end(self) -> None:
        pass

    def on_stream_error(self, error: Exception) -> None:
        pass

    def on_stop_requested(self) -> None:
        pass

    def is_active(self) -> bool:
        return self.state in (SessionState.STREAMING, SessionState.STOPPING)

    def __finish(self, state: SessionState, error: Optional[Exception] = None) -> None:
        with self.__state_lock:
            self.state = state
            if error is not None:
                self.on_stream_error(error)
            else:
                self.on_stream_end()

    async def __stream_loop(self) -> None:
        event_loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(1, thread_name_prefix=f"{self.__class__.__name__}-{self.container_id[:12]}")

        try:
            while not self.__stop_requested.is_set():
                try:
                    value = await event_loop.run_in_executor(executor, next, self.__stream_iterator, _END_OF_STREAM)
                except Exception as e:
                    if self.__stop_requested.is_set():
                        # Closing the stream to stop it interrupts the pending read
                        break
                    logging.error(f"{self.__class__.__name__} - Exiting. {type(e).__name__} while streaming "
                                  f"`{self.container_id}`: ({e})")
                    self.__finish(SessionState.FAILED, e)
                    return

                if value is _END_OF_STREAM:
                    break

                with self.__state_lock:
                    if self.__stop_requested.is_set():
                        break
                    self.stream_handler(value)

            logging.info(f"{self.__class__.__name__} - Stream of `{self.container_id}` ended")
            self.__finish(SessionState.ENDED)
        finally:
            executor.shutdown(wait=False)
            self.close_stream()

    def start_stream(self) -> None:
        """
        Opens the stream on the calling thread and schedules the read loop on the background event loop. Returns
        without waiting for any streamed value.

        :raise SessionConflictError: if this streamer was already started
        """
        if self.state is not SessionState.IDLE:
            raise SessionConflictError("Already streaming!")

        self.__stream_iterator = iter(self.open_stream())
        self.state = SessionState.STREAMING
        self.__stream_task = asyncio.run_coroutine_threadsafe(self.__stream_loop(), self.__event_loop)

    def stop_stream(self) -> bool:
        """
        Announces the stop, then closes the stream so that the read loop ends.

        :return: False if the stream had already ended, failed or was being stopped
        :raise RuntimeError: if streaming was never started
        """
        if not isinstance(self.__stream_task, Future):
            raise RuntimeError("Streaming was never started!")

        with self.__state_lock:
            if self.state is not SessionState.STREAMING:
                return False
            self.state = SessionState.STOPPING
            self.__stop_requested.set()
            self.on_stop_requested()

        self.close_stream()
        return True

    def wait(self, timeout: Optional[float] = None) -> SessionState:
        """
        Blocks until the read loop finished.

        :param timeout: Seconds to wait, None waits forever
        :return: The final state
        :raise concurrent.futures.TimeoutError: if the loop is still running after `timeout`
        """
        if not isinstance(self.__stream_task, Future):
            raise RuntimeError("Streaming was never started!")
        self.__stream_task.result(timeout)
        return self.state
