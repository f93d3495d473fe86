import fcntl
import logging
import os
import sys
import termios
import time
from collections import deque
from threading import Thread
from typing import Deque, List, Optional

from cDeck.config import Config
from cDeck.docker_client import DockerDaemonClient
from cDeck.errors import CDeckError
from cDeck.event_bus import Subscription, log_topic
from cDeck.models import ContainerInfo, ContainerStats, DockerSystemInfo, LogEvent, VolumeInfo
from cDeck.outputs.screen import cDeckRichScreen

LOG_LINES_KEPT = 200
RESOURCE_VIEWS = ["volumes", "images", "networks"]


class cDeckStandalone:
    DEFAULT_REFRESH_TIME = 0.5
    DETAILS_REFRESH_TIME = 2

    def __init__(self, config: Config = None):
        self.config = config or Config.load_env_from_file()
        self.screen = cDeckRichScreen(self.config)
        self.client = DockerDaemonClient(self.config)

        self.row_index = 0
        self._changed = True
        self.last_stats_update_timestamp = 0

        self.containers: List[ContainerInfo] = []
        self.selected_stats: Optional[ContainerStats] = None
        self.volumes: List[VolumeInfo] = []
        self.resource_view = RESOURCE_VIEWS[0]
        self.system_info: Optional[DockerSystemInfo] = None

        # Log panel of the followed container
        self.followed_container_id: Optional[str] = None
        self.log_subscription: Optional[Subscription] = None
        self.log_events: Deque[LogEvent] = deque(maxlen=LOG_LINES_KEPT)

        self.is_running = True
        self.key_press_listener_thread = Thread(target=self.key_strokes_listener, args=(), daemon=True)
        self.details_refresh_thread = Thread(target=self.details_refresher, args=(), daemon=True)

    def run(self):
        if not self.client.connect():
            print(f"Could not connect to the docker daemon at {self.config.docker_socket_url}")
            return

        self.update_containers()
        self.screen.init_screen()
        self.key_press_listener_thread.start()
        self.details_refresh_thread.start()

        while self.is_running:
            try:
                if self._changed or self.is_after_refresh_window():
                    if self.is_after_refresh_window():
                        self.update_containers()
                    self.update_logs()
                    self.screen.render()
                    self._changed = False
                time.sleep(0.05)
            except KeyboardInterrupt:
                self.shutdown()
            except Exception as e:
                self.shutdown()
                raise e

    def is_after_refresh_window(self):
        return time.time() - self.last_stats_update_timestamp > self.DEFAULT_REFRESH_TIME

    def update_containers(self):
        row_key = self.get_row_key()
        try:
            self.containers = self.client.list_containers()
        except CDeckError as e:
            self.set_status_message(str(e))

        # Update row index to keep the same container selected
        self.row_index = 0
        for i, info in enumerate(self.containers):
            if info.id == row_key:
                self.row_index = i
                break

        self.screen.update_container_table(self.containers, self.row_index)
        self.last_stats_update_timestamp = time.time()

    def details_refresher(self):
        """
        Refreshes the stats of the selected container, the resource table and the system summary, they take a while to
        read
        """
        while self.is_running:
            try:
                key = self.get_row_key()
                self.selected_stats = self.client.get_container_stats(key) if key else None
                self.screen.update_stats_panel(self.selected_stats)

                self.refresh_resources()

                self.system_info = self.client.get_system_info()
                self.screen.update_system_info(self.system_info)
            except CDeckError as e:
                logging.info(f"cDeckStandalone - Failed to refresh details ({e})")
                self.screen.update_stats_panel(None)
                self.set_status_message(str(e))
            self._changed = True
            time.sleep(self.DETAILS_REFRESH_TIME)

    def refresh_resources(self):
        if self.resource_view == "images":
            self.screen.update_image_table(self.client.list_images())
        elif self.resource_view == "networks":
            self.screen.update_network_table(self.client.list_networks())
        else:
            self.volumes = self.client.list_volumes()
            self.screen.update_volume_table(self.volumes)

    def cycle_resource_view(self):
        self.resource_view = RESOURCE_VIEWS[(RESOURCE_VIEWS.index(self.resource_view) + 1) % len(RESOURCE_VIEWS)]
        try:
            self.refresh_resources()
        except CDeckError as e:
            self.set_status_message(str(e))

    def update_logs(self):
        # Both fields are swapped by the key listener thread
        subscription = self.log_subscription
        followed = self.followed_container_id
        if subscription is None or followed is None:
            return
        events = subscription.drain()
        if events:
            self.log_events.extend(events)
            self._changed = True
        self.screen.update_logs_panel(f"LOGS - {followed[:12]}", self.log_events)

    def toggle_logs(self):
        key = self.get_row_key()
        following = self.followed_container_id

        if following:
            self.client.stop_logs(following)
            self.client.event_bus.unsubscribe(self.log_subscription)
            self.log_subscription = None
            self.followed_container_id = None
            self.log_events.clear()
            self.screen.update_logs_panel("LOGS", [])

        if not key or key == following:
            return

        self.followed_container_id = key
        # Subscribe first so that no line of the backlog is missed
        self.log_subscription = self.client.event_bus.subscribe(log_topic(key))
        try:
            self.client.start_logs(key)
        except CDeckError as e:
            self.client.event_bus.unsubscribe(self.log_subscription)
            self.log_subscription = None
            self.followed_container_id = None
            self.set_status_message(str(e))

    def get_row_key(self):
        return self.containers[self.row_index].id if self.containers else ''

    def key_strokes_listener(self):
        fd = sys.stdin.fileno()
        oldterm = termios.tcgetattr(fd)
        newattr = termios.tcgetattr(fd)
        newattr[3] = newattr[3] & ~termios.ICANON & ~termios.ECHO
        termios.tcsetattr(fd, termios.TCSANOW, newattr)

        oldflags = fcntl.fcntl(fd, fcntl.F_GETFL)
        fcntl.fcntl(fd, fcntl.F_SETFL, oldflags | os.O_NONBLOCK)

        try:
            while self.is_running:
                try:
                    char = sys.stdin.read(1)
                    if not char:
                        time.sleep(0.02)
                        continue
                    self.handle_key_stroke(char)
                except IOError:
                    pass

        finally:
            termios.tcsetattr(fd, termios.TCSAFLUSH, oldterm)
            fcntl.fcntl(fd, fcntl.F_SETFL, oldflags)

    def handle_key_stroke(self, key_pressed: str):
        self.set_status_message(None)
        if key_pressed == "w":
            self._update_row_index(self.row_index - 1)
        elif key_pressed == "s":
            self._update_row_index(self.row_index + 1)
        elif key_pressed == "l":
            self.toggle_logs()
        elif key_pressed == "v":
            self.cycle_resource_view()
        elif key_pressed == "q":
            self.shutdown()
        elif key_pressed == '1':
            self.container_action('start')
        elif key_pressed == '2':
            self.container_action('stop')
        elif key_pressed == '3':
            self.container_action('restart')
        elif key_pressed == '4':
            self.container_action('kill')
        elif key_pressed == '5':
            self.container_action('pause')
        elif key_pressed == '6':
            self.container_action('unpause')
        self._changed = True

    def set_status_message(self, message: Optional[str]):
        self.screen.status_message = message
        self._changed = True

    def _update_row_index(self, index: int = None):
        if index is None:
            index = self.row_index
        self.row_index = index % max(len(self.containers), 1)
        self.screen.update_container_table(self.containers, self.row_index)
        self._changed = True

    def container_action(self, action_name: str):
        key = self.get_row_key()
        if not key:
            return
        try:
            action = getattr(self.client, action_name)
            action(key)
        except (CDeckError, RuntimeError) as e:
            self.set_status_message(str(e))

    def shutdown(self):
        if self.is_running:
            self.is_running = False
            self.screen.stop()
            self.client.disconnect()


def main():
    config = Config.load_env_from_file()
    # The screen owns the terminal, log records go to a file
    logging.basicConfig(filename=config.log_file, level=config.log_level,
                        format="%(asctime)s %(levelname)s %(message)s")
    cDeckStandalone(config).run()


if __name__ == "__main__":
    main()
