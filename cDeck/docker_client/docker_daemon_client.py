import logging
from contextlib import contextmanager
from datetime import datetime
from threading import Lock, Thread
from typing import Dict, List, Optional

import docker.errors
import requests.exceptions
from docker import DockerClient
from docker.models.containers import Container

from cDeck.config import Config
from cDeck.docker_client.disk_usage import VolumeSizeResolver
from cDeck.docker_client.logs_streamer import LogFeed, LogSessionRegistry, LogStreamSession
from cDeck.docker_client.stats_engine import compute_container_stats, snapshots_from_stats
from cDeck.errors import ContainerLookupError, DaemonConnectionError
from cDeck.event_bus import EventBus
from cDeck.models import (ContainerInfo, ContainerStats, DockerSystemInfo, ImageInfo, IpamConfig, NetworkContainer,
                          NetworkInfo, PortInfo, VolumeInfo)

SHA_256_HASH_PICK = 12


@contextmanager
def translated_docker_errors(action: str):
    """
    Converts docker SDK failures raised in the block into CDeckError subclasses with a readable message
    """
    try:
        yield
    except docker.errors.NotFound as e:
        raise ContainerLookupError(f"Failed to {action}: {e.explanation or e}") from e
    except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
        raise DaemonConnectionError(f"Failed to {action} ({e})") from e


def placeholder_name(container_id: str) -> str:
    return f"container_{container_id[:SHA_256_HASH_PICK]}"


def parse_created(value) -> Optional[datetime]:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value[:19])
    return None


class DockerDaemonClient:
    """
    This class is a wrapper around DockerClient and provides container stats, volume sizes and log streaming in a
    simpler format for the UI.
    """

    CONTAINER_ACTIONS = ['start', 'stop', 'restart', 'kill', 'pause', 'unpause', 'remove']

    def __init__(self, config: Config, event_bus: EventBus = None):
        self.__config = config
        self.__client: Optional[DockerClient] = None

        self.event_bus = event_bus or EventBus(config.log_queue_size)
        self.log_sessions = LogSessionRegistry(self.event_bus, config.log_session_policy, config.log_stop_timeout)
        self.volume_size_resolver = VolumeSizeResolver(config.docker_cli_path)

        # For cleaning up executing container actions
        self.__container_action_map: Dict[str, Thread] = {}
        self.__container_action_lock = Lock()

    def __get_client(self) -> DockerClient:
        if not self.__client:
            raise DaemonConnectionError("Client not Initialized!")
        return self.__client

    def __action_executor(self, key: str, action, args, kwargs):
        try:
            action(*args, **kwargs)
        except Exception as e:
            logging.error(f"DockerDaemonClient - Exception during action for {key} : ({e})")
        finally:
            with self.__container_action_lock:
                self.__container_action_map.pop(key, None)

    def __container_action(self, container_id: str, action_name: str, *args, **kwargs):
        if action_name not in self.CONTAINER_ACTIONS:
            raise ValueError(f"Unknown container action `{action_name}`")

        with translated_docker_errors(f"find container `{container_id}`"):
            container = self.__get_client().containers.get(container_id)

        key = f"{container_id}/{action_name}"
        with self.__container_action_lock:
            if key in self.__container_action_map:
                raise RuntimeError(f"Another `{action_name}` is in progress for `{container_id}`")

            action = getattr(container, action_name)
            self.__container_action_map[key] = Thread(target=self.__action_executor, args=(key, action, args, kwargs))
            self.__container_action_map[key].daemon = True
            self.__container_action_map[key].start()

    def connect(self) -> bool:
        """
        Instantiates the DockerClient with the given config options.

        :return: A bool indicating if the DockerClient connection succeeded or not
        :raises: DaemonConnectionError - If the client was already initialized successfully.
        """
        if self.__client:
            raise DaemonConnectionError("DockerDaemonClient - Already connected to a daemon")

        try:
            self.__client = DockerClient(base_url=self.__config.docker_socket_url)
            self.__client.ping()
        except Exception as e:
            self.__client = None
            logging.error(f"DockerDaemonClient - Failed establish connection to docker daemon ({e})")
            return False

        logging.info(f"DockerDaemonClient - Connected to {self.__config.docker_socket_url}")
        return True

    def disconnect(self):
        self.log_sessions.stop_all()
        if self.__client:
            self.__client.close()
            self.__client = None

    def list_containers(self, all: bool = None, filters: Dict = None) -> List[ContainerInfo]:
        """
        Returns the containers known to the daemon

        :param all: Include stopped containers, defaults to `DOCKER_API_LIST_ALL_CONTAINERS`
        :param filters: Docker API filters, e.g. `{'id': container_id}`
        """
        if all is None:
            all = self.__config.client_list_all_containers

        # Sparse listing skips the per-container inspect calls, attrs are the list response entries
        with translated_docker_errors("list containers"):
            containers = self.__get_client().containers.list(all=all, filters=filters or {}, sparse=True) or []

        return [self.__container_info(container) for container in containers]

    @staticmethod
    def __container_info(container: Container) -> ContainerInfo:
        attrs = container.attrs
        ports = [
            PortInfo(private_port=port.get('PrivatePort', 0), public_port=port.get('PublicPort'),
                     type=port.get('Type', 'tcp'))
            for port in attrs.get('Ports') or []
        ]
        names = attrs.get('Names') or []

        return ContainerInfo(
            id=container.id,
            name=names[0].lstrip('/') if names else '',
            image=attrs.get('Image') or '',
            status=attrs.get('Status') or '',
            state=attrs.get('State') or '',
            created=parse_created(attrs.get('Created')),
            ports=ports,
        )

    def resolve_container_name(self, container_id: str) -> str:
        """
        Looks the container's display name up by id, falling back to a name built from the id
        """
        containers = self.list_containers(all=True, filters={'id': container_id})
        if containers and containers[0].name:
            return containers[0].name
        logging.debug(f"DockerDaemonClient - No name found for `{container_id}`")
        return placeholder_name(container_id)

    def get_container_stats(self, container_id: str) -> ContainerStats:
        """
        Reads the current stats of a container. The single non-streaming stats response of the daemon carries the
        previous CPU reading next to the current one.

        :raises ContainerLookupError: if the container is unknown or the daemon returned no stats
        :raises DaemonConnectionError: if the daemon can't be reached
        """
        name = self.resolve_container_name(container_id)

        with translated_docker_errors(f"get stats of `{container_id}`"):
            stats = self.__get_client().api.stats(container_id, stream=False)

        previous, current = snapshots_from_stats(stats)
        return compute_container_stats(previous, current, container_id, name)

    def get_volume_sizes(self) -> Dict[str, int]:
        return self.volume_size_resolver.resolve()

    def get_volume_size(self, volume_name: str) -> int:
        return self.volume_size_resolver.get_size(volume_name)

    def list_volumes(self) -> List[VolumeInfo]:
        """
        Returns the volumes known to the daemon along with their sizes

        :raises ExecutionError: if the sizes couldn't be resolved
        """
        with translated_docker_errors("list volumes"):
            volumes = self.__get_client().volumes.list() or []

        sizes = self.get_volume_sizes()
        return [
            VolumeInfo(
                name=volume.name,
                driver=volume.attrs.get('Driver', ''),
                mountpoint=volume.attrs.get('Mountpoint', ''),
                created_at=volume.attrs.get('CreatedAt'),
                labels=volume.attrs.get('Labels') or {},
                scope=volume.attrs.get('Scope') or 'local',
                size=sizes.get(volume.name, 0),
            )
            for volume in volumes
        ]

    def remove_volume(self, volume_name: str) -> None:
        with translated_docker_errors(f"remove volume `{volume_name}`"):
            self.__get_client().volumes.get(volume_name).remove()
        logging.info(f"DockerDaemonClient - Removed volume {volume_name}")

    def list_images(self) -> List[ImageInfo]:
        """
        Returns the images known to the daemon, intermediate layers included
        """
        # The low level listing returns the summaries, `images.list` inspects every image
        with translated_docker_errors("list images"):
            images = self.__get_client().api.images(all=True) or []

        return [
            ImageInfo(
                id=image.get('Id', ''),
                repo_tags=image.get('RepoTags') or [],
                repo_digests=image.get('RepoDigests') or [],
                created=parse_created(image.get('Created')),
                size=image.get('Size') or 0,
                virtual_size=image.get('VirtualSize') or 0,
                shared_size=image.get('SharedSize', -1),
                labels=image.get('Labels') or {},
            )
            for image in images
        ]

    def remove_image(self, image_id: str) -> None:
        with translated_docker_errors(f"remove image `{image_id}`"):
            self.__get_client().images.remove(image=image_id)
        logging.info(f"DockerDaemonClient - Removed image {image_id}")

    def list_networks(self) -> List[NetworkInfo]:
        with translated_docker_errors("list networks"):
            networks = self.__get_client().networks.list() or []

        return [self.__network_info(network.attrs) for network in networks]

    @staticmethod
    def __network_info(attrs: Dict) -> NetworkInfo:
        ipam = attrs.get('IPAM') or {}
        containers = {
            key: NetworkContainer(
                name=container.get('Name', ''),
                endpoint_id=container.get('EndpointID', ''),
                mac_address=container.get('MacAddress', ''),
                ipv4_address=container.get('IPv4Address', ''),
                ipv6_address=container.get('IPv6Address', ''),
            )
            for key, container in (attrs.get('Containers') or {}).items()
        }

        return NetworkInfo(
            id=attrs.get('Id', ''),
            name=attrs.get('Name', ''),
            driver=attrs.get('Driver') or '',
            scope=attrs.get('Scope') or 'local',
            created=parse_created(attrs.get('Created')),
            internal=attrs.get('Internal', False),
            attachable=attrs.get('Attachable', False),
            ingress=attrs.get('Ingress', False),
            ipam_driver=ipam.get('Driver'),
            ipam_config=[
                IpamConfig(subnet=config.get('Subnet'), gateway=config.get('Gateway'),
                           ip_range=config.get('IPRange'))
                for config in ipam.get('Config') or []
            ],
            containers=containers,
            options=attrs.get('Options') or {},
            labels=attrs.get('Labels') or {},
        )

    def remove_network(self, network_id: str) -> None:
        with translated_docker_errors(f"remove network `{network_id}`"):
            self.__get_client().networks.get(network_id).remove()
        logging.info(f"DockerDaemonClient - Removed network {network_id}")

    def get_system_info(self) -> DockerSystemInfo:
        with translated_docker_errors("get system info"):
            client = self.__get_client()
            info = client.info()
            volumes_total = len(client.volumes.list() or [])
            networks_total = len(client.networks.list() or [])

        running = info.get('ContainersRunning', 0)
        total = info.get('Containers', 0)
        return DockerSystemInfo(
            containers_running=running,
            containers_stopped=total - running,
            containers_total=total,
            images_total=info.get('Images', 0),
            volumes_total=volumes_total,
            networks_total=networks_total,
        )

    def open_log_feed(self, container_id: str) -> LogFeed:
        """
        Opens a follow-mode log response with stdout and stderr interleaved and per-line timestamps

        :raises ContainerLookupError: if the container is unknown
        """
        with translated_docker_errors(f"follow logs of `{container_id}`"):
            api = self.__get_client().api
            tty = api.inspect_container(container_id)['Config'].get('Tty', False)
            params = {
                'stdout': 1,
                'stderr': 1,
                'timestamps': 1,
                'follow': 1,
                'tail': self.__config.log_tail,
            }
            # Same requests `APIClient.logs` makes before it demultiplexes: `_url` formats the versioned path, `_get`
            # with `stream=True` leaves the body unread on `response.raw`, `_raise_for_status` maps HTTP errors to
            # `docker.errors` (404 -> NotFound). Pinned by `test_sdk_private_calls_exist`.
            response = api._get(api._url("/containers/{0}/logs", container_id), params=params, stream=True,
                               timeout=None)
            api._raise_for_status(response)

        return LogFeed(response, multiplexed=not tty)

    def start_logs(self, container_id: str) -> LogStreamSession:
        """
        Starts publishing the logs of the container on its log topic, see `cDeck.event_bus.log_topic`
        """
        return self.log_sessions.start(container_id, lambda: self.open_log_feed(container_id))

    def stop_logs(self, container_id: str) -> bool:
        return self.log_sessions.stop(container_id)

    def start(self, container_id: str):
        self.__container_action(container_id, 'start')

    def restart(self, container_id: str):
        self.__container_action(container_id, 'restart')

    def pause(self, container_id: str):
        self.__container_action(container_id, 'pause')

    def unpause(self, container_id: str):
        self.__container_action(container_id, 'unpause')

    def stop(self, container_id: str):
        self.__container_action(container_id, 'stop')

    def kill(self, container_id: str):
        self.__container_action(container_id, 'kill')

    def remove(self, container_id: str):
        self.__container_action(container_id, 'remove')
