from typing import List, Optional, Union

from rich.text import Text

from cDeck.config import Config
from cDeck.models import (ContainerInfo, ContainerStats, DockerSystemInfo, ImageInfo, LogEvent, LogEventKind,
                          NetworkInfo, VolumeInfo)

header_map = {
    "name": "Name",
    "id": "Id",
    "status": "Status",
    "state": "State",
    "image": "Tag",
    "created": "Created",
    "ports": "Ports",
}

SHA_256_ID_PICK_SIZE = 12


class RichFormatter:
    def __init__(self, config: Config):
        self.config = config

    def get_attributes(self) -> List[str]:
        return [k for k in self.config.priority_attributes.split(",") if k in header_map]

    def get_header_row(self) -> List[str]:
        return [header_map[k] for k in self.get_attributes()]

    def get_container_row(self, info: ContainerInfo) -> List[Text]:
        values = {
            "name": info.name,
            "id": info.id[:SHA_256_ID_PICK_SIZE],
            "status": info.status,
            "state": info.state,
            "image": info.image,
            "created": info.created.strftime('%Y-%m-%d %H:%M') if info.created else '-',
            "ports": self._format_ports(info),
        }
        return [Text(values[attr], overflow="ellipsis", style=self._get_container_state_style(info.state))
                for attr in self.get_attributes()]

    def get_stats_rows(self, stats: Optional[ContainerStats]) -> List[List[str]]:
        if stats is None:
            return [["Stats", "-"]]
        return [
            ["Container", stats.name],
            ["CPU%", format(stats.cpu_percentage, ".2f")],
            ["MEM", f"{self._auto_unit(stats.memory_usage)} / {self._auto_unit(stats.memory_limit)}"],
            ["MEM%", format(stats.memory_percentage, ".2f")],
            ["Net Rx / Tx", f"{self._auto_unit(stats.network_rx)} / {self._auto_unit(stats.network_tx)}"],
            ["Block R / W", f"{self._auto_unit(stats.block_read)} / {self._auto_unit(stats.block_write)}"],
        ]

    def get_volume_row(self, volume: VolumeInfo) -> List[str]:
        return [volume.name, volume.driver, self._auto_unit(volume.size), volume.mountpoint]

    def get_image_row(self, image: ImageInfo) -> List[str]:
        tag = image.repo_tags[0] if image.repo_tags else "<none>"
        image_id = image.id.split(":", 1)[-1][:SHA_256_ID_PICK_SIZE]
        created = image.created.strftime("%Y-%m-%d %H:%M") if image.created else "-"
        return [tag, image_id, self._auto_unit(image.size), created]

    @staticmethod
    def get_network_row(network: NetworkInfo) -> List[str]:
        subnets = ", ".join(config.subnet for config in network.ipam_config if config.subnet)
        return [network.name, network.driver, network.scope, subnets or "-"]

    @staticmethod
    def get_system_summary(info: Optional[DockerSystemInfo]) -> str:
        if info is None:
            return ""
        return (f"running {info.containers_running} / stopped {info.containers_stopped}  "
                f"images {info.images_total}  volumes {info.volumes_total}  networks {info.networks_total}")

    @staticmethod
    def format_log_event(event: LogEvent) -> Text:
        if event.kind is LogEventKind.DATA:
            return Text(event.line or '', overflow="fold")
        if event.kind is LogEventKind.ERROR:
            return Text(f"[stream failed] {event.message}", style="bold red")
        if event.kind is LogEventKind.STOP_REQUESTED:
            return Text("[stopping]", style="yellow")
        return Text("[end of logs]", style="dim")

    @staticmethod
    def _format_ports(info: ContainerInfo) -> str:
        ports = []
        for port in info.ports:
            if port.public_port:
                ports.append(f"{port.public_port}->{port.private_port}/{port.type}")
            else:
                ports.append(f"{port.private_port}/{port.type}")
        return ", ".join(ports)

    @staticmethod
    def _auto_unit(number: Union[int, float]) -> str:
        if number is None:
            return '-'
        units = [
            (1099511627776, 'T'),
            (1073741824, 'G'),
            (1048576, 'M'),
            (1024, 'K'),
        ]

        for unit, suffix in units:
            value = float(number) / unit
            if value > 1:
                precision = 0
                if value < 10:
                    precision = 2
                elif value < 100:
                    precision = 1
                if suffix == 'K':
                    precision = 0
                return '{:.{decimal}f}{suffix}'.format(value, decimal=precision, suffix=suffix)

        return '{!s}'.format(number)

    @staticmethod
    def _get_container_state_style(state: str) -> str:
        state_styles = {
            "created": "cyan",
            "restarting": "yellow",
            "running": "green",
            "paused": "yellow",
            "exited": "dim",
            "dead": "red",
        }
        return state_styles.get(state, '')
