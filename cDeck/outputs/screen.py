from typing import Iterable, List, Optional

from rich import box
from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cDeck.config import Config
from cDeck.models import ContainerInfo, ContainerStats, DockerSystemInfo, ImageInfo, LogEvent, NetworkInfo, VolumeInfo
from cDeck.outputs.formatter import RichFormatter


class cDeckRichScreen:
    def __init__(self, config: Config):
        self.config = config
        self.console = Console()
        self.formatter = RichFormatter(config)

        self.container_table = Table()
        self.stats_panel = Panel("")
        self.resource_table = Table()
        self.logs_panel = Panel("")
        self.status_message: Optional[str] = None
        self.system_info: Optional[DockerSystemInfo] = None

        self.live = Live(console=self.console, screen=True, auto_refresh=False)

    def init_screen(self):
        self.live.start(False)

    def render(self):
        self.live.update(self.prepare_layout(), refresh=True)

    def prepare_layout(self):
        layout = Layout()
        layout.split(
            Layout(name="main"),
            Layout(name="logs", ratio=1),
            Layout(name="footer", size=1),
        )
        layout["main"].split_row(
            Layout(name="containers", ratio=3),
            Layout(name="side", ratio=2),
        )
        layout["side"].split(Layout(name="stats"), Layout(name="resources"))

        layout["containers"].update(self.container_table)
        layout["stats"].update(self.stats_panel)
        layout["resources"].update(self.resource_table)
        layout["logs"].update(self.logs_panel)
        layout["footer"].update(self.prepare_footer())
        return layout

    def prepare_footer(self):
        if self.status_message:
            return Text(self.status_message, style="bold red", overflow="ellipsis")

        grid = Table.grid(padding=(0, 1))

        options_dict = {
            "w": "Up     ",
            "s": "Down   ",
            "l": "Logs   ",
            "v": "View   ",
            "1": "Start  ",
            "2": "Stop   ",
            "3": "Restart",
            "4": "Kill   ",
            "5": "Pause  ",
            "6": "Unpause",
            "q": "Quit   "
        }
        rendering_list = []
        for key in options_dict.keys():
            grid.add_column()
            text = Text()
            text.append(key)
            text.append(options_dict[key], style=self.config.selected_row_style)
            rendering_list.append(text)

        grid.add_row(*rendering_list)
        return grid

    def update_container_table(self, containers: List[ContainerInfo], index: int):
        title = f"CONTAINERS ({len(containers)}) - cDeck"
        table = Table(box=box.SIMPLE, header_style=self.config.tui_header_color, expand=True, title=title,
                      caption=self.formatter.get_system_summary(self.system_info))
        for column in self.formatter.get_header_row():
            table.add_column(column)

        for i, info in enumerate(containers):
            row = self.formatter.get_container_row(info)
            if i == index:
                table.add_row(*row, style=self.config.selected_row_style)
            else:
                table.add_row(*row)
        self.container_table = table

    def update_system_info(self, info: Optional[DockerSystemInfo]):
        self.system_info = info
        self.container_table.caption = self.formatter.get_system_summary(info)

    def update_stats_panel(self, stats: Optional[ContainerStats]):
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style=self.config.tui_header_color)
        grid.add_column()
        for row in self.formatter.get_stats_rows(stats):
            grid.add_row(*row)
        self.stats_panel = Panel(grid, title="Stats", box=box.SQUARE)

    def __update_resource_table(self, title: str, columns, rows: List[List[str]]):
        table = Table(box=box.SIMPLE, header_style=self.config.tui_header_color, expand=True, title=title)
        for column in columns:
            table.add_column(column, overflow="ellipsis")
        for row in rows:
            table.add_row(*row)
        self.resource_table = table

    def update_volume_table(self, volumes: List[VolumeInfo]):
        self.__update_resource_table(f"VOLUMES ({len(volumes)})", ("Name", "Driver", "Size", "Mountpoint"),
                                     [self.formatter.get_volume_row(volume) for volume in volumes])

    def update_image_table(self, images: List[ImageInfo]):
        self.__update_resource_table(f"IMAGES ({len(images)})", ("Tag", "Id", "Size", "Created"),
                                     [self.formatter.get_image_row(image) for image in images])

    def update_network_table(self, networks: List[NetworkInfo]):
        self.__update_resource_table(f"NETWORKS ({len(networks)})", ("Name", "Driver", "Scope", "Subnets"),
                                     [self.formatter.get_network_row(network) for network in networks])

    def update_logs_panel(self, title: str, events: Iterable[LogEvent]):
        lines = [self.formatter.format_log_event(event) for event in events]
        self.logs_panel = Panel(Group(*lines), title=title, box=box.SQUARE)

    def stop(self):
        self.live.stop()
