import struct

from cDeck.config import Config


def make_config(**overrides) -> Config:
    config = {
        'docker_socket_url': 'unix://var/run/docker.sock',
        'docker_cli_path': 'docker',
        'client_list_all_containers': False,
        'log_tail': 'all',
        'log_queue_size': 100,
        'log_session_policy': 'supersede',
        'log_stop_timeout': 5.0,
        'log_level': 'DEBUG',
        'log_file': 'cdeck.log',
        'tui_header_color': 'bold cyan',
        'selected_row_style': 'black on cyan',
        'priority_attributes': 'name,id,status,image,ports',
    }
    config.update(overrides)
    return Config(**config)


def frame(payload: bytes, stream_type: int = 1) -> bytes:
    return struct.pack('>BxxxL', stream_type, len(payload)) + payload
