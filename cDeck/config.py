import os

from dotenv import load_dotenv

LOG_SESSION_POLICIES = ('supersede', 'reject')


class Config:
    def __init__(self, docker_socket_url, docker_cli_path, client_list_all_containers, log_tail, log_queue_size,
                 log_session_policy, log_stop_timeout, log_level, log_file, tui_header_color, selected_row_style,
                 priority_attributes):
        # Docker daemon options
        self.docker_socket_url = docker_socket_url
        self.docker_cli_path = docker_cli_path

        # Docker API Client options
        self.client_list_all_containers = client_list_all_containers

        # Log streaming options
        self.log_tail = log_tail
        self.log_queue_size = log_queue_size
        self.log_session_policy = log_session_policy
        self.log_stop_timeout = log_stop_timeout
        self.log_level = log_level
        self.log_file = log_file

        # TUI options
        self.tui_header_color = tui_header_color
        self.selected_row_style = selected_row_style
        self.priority_attributes = priority_attributes

    @staticmethod
    def load_env_from_file(path: str = None):
        if path:
            load_dotenv(path)
        else:
            load_dotenv()

        policy = os.getenv("LOG_SESSION_POLICY", "supersede").lower()
        if policy not in LOG_SESSION_POLICIES:
            raise ValueError(f"LOG_SESSION_POLICY must be one of {LOG_SESSION_POLICIES}, got `{policy}`")

        config = {
            # Docker daemon options
            'docker_socket_url': os.getenv("DOCKER_SOCKET_URL", "unix://var/run/docker.sock"),
            'docker_cli_path': os.getenv("DOCKER_CLI_PATH", "docker"),

            # Docker API Client options
            'client_list_all_containers': os.getenv("DOCKER_API_LIST_ALL_CONTAINERS", False) == "True",

            # Log streaming options
            'log_tail': os.getenv("LOG_TAIL", "all"),
            'log_queue_size': int(os.getenv("LOG_QUEUE_SIZE", "1000")),
            'log_session_policy': policy,
            'log_stop_timeout': float(os.getenv("LOG_STOP_TIMEOUT", "5")),
            'log_level': os.getenv("LOG_LEVEL", "WARNING").upper(),
            'log_file': os.getenv("LOG_FILE", "cdeck.log"),

            # TUI options
            'tui_header_color': os.getenv("TUI_HEADER_COLOR", "bold cyan"),
            'selected_row_style': os.getenv("SELECTED_ROW_STYLE", "black on cyan"),
            'priority_attributes': os.getenv("PRIORITY_ATTRIBUTES", "name,id,status,image,ports")
        }

        return Config(**config)
