import logging
import re
import subprocess
from enum import Enum
from typing import Dict, List, Optional

from cDeck.errors import ExecutionError

VOLUME_SECTION_HEADER = "VOLUME NAME"

# Headers of the other tables `docker system df -v` prints
OTHER_SECTION_HEADERS = ("CACHE ID", "REPOSITORY", "CONTAINER ID", "Images space usage", "Containers space usage",
                         "Local Volumes space usage", "Build cache usage")

SIZE_UNITS = {
    'B': 1,
    'KB': 1024,
    'MB': 1024 ** 2,
    'GB': 1024 ** 3,
    'TB': 1024 ** 4,
}

SIZE_TOKEN_PATTERN = re.compile(r'^([0-9.]*)([A-Za-z]+)$')


class ParserState(Enum):
    SEARCHING = 'searching'
    IN_SECTION = 'in_section'
    DONE = 'done'


def parse_size(token: str) -> Optional[int]:
    """
    Converts a size token like `1.5GB` or `12kB` into bytes (1024 based multipliers).

    :param token: The size column value of a `docker system df -v` row
    :return: The size in bytes, or None if the token cannot be understood
    """
    if token in ('0B', '0'):
        return 0

    match = SIZE_TOKEN_PATTERN.match(token)
    if not match:
        return None

    number, unit = match.groups()
    multiplier = SIZE_UNITS.get(unit.upper())
    if multiplier is None:
        return None

    try:
        value = float(number)
    except ValueError:
        return None

    return int(value * multiplier)


def _is_other_section_header(line: str) -> bool:
    return line.startswith(OTHER_SECTION_HEADERS)


def parse_volume_sizes(text: str) -> Dict[str, int]:
    """
    Extracts the per-volume sizes from the verbose disk usage report of the docker CLI. Only the table headed by
    `VOLUME NAME` is read; malformed rows are skipped.

    :param text: Standard output of `docker system df -v`
    :return: A dict of volume name to size in bytes, empty if the volume table is missing
    """
    sizes: Dict[str, int] = {}
    state = ParserState.SEARCHING

    for raw_line in text.splitlines():
        line = raw_line.strip()

        if state is ParserState.SEARCHING:
            if line.startswith(VOLUME_SECTION_HEADER):
                state = ParserState.IN_SECTION
            continue

        if state is ParserState.DONE:
            break

        if not line or _is_other_section_header(line):
            state = ParserState.DONE
            continue

        fields = line.split()
        if len(fields) < 3:
            continue

        size = parse_size(fields[2])
        if size is None:
            logging.debug(f"DiskUsageParser - Dropping entry `{fields[0]}` with size `{fields[2]}`")
            continue
        sizes[fields[0]] = size

    return sizes


class VolumeSizeResolver:
    """
    Resolves volume sizes from the docker CLI, as the Engine API does not report them on the volume endpoints.
    Every call spawns the CLI again; resolve once and reuse the mapping when sizes of many volumes are needed.
    """

    def __init__(self, docker_cli_path: str = 'docker'):
        self.docker_cli_path = docker_cli_path

    def get_command(self) -> List[str]:
        return [self.docker_cli_path, 'system', 'df', '-v']

    def resolve(self) -> Dict[str, int]:
        """
        Runs the disk usage report and parses the volume table

        :return: A dict of volume name to size in bytes
        :raises ExecutionError: if the CLI can't be spawned or exits with a non-zero status
        """
        command = self.get_command()
        try:
            result = subprocess.run(command, capture_output=True, text=True, errors='replace',
                                    stdin=subprocess.DEVNULL)
        except OSError as e:
            logging.error(f"VolumeSizeResolver - Failed to spawn `{' '.join(command)}` ({e})")
            raise ExecutionError(f"Failed to run `{' '.join(command)}`", stderr=str(e)) from e

        if result.returncode != 0:
            logging.error(f"VolumeSizeResolver - `{' '.join(command)}` exited with {result.returncode}")
            raise ExecutionError(f"`{' '.join(command)}` exited with status {result.returncode}",
                                 stderr=result.stderr or '', returncode=result.returncode)

        return parse_volume_sizes(result.stdout)

    def get_size(self, volume_name: str) -> int:
        """
        Returns the size of a single volume, 0 if the report doesn't list it
        """
        return self.resolve().get(volume_name, 0)
