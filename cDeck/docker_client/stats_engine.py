import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from cDeck.errors import ContainerLookupError
from cDeck.models import BlockIOCounter, ContainerStats, NetworkCounters, RawCounterSnapshot


def read_iso_timestamp(timestamp_str: str) -> Optional[datetime]:
    """
    A utility method to convert Docker API's timestamp into datetime objects.
    Removes characters after `.` or `Z` in the timestamp as datetime doesnt accept it
    :param timestamp_str: ISO 8061 string timestamp
    :return: corresponding datetime instance, None for the zero value the daemon sends without a previous read
    """
    if not timestamp_str or timestamp_str.startswith('0001-01-01'):
        return None
    # Hard coding to 19 chars as that filters out excess text
    return datetime.fromisoformat(timestamp_str[:19])


def _read_cpu_counters(cpu_stats: Dict) -> Dict:
    cpu_usage = cpu_stats.get('cpu_usage') or {}
    online_cpus = cpu_stats.get('online_cpus')
    if not online_cpus:
        online_cpus = len(cpu_usage.get('percpu_usage') or []) or None

    return {
        'cpu_total': cpu_usage.get('total_usage') or 0,
        'system_total': cpu_stats.get('system_cpu_usage') or 0,
        'online_cpus': online_cpus,
    }


def snapshots_from_stats(stats: Dict) -> Tuple[RawCounterSnapshot, RawCounterSnapshot]:
    """
    Splits one non-streaming stats response of the Docker API into the previous and current snapshots. The daemon
    bundles the preceding CPU reading as `precpu_stats`; memory, network and block IO are only reported for the
    current reading.

    :param stats: The decoded stats response
    :return: A (previous, current) tuple
    :raises ContainerLookupError: if the response carries no reading at all
    """
    if not stats or not stats.get('cpu_stats'):
        raise ContainerLookupError("The daemon returned no stats for the container")

    memory_stats = stats.get('memory_stats') or {}
    networks = {
        interface: NetworkCounters(rx_bytes=counters.get('rx_bytes', 0), tx_bytes=counters.get('tx_bytes', 0))
        for interface, counters in (stats.get('networks') or {}).items()
    }
    # cgroup v2 hosts may send null here
    io_service_bytes = (stats.get('blkio_stats') or {}).get('io_service_bytes_recursive') or []
    block_io = [BlockIOCounter(op=entry.get('op', ''), value=entry.get('value', 0)) for entry in io_service_bytes]

    current = RawCounterSnapshot(
        **_read_cpu_counters(stats['cpu_stats']),
        memory_usage=memory_stats.get('usage', 0),
        memory_limit=memory_stats.get('limit', 0),
        networks=networks,
        block_io=block_io,
        read_time=read_iso_timestamp(stats.get('read')),
    )
    previous = RawCounterSnapshot(
        **_read_cpu_counters(stats.get('precpu_stats') or {}),
        read_time=read_iso_timestamp(stats.get('preread')),
    )
    return previous, current


def compute_cpu_percentage(previous: RawCounterSnapshot, current: RawCounterSnapshot) -> float:
    # CPU usage % = cpu_delta / system_cpu_delta * number_of_cpus * 100
    cpu_delta = max(0, current.cpu_total - previous.cpu_total)
    system_cpu_delta = max(0, current.system_total - previous.system_total)
    if cpu_delta <= 0 or system_cpu_delta <= 0:
        return 0.0

    online_cpus = current.online_cpus or 1
    return cpu_delta / system_cpu_delta * online_cpus * 100


def compute_container_stats(previous: RawCounterSnapshot, current: RawCounterSnapshot, container_id: str,
                            name: str) -> ContainerStats:
    """
    Derives the UI facing stats of a container from two time ordered snapshots

    :param previous: The earlier snapshot, only its CPU counters are used
    :param current: The latest snapshot
    :param container_id: Id attached to the result
    :param name: Display name attached to the result
    :return: A ContainerStats object
    """
    memory_percentage = 0.0
    if current.memory_limit > 0:
        memory_percentage = current.memory_usage / current.memory_limit * 100

    # Lifetime counters, summed as-is
    network_rx = sum(counters.rx_bytes for counters in current.networks.values())
    network_tx = sum(counters.tx_bytes for counters in current.networks.values())

    block_read = sum(entry.value for entry in current.block_io if entry.op.lower() == 'read')
    block_write = sum(entry.value for entry in current.block_io if entry.op.lower() == 'write')

    stats = ContainerStats(
        id=container_id,
        name=name,
        cpu_percentage=compute_cpu_percentage(previous, current),
        memory_usage=current.memory_usage,
        memory_limit=current.memory_limit,
        memory_percentage=memory_percentage,
        network_rx=network_rx,
        network_tx=network_tx,
        block_read=block_read,
        block_write=block_write,
    )
    logging.debug(f"StatsEngine - {name}: cpu {stats.cpu_percentage:.2f}%, mem {stats.memory_percentage:.2f}%")
    return stats
