import subprocess
import unittest
from unittest import mock

from cDeck.docker_client.disk_usage import VolumeSizeResolver, parse_size, parse_volume_sizes
from cDeck.errors import ExecutionError

SYSTEM_DF_OUTPUT = """Images space usage:

REPOSITORY   TAG       IMAGE ID       CREATED       SIZE      SHARED SIZE   UNIQUE SIZE   CONTAINERS
nginx        latest    605c77e624dd   2 years ago   141.5MB   0B            141.5MB       1

Containers space usage:

CONTAINER ID   IMAGE     COMMAND                  LOCAL VOLUMES   SIZE      CREATED       STATUS       NAMES
3f4e5d6c7b8a   nginx     "/docker-entrypoint.…"   0               1.09kB    2 hours ago   Up 2 hours   web

Local Volumes space usage:

VOLUME NAME                                                        LINKS     SIZE
pgdata                                                             1         48.5MB
cache                                                              0         0B
4f1b2e86a0c5d8e3b1f0a9c7e6d5b4a3f2e1d0c9b8a7f6e5d4c3b2a1f0e9d8c7   1         12kB

Build cache usage: 0B

CACHE ID   CACHE TYPE   SIZE      CREATED   LAST USED   USAGE     SHARED
"""


class TestParseSize(unittest.TestCase):

    def test_units_are_1024_based(self):
        self.assertEqual(parse_size("5B"), 5)
        self.assertEqual(parse_size("3KB"), 3 * 1024)
        self.assertEqual(parse_size("2MB"), 2 * 1024 ** 2)
        self.assertEqual(parse_size("7GB"), 7 * 1024 ** 3)
        self.assertEqual(parse_size("1TB"), 1024 ** 4)

    def test_units_are_case_insensitive(self):
        self.assertEqual(parse_size("12kB"), 12 * 1024)
        self.assertEqual(parse_size("1gb"), 1024 ** 3)

    def test_decimal_sizes(self):
        self.assertEqual(parse_size("1.5KB"), 1536)
        self.assertEqual(parse_size("48.5MB"), int(48.5 * 1024 ** 2))

    def test_zero_tokens(self):
        self.assertEqual(parse_size("0B"), 0)
        self.assertEqual(parse_size("0"), 0)

    def test_invalid_tokens(self):
        for token in ("12XB", "MB", "12", "1.2.3MB", "abcMB", "-3KB", ""):
            with self.subTest(token=token):
                self.assertIsNone(parse_size(token))


class TestParseVolumeSizes(unittest.TestCase):

    def test_reads_only_the_volume_section(self):
        sizes = parse_volume_sizes(SYSTEM_DF_OUTPUT)

        self.assertEqual(sizes, {
            "pgdata": int(48.5 * 1024 ** 2),
            "cache": 0,
            "4f1b2e86a0c5d8e3b1f0a9c7e6d5b4a3f2e1d0c9b8a7f6e5d4c3b2a1f0e9d8c7": 12 * 1024,
        })

    def test_malformed_lines_are_skipped(self):
        text = "\n".join([
            "VOLUME NAME   LINKS   SIZE",
            "good          1       1KB",
            "short         1",
            "broken        1       12XB",
            "alsogood      0       2MB",
        ])

        self.assertEqual(parse_volume_sizes(text), {"good": 1024, "alsogood": 2 * 1024 ** 2})

    def test_section_ends_at_next_header(self):
        text = "\n".join([
            "VOLUME NAME   LINKS   SIZE",
            "v1            1       1KB",
            "CACHE ID   CACHE TYPE   SIZE",
            "v2            1       2KB",
        ])

        self.assertEqual(parse_volume_sizes(text), {"v1": 1024})

    def test_section_ends_at_blank_line(self):
        text = "VOLUME NAME   LINKS   SIZE\nv1 1 1KB\n\nv2 1 2KB\n"

        self.assertEqual(parse_volume_sizes(text), {"v1": 1024})

    def test_empty_section_and_missing_section(self):
        self.assertEqual(parse_volume_sizes("VOLUME NAME   LINKS   SIZE\n"), {})
        self.assertEqual(parse_volume_sizes("Images space usage:\n\nREPOSITORY TAG\n"), {})
        self.assertEqual(parse_volume_sizes(""), {})


class TestVolumeSizeResolver(unittest.TestCase):

    def setUp(self):
        self.resolver = VolumeSizeResolver("/usr/bin/docker")

    @mock.patch("cDeck.docker_client.disk_usage.subprocess.run")
    def test_resolve(self, run):
        run.return_value = subprocess.CompletedProcess([], 0, stdout=SYSTEM_DF_OUTPUT, stderr="")

        sizes = self.resolver.resolve()

        self.assertEqual(sizes["cache"], 0)
        self.assertEqual(len(sizes), 3)
        self.assertEqual(run.call_args[0][0], ["/usr/bin/docker", "system", "df", "-v"])

    @mock.patch("cDeck.docker_client.disk_usage.subprocess.run")
    def test_every_call_runs_the_cli(self, run):
        run.return_value = subprocess.CompletedProcess([], 0, stdout=SYSTEM_DF_OUTPUT, stderr="")

        self.resolver.resolve()
        self.resolver.get_size("pgdata")

        self.assertEqual(run.call_count, 2)

    @mock.patch("cDeck.docker_client.disk_usage.subprocess.run")
    def test_get_size(self, run):
        run.return_value = subprocess.CompletedProcess([], 0, stdout=SYSTEM_DF_OUTPUT, stderr="")

        self.assertEqual(self.resolver.get_size("pgdata"), int(48.5 * 1024 ** 2))
        self.assertEqual(self.resolver.get_size("unknown"), 0)

    @mock.patch("cDeck.docker_client.disk_usage.subprocess.run")
    def test_non_zero_exit(self, run):
        run.return_value = subprocess.CompletedProcess([], 1, stdout="",
                                                       stderr="Cannot connect to the Docker daemon\n")

        with self.assertRaises(ExecutionError) as context:
            self.resolver.resolve()

        self.assertEqual(context.exception.returncode, 1)
        self.assertIn("Cannot connect to the Docker daemon", str(context.exception))

    @mock.patch("cDeck.docker_client.disk_usage.subprocess.run")
    def test_spawn_failure(self, run):
        run.side_effect = FileNotFoundError(2, "No such file or directory")

        with self.assertRaises(ExecutionError) as context:
            self.resolver.get_size("pgdata")

        self.assertIn("No such file or directory", context.exception.stderr)


if __name__ == "__main__":
    unittest.main()
