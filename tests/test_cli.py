"""
Tests for the command-line front end.
"""

import threading

import pytest
from rtcp import cli
from rtcp.channel import UDPChannel


def free_port() -> int:
    with UDPChannel(("127.0.0.1", 0)) as channel:
        return channel.local_address[1]


class TestArguments:
    """Test argument parsing and validation."""

    def test_receiver_mode(self):
        args = cli.parse_args(["-p", "6000", "-f", "out.bin", "-m", "1000", "-c", "10"])
        assert args.remote_ip is None
        assert (args.port, args.mtu, args.window) == (6000, 1000, 10)

    def test_sender_mode(self):
        args = cli.parse_args(["-p", "5000", "-s", "10.0.0.2", "-a", "6000",
                               "-f", "in.bin", "-m", "500", "-c", "4"])
        assert args.remote_ip == "10.0.0.2"
        assert args.remote_port == 6000

    @pytest.mark.parametrize("argv", [
        ["-f", "out.bin", "-m", "1000", "-c", "10"],                    # no -p
        ["-p", "6000", "-f", "out.bin", "-m", "0", "-c", "10"],         # bad mtu
        ["-p", "6000", "-f", "out.bin", "-m", "1000", "-c", "0"],       # bad window
        ["-p", "99999", "-f", "out.bin", "-m", "1000", "-c", "10"],     # bad port
        ["-p", "5000", "-s", "10.0.0.2", "-f", "in.bin", "-m", "1", "-c", "1"],  # no -a
        ["-p", "6000", "-a", "5000", "-f", "out.bin", "-m", "1", "-c", "1"],     # -a without -s
        ["-p", "6000", "-f", "out.bin", "-m", "70000", "-c", "10"],     # mtu too large
    ])
    def test_usage_errors(self, argv):
        with pytest.raises(SystemExit) as excinfo:
            cli.parse_args(argv)
        assert excinfo.value.code == cli.EXIT_USAGE


class TestMain:
    """Test exit codes of whole runs."""

    def test_missing_source_file(self, tmp_path):
        code = cli.main(["-p", str(free_port()), "-s", "127.0.0.1", "-a", "9",
                         "-f", str(tmp_path / "missing.bin"), "-m", "100", "-c", "4"])
        assert code == cli.EXIT_USAGE

    def test_existing_destination_file(self, tmp_path):
        out = tmp_path / "out.bin"
        out.write_bytes(b"keep")

        code = cli.main(["-p", str(free_port()), "-f", str(out), "-m", "100", "-c", "4"])

        assert code == cli.EXIT_USAGE
        assert out.read_bytes() == b"keep"

    def test_transfer_over_loopback(self, tmp_path):
        """A sender and a receiver process the same file over real UDP."""
        source = tmp_path / "in.bin"
        source.write_bytes(bytes(range(256)) * 20)
        destination = tmp_path / "received" / "out.bin"
        receiver_port, sender_port = free_port(), free_port()

        codes = {}
        receiver = threading.Thread(
            target=lambda: codes.update(receiver=cli.main([
                "-p", str(receiver_port), "-f", str(destination), "-m", "512", "-c", "8"
            ])),
            daemon=True,
        )
        receiver.start()

        codes["sender"] = cli.main([
            "-p", str(sender_port), "-s", "127.0.0.1", "-a", str(receiver_port),
            "-f", str(source), "-m", "512", "-c", "8",
        ])
        receiver.join(timeout=30)

        assert codes == {"sender": cli.EXIT_OK, "receiver": cli.EXIT_OK}
        assert destination.read_bytes() == source.read_bytes()
