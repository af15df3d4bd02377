import argparse
import getpass
import logging
import threading

from .net.protocol import REQUEST_PORT, SNAPSHOT_PORT
from .server.coordinator import Coordinator
from .viewer import ViewerSession

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def default_player_name() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "player"


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def run_host(bind: str, port: int, snapshot_port: int, gui: bool, name: str) -> None:
    coordinator = Coordinator(bind=bind, request_port=port, snapshot_port=snapshot_port)
    coordinator.start()
    if not gui:
        try:
            coordinator.serve_forever()
        except KeyboardInterrupt:
            pass
        return
    # the host plays through its own viewer; closing the window ends the session
    server = threading.Thread(target=coordinator.serve_forever, name="coordinator", daemon=True)
    server.start()
    try:
        run_join("127.0.0.1", coordinator.request_port, coordinator.snapshot_port, False, name)
    finally:
        coordinator.stop()


def run_join(address: str, port: int, snapshot_port: int, listen: bool, name: str) -> None:
    from .gui import run_viewer_gui

    session = ViewerSession(address, port=port, snapshot_port=snapshot_port, listen=listen)
    session.open()
    run_viewer_gui(session, player=name)


def main() -> None:
    parser = argparse.ArgumentParser(description="Card table - shared sandbox table of piles over the LAN")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="mode", required=True)

    host_p = subparsers.add_parser("host", help="Host the table")
    host_p.add_argument("--bind", type=str, default="0.0.0.0", help="Bind address")
    host_p.add_argument("--port", type=int, default=REQUEST_PORT, help="TCP port for viewer requests")
    host_p.add_argument("--snapshot-port", type=int, default=SNAPSHOT_PORT, help="TCP port for table snapshots")
    host_p.add_argument("--gui", action="store_true", help="Also open a table window for the host")
    host_p.add_argument("--name", type=str, default=default_player_name(), help="Player name used for pile protection")

    join_p = subparsers.add_parser("join", help="Join a host")
    join_p.add_argument("--address", type=str, required=True, help="Host IP or address")
    join_p.add_argument("--port", type=int, default=REQUEST_PORT, help="TCP port for requests")
    join_p.add_argument("--snapshot-port", type=int, default=SNAPSHOT_PORT, help="TCP port for snapshots")
    join_p.add_argument("--listen", action="store_true", help="Listen on the snapshot port and let the host dial back")
    join_p.add_argument("--name", type=str, default=default_player_name(), help="Player name used for pile protection")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.mode == "host":
        run_host(bind=args.bind, port=args.port, snapshot_port=args.snapshot_port, gui=args.gui, name=args.name)
    elif args.mode == "join":
        run_join(address=args.address, port=args.port, snapshot_port=args.snapshot_port, listen=args.listen, name=args.name)
