"""Application entry point."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional

# Ensure project root is on the path when running as `python app/main.py`
_ROOT = Path(__file__).parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from app.config import DEFAULT_CONFIG_PATH, Config
from app.controller import Controller
from peripheral.link import ConnectionEvent


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Posture and presence monitor.")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to config.json.")
    parser.add_argument("--port", help="Serial port of the peripheral (overrides config).")
    parser.add_argument("--camera", type=int, help="Camera index (overrides config).")
    parser.add_argument("--no-peripheral", action="store_true", help="Run without connecting the peripheral.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-frame detail.")
    return parser.parse_args(argv)


def _log_connection(logger: logging.Logger, event: ConnectionEvent) -> None:
    if event.received is not None:
        logger.info("Peripheral says: %s", event.received)
    else:
        logger.info("Peripheral %s %s", event.state.value, event.message)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    _configure_logging(args.verbose)
    logger = logging.getLogger(__name__)
    logger.info("Posture monitor – starting up.")

    config = Config.load(args.config)
    if args.port:
        config.serial_port = args.port
    if args.camera is not None:
        config.camera_index = args.camera

    controller = Controller(config)
    try:
        controller.start_camera()
    except RuntimeError as exc:
        logger.error("Could not start camera (index %d): %s", config.camera_index, exc)
        controller.release()
        return 1

    if config.connect_on_start and not args.no_peripheral:
        controller.connect_peripheral()

    controller.start_monitoring()
    last_status = None
    try:
        while True:
            result = controller.poll_result()
            while result is not None:
                for change in result.transitions:
                    logger.info("Monitor state: %s", change.current.value)
                if result.status_text and result.status_text != last_status:
                    last_status = result.status_text
                    logger.info("Status: %s", last_status)
                result = controller.poll_result()

            event = controller.link.poll_event()
            while event is not None:
                _log_connection(logger, event)
                event = controller.link.poll_event()

            time.sleep(0.1)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        controller.release()

    logger.info("Exiting.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
