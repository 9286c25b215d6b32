# MAIN
import argparse
import sys
import threading
from typing import List, Optional, TextIO

from config import ConfigRegistry, load_config
from engine_comm import spawn_engine
from errors import EngineInitFailure
from orchestrator import MoveOrchestrator
from scheduler import Scheduler
from transport import StreamChannel, TransportAdapter
from utils import get_logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Play moves from a UCI engine over a line-delimited JSON transport"
    )
    parser.add_argument("--engine", default="stockfish", help="Engine command line (default: stockfish)")
    parser.add_argument(
        "--preset",
        choices=sorted(ConfigRegistry.PRESETS),
        help="Configuration preset (default: $CHESSRELAY_PRESET or bullet)",
    )
    parser.add_argument("--config", help="JSON file with configuration overrides")
    parser.add_argument(
        "--log-level",
        choices=["ERROR", "WARN", "INFO", "DEBUG"],
        help="Console log level (overrides the configuration)",
    )
    parser.add_argument(
        "--no-automation",
        action="store_true",
        help="Track the game without calculating or sending moves",
    )
    parser.add_argument("--echo-engine", action="store_true", help="Log raw engine traffic at DEBUG level")
    return parser.parse_args(argv)


def read_transport(stream: TextIO, scheduler: Scheduler, orchestrator: MoveOrchestrator) -> None:
    for line in stream:
        line = line.strip()
        if line:
            scheduler.post(orchestrator.on_transport_message, line)
    scheduler.post(scheduler.stop)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    log = get_logger()

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.no_automation:
        overrides["automation_enabled"] = False
    try:
        config = load_config(args.preset, overrides, args.config)
    except (OSError, ValueError) as exc:
        log.error(f"Invalid configuration: {exc}")
        return 2
    log.set_level(config.log_level)

    scheduler = Scheduler()
    transport = TransportAdapter(
        scheduler,
        primary=StreamChannel(sys.stdout),
        aux_fields=config.outbound_fields,
        interaction_delay_ms=config.interaction_delay_ms,
    )
    orchestrator = MoveOrchestrator(
        config,
        scheduler,
        spawn_engine(args.engine, scheduler, echo=args.echo_engine),
        transport,
    )

    reader = threading.Thread(
        target=read_transport, args=(sys.stdin, scheduler, orchestrator), daemon=True
    )
    orchestrator.start()
    reader.start()
    log.info("Waiting for game updates on stdin...")
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        log.info("Interrupted by user")
    finally:
        orchestrator.shutdown()
    return 1 if isinstance(orchestrator.halt_reason, EngineInitFailure) else 0


if __name__ == "__main__":
    sys.exit(main())
