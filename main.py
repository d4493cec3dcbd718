import sys
import logging
import argparse
from dataclasses import replace
from typing import List, Optional

from dotenv import load_dotenv

from bridge import GeigerBridge
from geiger import GeigerConfig
from influx import InfluxSink
from transport import TransportError, open_transport

log = logging.getLogger("geiger")


def parse_args(argv: Optional[List[str]], cfg: GeigerConfig) -> GeigerConfig:
    # Los flags pisan lo que venga del entorno / .env
    p = argparse.ArgumentParser(description="Geiger counter (serial heartbeat) -> InfluxDB bridge")
    p.add_argument("-dev", default=cfg.device,
                   help="Serial port device for sensor communication (empty: fake serial)")
    p.add_argument("-baud", type=int, default=cfg.baud,
                   help="Serial port baud for sensor communication")
    p.add_argument("-influxAddr", default=cfg.influx_addr, help="Address of InfluxDB server")
    p.add_argument("-logRawCommunication", action="store_true", default=cfg.log_raw,
                   help="Log the raw communication with the device")
    p.add_argument("-v", "--verbose", action="store_true", default=cfg.verbose)
    args = p.parse_args(argv)

    return replace(
        cfg,
        device=args.dev,
        baud=args.baud,
        influx_addr=args.influxAddr,
        log_raw=args.logRawCommunication,
        verbose=args.verbose,
    )


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    cfg = parse_args(argv, GeigerConfig.from_env())
    logging.basicConfig(
        level=logging.DEBUG if cfg.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )

    try:
        sink = InfluxSink(cfg.influx_addr, database=cfg.influx_db, location=cfg.location)
    except ValueError as e:
        log.critical("influx: %s", e)
        return 1

    try:
        port = open_transport(
            cfg.device,
            cfg.baud,
            read_timeout=cfg.read_timeout,
            log_raw=cfg.log_raw,
            fake_interval=cfg.fake_interval,
        )
    except TransportError as e:
        log.critical("%s", e)
        sink.close()
        return 1

    bridge = GeigerBridge(port, sink, flush_interval=cfg.flush_interval)
    bridge.install_signal_handlers()

    try:
        bridge.serve()
    except TransportError as e:
        log.critical("enable heartbeat: %s", e)
        return 1
    finally:
        sink.close()

    log.info("Stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
