import os
import signal
import threading
from unittest.mock import patch

import serial

from geiger import GeigerConfig
from main import main, parse_args


def test_flags_override_env(monkeypatch):
    monkeypatch.setenv("GEIGER_BAUD", "9600")
    monkeypatch.setenv("GEIGER_DEV", "/dev/ttyACM0")

    cfg = parse_args([], GeigerConfig.from_env())
    assert cfg.baud == 9600
    assert cfg.device == "/dev/ttyACM0"
    assert cfg.log_raw is False

    cfg = parse_args(["-baud", "115200", "-dev", "", "-logRawCommunication",
                      "-influxAddr", "http://influx:8086"], GeigerConfig.from_env())
    assert cfg.baud == 115200
    assert cfg.device == ""
    assert cfg.log_raw is True
    assert cfg.influx_addr == "http://influx:8086"


def test_bad_influx_address_is_fatal():
    assert main(["-influxAddr", "not-a-url"]) == 1


def test_serial_open_failure_is_fatal():
    with patch("transport.serial.Serial", side_effect=serial.SerialException("could not open port")):
        assert main(["-dev", "/dev/ttyUSB9", "-influxAddr", "http://localhost:8086"]) == 1


def test_sigterm_exits_cleanly(monkeypatch):
    monkeypatch.setenv("GEIGER_DEV", "")
    monkeypatch.setenv("GEIGER_FAKE_INTERVAL", "0.01")
    monkeypatch.setenv("GEIGER_FLUSH_INTERVAL", "60")

    old = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    killer = threading.Timer(0.5, os.kill, (os.getpid(), signal.SIGTERM))
    try:
        killer.start()
        assert main(["-influxAddr", "http://localhost:8086"]) == 0
    finally:
        killer.cancel()
        for sig, handler in old.items():
            signal.signal(sig, handler)
