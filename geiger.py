import os
import queue
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from transport import EndOfStream, Transport, TransportError

log = logging.getLogger("geiger")

# Protocolo del contador en modo heartbeat
HEARTBEAT_ON = b"<HEARTBEAT1>>"
HEARTBEAT_OFF = b"<HEARTBEAT0>>"
HEARTBEAT_MASK = 0x3FFF
FRAME_SIZE = 2

# CPM -> uSv/h, depende del tubo
DOSE_RATE_FACTOR = 0.00625

QUEUE_SIZE = 128


@dataclass
class GeigerConfig:
    device: str = ""
    baud: int = 57600
    influx_addr: str = "http://localhost:8086"
    influx_db: str = "sensors"
    location: str = "Office"
    log_raw: bool = False
    verbose: bool = False
    read_timeout: float = 2.0
    flush_interval: float = 60.0
    fake_interval: float = 1.0

    @classmethod
    def from_env(cls) -> "GeigerConfig":
        return cls(
            device=os.getenv("GEIGER_DEV", ""),
            baud=int(os.getenv("GEIGER_BAUD", "57600")),
            influx_addr=os.getenv("GEIGER_INFLUX_ADDR", "http://localhost:8086"),
            influx_db=os.getenv("GEIGER_INFLUX_DB", "sensors"),
            location=os.getenv("GEIGER_LOCATION", "Office"),
            log_raw=os.getenv("GEIGER_LOG_RAW", "0") == "1",
            verbose=os.getenv("GEIGER_VERBOSE", "0") == "1",
            read_timeout=float(os.getenv("GEIGER_READ_TIMEOUT", "2.0")),
            flush_interval=float(os.getenv("GEIGER_FLUSH_INTERVAL", "60.0")),
            fake_interval=float(os.getenv("GEIGER_FAKE_INTERVAL", "1.0")),
        )


def decode_frame(frame: bytes) -> int:
    """Nº de eventos de un frame heartbeat (big-endian, 14 bits útiles)."""
    if len(frame) != FRAME_SIZE:
        raise ValueError(f"heartbeat frame must be {FRAME_SIZE} bytes, got {len(frame)}")
    return int.from_bytes(frame, "big") & HEARTBEAT_MASK


@dataclass(frozen=True)
class Sample:
    cpm: int
    dose_rate: float
    timestamp: float

    @classmethod
    def from_cpm(cls, cpm: int, timestamp: float) -> "Sample":
        return cls(cpm=cpm, dose_rate=cpm * DOSE_RATE_FACTOR, timestamp=timestamp)


class CountAccumulator:
    # Solo lo toca el bucle principal: sin lock
    def __init__(self):
        self.total = 0

    def add(self, count: int):
        self.total += count

    def sample(self, timestamp: float) -> Sample:
        return Sample.from_cpm(self.total, timestamp)

    def reset(self):
        self.total = 0


class CountReader:
    """
    Hilo productor: lee frames del transporte y deja los conteos en la cola.
    Al llegar fin de stream pone None en la cola (cierre) y termina.
    """

    def __init__(self, port: Transport, counts: "queue.Queue[Optional[int]]"):
        self.port = port
        self.counts = counts
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._pending = b""

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self.run, name="geiger-reader", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self):
        try:
            while not self._stop.is_set():
                try:
                    data = self.port.read(FRAME_SIZE - len(self._pending))
                except EndOfStream:
                    log.info("Read: EOF")
                    return
                except TransportError as e:
                    log.error("Read error: %s", e)
                    continue

                # Timeout sin datos: nada que contar
                if not data:
                    continue

                self._pending += data
                if len(self._pending) < FRAME_SIZE:
                    continue

                frame, self._pending = self._pending[:FRAME_SIZE], self._pending[FRAME_SIZE:]
                self.counts.put(decode_frame(frame))
        finally:
            self.counts.put(None)
