import enum
import queue
import signal
import logging
import threading
import time
from typing import Callable, Optional

from geiger import (
    HEARTBEAT_OFF,
    HEARTBEAT_ON,
    QUEUE_SIZE,
    CountAccumulator,
    CountReader,
    Sample,
)
from influx import SinkError
from transport import Transport, TransportError

log = logging.getLogger("geiger.bridge")


class SessionState(enum.Enum):
    IDLE = "idle"
    HEARTBEAT_ENABLED = "heartbeat_enabled"
    CLOSING = "closing"
    CLOSED = "closed"


class GeigerBridge:
    """
    Une el contador con InfluxDB.

    El hilo lector produce conteos por segundo; este bucle (hilo principal)
    los suma y cada flush_interval escribe cpm y dosis en el sink.
    El acumulador solo se toca desde aquí.
    """

    def __init__(
        self,
        port: Transport,
        sink,
        flush_interval: float = 60.0,
        poll_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], float] = time.time,
        queue_size: int = QUEUE_SIZE,
    ):
        self.port = port
        self.sink = sink
        self.flush_interval = flush_interval
        self.poll_interval = poll_interval
        self.clock = clock
        self.now = now

        self.counts: "queue.Queue[Optional[int]]" = queue.Queue(maxsize=queue_size)
        self.accumulator = CountAccumulator()
        self.reader = CountReader(port, self.counts)
        self.state = SessionState.IDLE
        self.stream_closed = False

        self._stop = threading.Event()
        self._signal: Optional[int] = None

    def install_signal_handlers(self):
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self._on_signal)

    def _on_signal(self, signum, frame):
        # Nada de logging aquí: lo hace el bucle
        self._signal = signum
        self._stop.set()

    def stop(self):
        self._stop.set()

    def start(self):
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"bridge already started (state={self.state.value})")

        # Modo heartbeat: el contador manda el nº de eventos cada segundo
        self.port.write(HEARTBEAT_ON)
        self.state = SessionState.HEARTBEAT_ENABLED
        self.reader.start()
        log.info("Heartbeat enabled, flushing every %.0fs", self.flush_interval)

    def run(self):
        next_tick = self.clock() + self.flush_interval

        while not self._stop.is_set():
            now = self.clock()
            if now >= next_tick:
                self.flush()
                # Ticks perdidos (sink lento) se descartan
                while next_tick <= self.clock():
                    next_tick += self.flush_interval
                continue

            timeout = min(next_tick - now, self.poll_interval)
            if self.stream_closed:
                self._stop.wait(timeout)
                continue

            try:
                count = self.counts.get(timeout=timeout)
            except queue.Empty:
                continue

            if count is None:
                self.stream_closed = True
                log.warning("Device stream closed, no more counts will arrive")
                continue
            self.accumulator.add(count)

        if self._signal is not None:
            log.info("Received %s, shutting down", signal.Signals(self._signal).name)

    def flush(self) -> Sample:
        sample = self.accumulator.sample(self.now())
        log.info("cpm=%d, doseRate=%f", sample.cpm, sample.dose_rate)
        try:
            self.sink.write(sample)
        except SinkError as e:
            log.error("Influx write failed, sample dropped: %s", e)
        finally:
            self.accumulator.reset()
        return sample

    def close(self):
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return

        enabled = self.state is SessionState.HEARTBEAT_ENABLED
        self.state = SessionState.CLOSING
        self.reader.stop()

        if enabled:
            try:
                self.port.write(HEARTBEAT_OFF)
            except TransportError as e:
                log.warning("Could not disable heartbeat: %s", e)

        self.port.close()
        self.state = SessionState.CLOSED
        log.debug("Device session closed")

    def serve(self):
        try:
            self.start()
            self.run()
        finally:
            self.close()
