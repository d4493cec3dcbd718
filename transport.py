import errno
import logging
import threading
from typing import Protocol

import serial

log = logging.getLogger("geiger.transport")


class TransportError(Exception):
    pass


class EndOfStream(TransportError):
    """El stream del dispositivo se acabó: no llegarán más datos."""


class Transport(Protocol):
    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> int: ...

    def close(self) -> None: ...


# Errores del SO que indican que el dispositivo ya no está (USB desenchufado)
DISCONNECT_ERRNOS = {errno.EIO, errno.ENXIO, errno.ENODEV}


def _disconnected(e: BaseException) -> bool:
    # pyserial envuelve el OSError original en SerialException("read failed: ...")
    if "returned no data" in str(e):
        return True
    for err in (e, e.__cause__, e.__context__):
        if isinstance(err, OSError) and err.errno in DISCONNECT_ERRNOS:
            return True
    return False


class SerialTransport:
    """
    Puerto serie real (pyserial). read() devuelve b"" tras read_timeout sin datos,
    así el lector nunca se queda bloqueado para siempre.
    """

    def __init__(self, device: str, baud: int, read_timeout: float = 2.0):
        try:
            self._port = serial.Serial(device, baudrate=baud, timeout=read_timeout)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"open port {device}: {e}") from e
        log.info("Opened %s at %d baud", device, baud)

    def read(self, size: int) -> bytes:
        if not self._port.is_open:
            raise EndOfStream("port closed")
        try:
            return self._port.read(size)
        except (serial.SerialException, OSError, TypeError) as e:
            # pyserial lanza TypeError si cerramos el puerto durante un read
            if not self._port.is_open or _disconnected(e):
                raise EndOfStream(str(e) or "port closed") from e
            raise TransportError(str(e)) from e

    def write(self, data: bytes) -> int:
        try:
            return self._port.write(data)
        except (serial.SerialException, OSError) as e:
            raise TransportError(str(e)) from e

    def close(self):
        self._port.close()


class FakeSerial:
    """Sin hardware: cada read devuelve el mismo frame, las escrituras se descartan."""

    def __init__(self, frame: bytes = b"\x80\x00", interval: float = 1.0):
        self.frame = frame
        self.interval = interval
        self._closed = threading.Event()

    def read(self, size: int) -> bytes:
        # Ritmo del heartbeat real (1 frame/s)
        if self._closed.wait(self.interval):
            raise EndOfStream("fake serial closed")
        return self.frame[:size]

    def write(self, data: bytes) -> int:
        return len(data)

    def close(self):
        self._closed.set()


class LoggingTransport:
    """Pass-through que registra los bytes crudos en ambas direcciones."""

    def __init__(self, inner: Transport):
        self.inner = inner

    def read(self, size: int) -> bytes:
        data = self.inner.read(size)
        log.info("Read %d bytes: %s", len(data), data.hex())
        return data

    def write(self, data: bytes) -> int:
        n = self.inner.write(data)
        log.info("Wrote %d bytes: %s", n, data[:n].hex())
        return n

    def close(self):
        self.inner.close()


def open_transport(device: str, baud: int, read_timeout: float = 2.0,
                   log_raw: bool = False, fake_interval: float = 1.0) -> Transport:
    if device and baud > 0:
        port = SerialTransport(device, baud, read_timeout)
    else:
        log.warning("No device/baud configured, using FakeSerial")
        port = FakeSerial(interval=fake_interval)

    if log_raw:
        return LoggingTransport(port)
    return port

