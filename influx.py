import logging
from typing import Optional
from urllib.parse import urlparse

import requests
from influxdb import InfluxDBClient
from influxdb.exceptions import InfluxDBClientError, InfluxDBServerError

from geiger import Sample

log = logging.getLogger("geiger.influx")

MEASUREMENT = "measurements"


class SinkError(Exception):
    pass


class InfluxSink:
    """Escribe un punto por intervalo en InfluxDB 1.x."""

    def __init__(self, addr: str, database: str = "sensors", location: str = "Office",
                 client: Optional[InfluxDBClient] = None):
        url = urlparse(addr)
        if url.scheme not in ("http", "https") or not url.hostname:
            raise ValueError(f"invalid InfluxDB address {addr!r}")

        self.database = database
        self.tags = {"location": location}
        self.client = client or InfluxDBClient(
            host=url.hostname,
            port=url.port or 8086,
            username=url.username or "root",
            password=url.password or "root",
            ssl=url.scheme == "https",
            verify_ssl=url.scheme == "https",
            path=url.path.strip("/"),
            database=database,
            # Sin reintentos: si falla, el punto se pierde (0 sería reintentar siempre)
            retries=1,
        )
        log.debug("InfluxDB client for %s db=%s", addr, database)

    def point(self, sample: Sample) -> dict:
        return {
            "measurement": MEASUREMENT,
            "tags": dict(self.tags),
            "time": int(sample.timestamp),
            "fields": {
                "geiger_counter_cpm": int(sample.cpm),
                "geiger_counter_dose_rate": float(sample.dose_rate),
            },
        }

    def write(self, sample: Sample):
        try:
            self.client.write_points(
                [self.point(sample)],
                time_precision="s",
                database=self.database,
            )
        except (InfluxDBClientError, InfluxDBServerError, requests.RequestException) as e:
            raise SinkError(str(e)) from e

    def close(self):
        self.client.close()
