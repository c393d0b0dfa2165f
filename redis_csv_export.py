#!/usr/bin/env python3
"""
Export every key of a Redis database to a CSV file.

Each key becomes one row of ``Key,Type,Value``. Composite values (hash, list,
set, zset) are rendered as JSON text inside the Value column.
"""

import argparse
import csv
import io
import json
import logging
import math
import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional

import redis

logger = logging.getLogger("redis_csv_export")

HEADER = ("Key", "Type", "Value")
INITIAL_CURSOR = 0
PROGRESS_EVERY = 1000
READ_ERRORS = (redis.exceptions.RedisError, UnicodeDecodeError)


class ExportError(Exception):
    """Base class for everything that aborts an export pass."""


class StoreConnectionError(ExportError):
    pass


class ScanError(ExportError):
    def __init__(self, cursor, message):
        super().__init__(f"SCAN failed at cursor {cursor}: {message}")
        self.cursor = cursor


class ReadError(ExportError):
    def __init__(self, key, phase, message):
        super().__init__(f"Reading {phase} of key {key!r} failed: {message}")
        self.key = key
        self.phase = phase


class SerializeError(ExportError):
    pass


class WriteError(ExportError):
    def __init__(self, path, message):
        super().__init__(f"Cannot write {path}: {message}")
        self.path = path


class KeyType(Enum):
    STRING = "string"
    HASH = "hash"
    LIST = "list"
    SET = "set"
    ZSET = "zset"
    OTHER = "other"

    @classmethod
    def from_name(cls, name):
        """Map a Redis TYPE reply to a KeyType; unknown names become OTHER."""
        try:
            return cls(name)
        except ValueError:
            return cls.OTHER


class Row(NamedTuple):
    key: str
    type: str
    value: str


@dataclass
class ExportConfig:
    host: str = "127.0.0.1"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    output: str = "redis_data.csv"
    count: int = 100
    timeout: Optional[float] = None

    def __post_init__(self):
        # An empty password must not turn into an AUTH attempt
        if not self.password:
            self.password = None


def normalize_cursor(cursor):
    """SCAN cursors come back as int, str or bytes depending on the client."""
    if isinstance(cursor, bytes):
        cursor = cursor.decode("ascii")
    return int(cursor)


def to_text(value):
    """Decode a raw reply; bytes that are not UTF-8 become \\x escapes."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="backslashreplace")
    return value


def to_score(score):
    # JSON has no infinity; spell it the way Redis does
    if math.isinf(score):
        return "inf" if score > 0 else "-inf"
    return score


def to_json(value):
    return json.dumps(value, ensure_ascii=False, allow_nan=False, separators=(",", ":"))


def serialize(rows):
    """Render rows as CSV text, header first."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    try:
        writer.writerow(HEADER)
        for row in rows:
            writer.writerow((row.key, row.type, row.value))
    except (csv.Error, TypeError, AttributeError) as e:
        raise SerializeError(f"Cannot render CSV: {e}") from e
    return buf.getvalue()


def write(text, path):
    """Write text to path, replacing whatever was there."""
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(text)
    except OSError as e:
        raise WriteError(path, e) from e


class Exporter:
    """One read-only export pass from a Redis database to a CSV file."""

    def __init__(self, config, client=None):
        self.config = config
        self.client = client
        self._readers = {
            KeyType.STRING: self._read_string,
            KeyType.HASH: self._read_hash,
            KeyType.LIST: self._read_list,
            KeyType.SET: self._read_set,
            KeyType.ZSET: self._read_zset,
            KeyType.OTHER: self._read_other,
        }

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def connect(self):
        cfg = self.config
        logger.info("Connecting to Redis at %s:%s (db %s)", cfg.host, cfg.port, cfg.db)
        if self.client is None:
            kwargs = dict(host=cfg.host, port=cfg.port, db=cfg.db, decode_responses=False)
            if cfg.password:
                kwargs["password"] = cfg.password
            if cfg.timeout is not None:
                kwargs["socket_timeout"] = cfg.timeout
                kwargs["socket_connect_timeout"] = cfg.timeout
            self.client = redis.Redis(**kwargs)
        try:
            self.client.ping()
        except redis.exceptions.RedisError as e:
            self.close()
            raise StoreConnectionError(
                f"Cannot connect to Redis at {cfg.host}:{cfg.port} db {cfg.db}: {e}"
            ) from e
        logger.info("Redis client connected.")
        return self.client

    def close(self):
        if self.client is None:
            return
        try:
            self.client.close()
        except Exception as e:
            logger.warning("Error closing Redis client: %s", e)
        finally:
            self.client = None
        logger.info("Redis client disconnected.")

    def scan_page(self, cursor):
        try:
            next_cursor, keys = self.client.scan(cursor=cursor, count=self.config.count)
        except READ_ERRORS as e:
            raise ScanError(cursor, e) from e
        return normalize_cursor(next_cursor), keys

    def type_of(self, key):
        try:
            name = to_text(self.client.type(key))
        except READ_ERRORS as e:
            raise ReadError(to_text(key), "type", e) from e
        return KeyType.from_name(name), name

    def read_value(self, key, key_type, type_name=None):
        reader = self._readers[key_type]
        try:
            return reader(key, type_name or key_type.value)
        except READ_ERRORS as e:
            raise ReadError(to_text(key), "value", e) from e

    def _read_string(self, key, type_name):
        return to_text(self.client.get(key)) or ""

    def _read_hash(self, key, type_name):
        fields = self.client.hgetall(key)
        return to_json({to_text(field): to_text(value) for field, value in fields.items()})

    def _read_list(self, key, type_name):
        return to_json([to_text(item) for item in self.client.lrange(key, 0, -1)])

    def _read_set(self, key, type_name):
        return to_json(sorted(to_text(member) for member in self.client.smembers(key)))  # Sorted for stability

    def _read_zset(self, key, type_name):
        pairs = self.client.zrange(key, 0, -1, withscores=True)
        return to_json([{"member": to_text(member), "score": to_score(score)} for member, score in pairs])

    def _read_other(self, key, type_name):
        return f"Unsupported Type: {type_name}"

    def export_all(self):
        """Scan the whole database and return one Row per key, in scan order."""
        rows = []
        cursor = INITIAL_CURSOR
        while True:
            cursor, keys = self.scan_page(cursor)
            for key in keys:
                key_type, type_name = self.type_of(key)
                value = self.read_value(key, key_type, type_name)
                name = to_text(key)
                logger.debug("%s (%s)", name, type_name)
                rows.append(Row(name, type_name, value))
                if len(rows) % PROGRESS_EVERY == 0:
                    logger.info("Processed keys: %d", len(rows))
            if cursor == INITIAL_CURSOR:
                break
        return rows

    serialize = staticmethod(serialize)
    write = staticmethod(write)

    def run(self):
        """Connect, export, write the CSV file and disconnect. Returns the row count."""
        with self:
            rows = self.export_all()
        logger.info("Found and processed %d keys. Writing to CSV...", len(rows))
        self.write(self.serialize(rows), self.config.output)
        logger.info("Export completed. Data saved to %s", self.config.output)
        return len(rows)


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


def parse_args(argv=None):
    defaults = ExportConfig()
    parser = argparse.ArgumentParser(description="Export all keys of a Redis database to CSV")
    parser.add_argument("output", nargs="?", default=defaults.output,
                        help=f"CSV file to write (default: {defaults.output})")
    parser.add_argument("--host", default=os.environ.get("REDIS_HOST", defaults.host))
    parser.add_argument("--port", type=int, default=_env_int("REDIS_PORT", defaults.port))
    parser.add_argument("--password", default=os.environ.get("REDIS_PASSWORD"),
                        help="Redis password (default: $REDIS_PASSWORD)")
    parser.add_argument("--db", type=int, default=_env_int("REDIS_DB", defaults.db))
    parser.add_argument("--count", type=int, default=defaults.count,
                        help="SCAN page size hint")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Socket timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(message)s",
        stream=sys.stderr,
    )
    logger.setLevel(logging.DEBUG if args.verbose else logging.INFO)
    config = ExportConfig(
        host=args.host,
        port=args.port,
        password=args.password,
        db=args.db,
        output=args.output,
        count=args.count,
        timeout=args.timeout,
    )

    try:
        Exporter(config).run()
    except StoreConnectionError as e:
        logger.error("Redis connection error: %s. Check that the server is running.", e)
        return 1
    except ExportError as e:
        logger.error("Export aborted, no CSV written: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130
    except Exception as e:
        logger.exception("Unexpected error, no CSV written: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
