#!/usr/bin/env python
# -*- coding: utf-8 -*-

import logging
import os
import sqlite3
import threading
import time
from ipaddress import IPv4Address
from typing import Callable, Dict, Iterator, List, Optional, Tuple, TypeVar, Union

from ...utils import format_ip, format_mac
from .entry import LeaseEntry
from .errors import AddressConflict, NotFound, StorageFailure

T = TypeVar("T")

MacLike = Union[bytes, str]
IPLike = Union[IPv4Address, int, str]

CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS lease_entries (
    "id"       INTEGER PRIMARY KEY AUTOINCREMENT,
    "mac_addr" TEXT NOT NULL,
    "ip_addr"  TEXT NOT NULL,
    "deleted"  unsigned INTEGER NOT NULL DEFAULT 0
)
"""

CREATE_INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS lease_entries_active_mac "
    "ON lease_entries (mac_addr) WHERE deleted = 0",
    "CREATE UNIQUE INDEX IF NOT EXISTS lease_entries_active_ip "
    "ON lease_entries (ip_addr) WHERE deleted = 0",
)

COLUMNS = "id, mac_addr, ip_addr, deleted"
SELECT_ACTIVE_BY_MAC = (
    f"SELECT {COLUMNS} FROM lease_entries WHERE mac_addr = ? AND deleted = 0"
)
SELECT_ACTIVE_BY_IP = (
    f"SELECT {COLUMNS} FROM lease_entries WHERE ip_addr = ? AND deleted = 0"
)


def _is_busy(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class ActiveLeases:
    """
    Restartable view over the active leases of a store, ordered by id.

    Every iteration opens its own connection and read transaction, so it
    streams one snapshot of the table page by page while writers go on.
    """

    __slots__ = ("store",)

    def __init__(self, store: "LeaseStore") -> None:
        self.store = store

    def __iter__(self) -> Iterator[LeaseEntry]:
        store = self.store
        conn = store._open_reader()
        try:
            try:
                conn.execute("BEGIN")
                cursor = conn.execute(
                    f"SELECT {COLUMNS} FROM lease_entries "
                    "WHERE deleted = 0 ORDER BY id"
                )
            except sqlite3.Error as e:
                raise store._failure(e) from e
            while True:
                try:
                    rows = cursor.fetchmany(store.page_size)
                except sqlite3.Error as e:
                    raise store._failure(e) from e
                if not rows:
                    return
                for row in rows:
                    yield LeaseEntry.from_row(row)
        finally:
            store._close_reader(conn)

    def __repr__(self) -> str:
        return f"ActiveLeases({self.store.path})"


class LeaseStore:
    """
    Durable MAC to IPv4 lease mapping kept in a SQLite database.

    Released leases are soft-deleted and kept as history. Uniqueness of
    MAC and IP among active rows is enforced by partial unique indexes,
    and writes inside this process are serialised by a lock so the
    check-then-write sequence of ``assign`` is atomic.
    """

    __slots__ = (
        "path",
        "timeout",
        "retries",
        "page_size",
        "logger",
        "is_debug",
        "_local",
        "_write_lock",
        "_connections",
        "_connections_lock",
        "_generation",
        "_closed",
    )

    def __init__(
        self,
        path: str,
        *,
        timeout: float = 5.0,
        retries: int = 3,
        page_size: int = 64,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be greater than 0")
        if retries < 0:
            raise ValueError("retries must be 0 or greater")
        if page_size < 1:
            raise ValueError("page_size must be 1 or greater")
        self.logger = logging.getLogger("leasestore.store")
        self.is_debug = self.logger.isEnabledFor(logging.DEBUG)
        self.path = path
        self.timeout = timeout
        self.retries = retries
        self.page_size = page_size
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._connections: Dict[sqlite3.Connection, Optional[threading.Thread]] = {}
        self._connections_lock = threading.Lock()
        self._generation = 0
        self._closed = True

    def open(self) -> "LeaseStore":
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise StorageFailure(f"Unable to create {directory}: {e}") from e

        self._closed = False
        self._generation += 1
        try:
            self._retrying(
                lambda conn: conn.execute("PRAGMA journal_mode=WAL").fetchone()
            )
            self._write(self._prepare_schema)
        except StorageFailure:
            self.close()
            raise
        self.logger.info(f"Lease store opened at {self.path}")
        return self

    def close(self) -> None:
        with self._connections_lock:
            self._closed = True
            connections, self._connections = list(self._connections), {}
        for conn in connections:
            conn.close()
        if connections:
            self.logger.info(f"Lease store at {self.path} closed")

    def __enter__(self) -> "LeaseStore":
        return self.open()

    def __exit__(self, *args) -> None:
        self.close()

    def lookup(self, mac: MacLike) -> Optional[LeaseEntry]:
        rows = self._read(SELECT_ACTIVE_BY_MAC, (format_mac(mac),))
        return LeaseEntry.from_row(rows[0]) if rows else None

    def lookup_by_ip(self, ip: IPLike) -> Optional[LeaseEntry]:
        rows = self._read(SELECT_ACTIVE_BY_IP, (format_ip(ip),))
        return LeaseEntry.from_row(rows[0]) if rows else None

    def require(self, mac: MacLike) -> LeaseEntry:
        entry = self.lookup(mac)
        if entry is None:
            raise NotFound(format_mac(mac))
        return entry

    def assign(self, mac: MacLike, ip: IPLike) -> LeaseEntry:
        """
        Make sure ``mac`` holds an active lease on ``ip``.

        Renewing the current binding returns the existing entry. Moving to
        a new address soft-deletes the old row and inserts a new one in the
        same transaction.

        :raises AddressConflict: ``ip`` is leased to another MAC address
        :raises StorageFailure: the database could not be written
        """
        mac_addr = format_mac(mac)
        ip_addr = format_ip(ip)

        def operation(
            conn: sqlite3.Connection,
        ) -> Tuple[LeaseEntry, Optional[LeaseEntry]]:
            current = self._fetch_one(conn, SELECT_ACTIVE_BY_MAC, (mac_addr,))
            if current is not None and current.ip_addr == ip_addr:
                return current, current

            holder = self._fetch_one(conn, SELECT_ACTIVE_BY_IP, (ip_addr,))
            if holder is not None:
                raise AddressConflict(ip_addr, holder.mac_addr)

            if current is not None:
                conn.execute(
                    "UPDATE lease_entries SET deleted = 1 WHERE id = ?",
                    (current.id,),
                )
            try:
                cursor = conn.execute(
                    "INSERT INTO lease_entries (mac_addr, ip_addr) VALUES (?, ?)",
                    (mac_addr, ip_addr),
                )
            except sqlite3.IntegrityError as e:
                if "lease_entries.ip_addr" in str(e):
                    raise AddressConflict(ip_addr) from e
                raise
            return LeaseEntry(cursor.lastrowid, mac_addr, ip_addr), current

        try:
            entry, previous = self._write(operation)
        except AddressConflict as e:
            self.logger.info(f"Refusing {ip_addr} for {mac_addr}: {e}")
            raise

        if previous is entry:
            if self.is_debug:
                self.logger.debug(f"{entry} renewed")
        elif previous is not None:
            self.logger.info(f"{mac_addr} moved from {previous.ip_addr} to {ip_addr}")
        else:
            self.logger.info(f"leasing {entry}")
        return entry

    def release(self, mac: MacLike) -> bool:
        mac_addr = format_mac(mac)

        def operation(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(
                "UPDATE lease_entries SET deleted = 1 "
                "WHERE mac_addr = ? AND deleted = 0",
                (mac_addr,),
            )
            return cursor.rowcount > 0

        released = self._write(operation)
        if released:
            self.logger.info(f"Lease for {mac_addr} released")
        elif self.is_debug:
            self.logger.debug(f"No active lease for {mac_addr} to release")
        return released

    def list_active(self) -> ActiveLeases:
        return ActiveLeases(self)

    def addresses(self, deleted: bool = False) -> List[IPv4Address]:
        rows = self._read(
            "SELECT ip_addr FROM lease_entries WHERE deleted = ? ORDER BY id",
            (1 if deleted else 0,),
        )
        return [IPv4Address(row["ip_addr"]) for row in rows]

    def history(self, mac: MacLike) -> List[LeaseEntry]:
        rows = self._read(
            f"SELECT {COLUMNS} FROM lease_entries WHERE mac_addr = ? ORDER BY id",
            (format_mac(mac),),
        )
        return [LeaseEntry.from_row(row) for row in rows]

    def _prepare_schema(self, conn: sqlite3.Connection) -> None:
        if self._has_legacy_unique(conn):
            self.logger.warning(
                "Migrating lease_entries: dropping UNIQUE on mac_addr "
                "in favour of active-only uniqueness"
            )
            conn.execute("ALTER TABLE lease_entries RENAME TO lease_entries_legacy")
            conn.execute(CREATE_TABLE)
            conn.execute(
                f"INSERT INTO lease_entries ({COLUMNS}) "
                f"SELECT {COLUMNS} FROM lease_entries_legacy ORDER BY id"
            )
            # ids of rows removed from the legacy table must not come back
            legacy = conn.execute(
                "SELECT seq FROM sqlite_sequence WHERE name = 'lease_entries_legacy'"
            ).fetchone()
            if legacy is not None:
                conn.execute("DELETE FROM sqlite_sequence WHERE name = 'lease_entries'")
                conn.execute(
                    "INSERT INTO sqlite_sequence (name, seq) VALUES ('lease_entries', ?)",
                    (legacy["seq"],),
                )
            conn.execute("DROP TABLE lease_entries_legacy")
        else:
            conn.execute(CREATE_TABLE)
        for statement in CREATE_INDEXES:
            conn.execute(statement)

    @staticmethod
    def _has_legacy_unique(conn: sqlite3.Connection) -> bool:
        for index in conn.execute("PRAGMA index_list('lease_entries')"):
            if index["origin"] != "u":
                continue
            columns = [
                column["name"]
                for column in conn.execute(f"PRAGMA index_info('{index['name']}')")
            ]
            if columns == ["mac_addr"]:
                return True
        return False

    @staticmethod
    def _fetch_one(
        conn: sqlite3.Connection, query: str, params: tuple
    ) -> Optional[LeaseEntry]:
        row = conn.execute(query, params).fetchone()
        return LeaseEntry.from_row(row) if row is not None else None

    def _connect(self) -> sqlite3.Connection:
        conn = None
        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA synchronous=FULL")
        except sqlite3.Error as e:
            if conn is not None:
                conn.close()
            self.logger.error(f"Unable to open {self.path}: {e}")
            raise StorageFailure(f"Unable to open {self.path}: {e}") from e
        return conn

    def _register(
        self, conn: sqlite3.Connection, owner: Optional[threading.Thread]
    ) -> None:
        with self._connections_lock:
            if self._closed:
                conn.close()
                raise StorageFailure("Lease store is closed")
            # connections of finished threads are never used again
            orphans = [
                orphan
                for orphan, thread in self._connections.items()
                if thread is not None and not thread.is_alive()
            ]
            for orphan in orphans:
                del self._connections[orphan]
            self._connections[conn] = owner
        for orphan in orphans:
            orphan.close()
        if orphans and self.is_debug:
            self.logger.debug(f"Closed {len(orphans)} connections of finished threads")

    def _connection(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageFailure("Lease store is closed")
        cached = getattr(self._local, "conn", None)
        if cached is not None and cached[0] == self._generation:
            return cached[1]

        thread = threading.current_thread()
        conn = self._connect()
        self._register(conn, thread)
        self._local.conn = (self._generation, conn)
        if self.is_debug:
            self.logger.debug(f"Opened connection to {self.path} for {thread.name}")
        return conn

    def _open_reader(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageFailure("Lease store is closed")
        conn = self._connect()
        self._register(conn, None)
        return conn

    def _close_reader(self, conn: sqlite3.Connection) -> None:
        with self._connections_lock:
            if conn not in self._connections:
                # already closed together with the store
                return
            del self._connections[conn]
        try:
            if conn.in_transaction:
                conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise self._failure(e) from e
        finally:
            conn.close()

    def _failure(self, error: sqlite3.Error) -> StorageFailure:
        self.logger.error(f"Lease store failure: {error}")
        return StorageFailure(str(error))

    def _read(self, query: str, params: tuple) -> List[sqlite3.Row]:
        return self._retrying(lambda conn: conn.execute(query, params).fetchall())

    def _write(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        if not self._write_lock.acquire(timeout=self.timeout):
            self.logger.error(f"Timed out after {self.timeout}s waiting to write")
            raise StorageFailure(f"Timed out after {self.timeout}s waiting to write")
        try:
            return self._retrying(lambda conn: self._transaction(conn, operation))
        finally:
            self._write_lock.release()

    @staticmethod
    def _transaction(
        conn: sqlite3.Connection, operation: Callable[[sqlite3.Connection], T]
    ) -> T:
        conn.execute("BEGIN IMMEDIATE")
        try:
            result = operation(conn)
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        return result

    def _retrying(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        attempt = 0
        while True:
            try:
                return operation(self._connection())
            except sqlite3.OperationalError as e:
                if _is_busy(e) and attempt < self.retries:
                    attempt += 1
                    self.logger.warning(
                        f"{self.path} is busy, retrying ({attempt}/{self.retries})"
                    )
                    time.sleep(0.05 * attempt)
                    continue
                raise self._failure(e) from e
            except sqlite3.Error as e:
                raise self._failure(e) from e
