#!/usr/bin/env python
# -*- coding: utf-8 -*-

import sqlite3
from ipaddress import IPv4Address


class LeaseEntry:

    __slots__ = ('id', 'mac_addr', 'ip_addr', 'deleted')

    def __init__(
        self,
        id: int,
        mac_addr: str,
        ip_addr: str,
        deleted: bool = False) -> None:
        self.id = id
        self.mac_addr = mac_addr
        self.ip_addr = ip_addr
        self.deleted = deleted

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'LeaseEntry':
        return cls(
            row['id'],
            row['mac_addr'],
            row['ip_addr'],
            bool(row['deleted']))

    @property
    def ip_address(self) -> IPv4Address:
        return IPv4Address(self.ip_addr)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LeaseEntry):
            return NotImplemented
        return (self.id, self.mac_addr, self.ip_addr, self.deleted) == (
            other.id, other.mac_addr, other.ip_addr, other.deleted)

    def __repr__(self) -> str:
        state = 'deleted' if self.deleted else 'active'
        return f'LeaseEntry({self.id}, {self.mac_addr}, {self.ip_addr}, {state})'
