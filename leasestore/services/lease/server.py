#!/usr/bin/env python
# -*- coding: utf-8 -*-

import asyncio
import logging
from functools import partial
from ipaddress import IPv4Address
from typing import Any, Callable, List, Optional, TypeVar

from ...utils import format_ip, format_mac
from ..base import BaseService
from .config import LeaseConfig
from .entry import LeaseEntry
from .errors import AddressUnavailable
from .store import IPLike, LeaseStore, MacLike

T = TypeVar("T")


class LeaseService(BaseService):
    """
    Lease bookkeeping used by the DHCP protocol handler.

    DISCOVER maps to ``offer``, REQUEST to ``allocate`` (or ``confirm`` for
    INIT-REBOOT clients), RELEASE and DECLINE to ``release``. Blocking store
    calls run in the loop's default executor.
    """

    __slots__ = (
        "config",
        "store",
        "loop",
        "is_debug",
        "logger",
    )

    def __init__(
        self,
        config: LeaseConfig,
        store: LeaseStore,
        *,
        logger: logging.Logger = logging.getLogger("leasestore.service"),
    ) -> None:
        self.config = config
        self.store = store
        self.loop = asyncio.get_running_loop()
        self.is_debug = logger.isEnabledFor(logging.DEBUG)
        self.logger = logger

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        return await self.loop.run_in_executor(None, partial(func, *args))

    def _usable(self, ip: IPv4Address) -> bool:
        return ip in self.config.server_network and int(ip) not in self.config.reserved_ips

    async def lookup(self, mac: MacLike) -> Optional[LeaseEntry]:
        return await self._call(self.store.lookup, mac)

    async def lookup_by_ip(self, ip: IPLike) -> Optional[LeaseEntry]:
        return await self._call(self.store.lookup_by_ip, ip)

    async def list_active(self) -> List[LeaseEntry]:
        return await self._call(lambda: list(self.store.list_active()))

    async def is_ip_available(self, ip: IPLike, mac: Optional[MacLike] = None) -> bool:
        ip = IPv4Address(format_ip(ip))
        if not self._usable(ip):
            return False
        lease = await self.lookup_by_ip(ip)
        if lease is None:
            return True
        return mac is not None and lease.mac_addr == format_mac(mac)

    async def get_available_ip(self) -> IPv4Address:
        leased = {int(ip) for ip in await self._call(self.store.addresses)}
        for ip in self.config.server_network.hosts():
            ip_int = int(ip)

            if ip_int in self.config.reserved_ips or ip_int in leased:
                continue
            return ip

        raise AddressUnavailable(f"No free address left in {self.config.server_network}")

    async def offer(
        self, mac: MacLike, requested: Optional[IPLike] = None
    ) -> IPv4Address:
        """
        Choose the address to offer ``mac`` without leasing it: its current
        address, else the requested one if free, else the first free host.
        """
        lease = await self.lookup(mac)
        if lease is not None and self._usable(lease.ip_address):
            return lease.ip_address

        if requested is not None:
            try:
                requested_ip = IPv4Address(format_ip(requested))
            except ValueError:
                self.logger.info(f"Ignoring malformed requested address {requested!r}")
            else:
                if await self.is_ip_available(requested_ip, mac):
                    return requested_ip

        ip = await self.get_available_ip()
        if self.is_debug:
            self.logger.debug(f"offering {ip} to {format_mac(mac)}")
        return ip

    async def allocate(self, mac: MacLike, ip: IPLike) -> LeaseEntry:
        ip = IPv4Address(format_ip(ip))
        if not self._usable(ip):
            raise AddressUnavailable(
                f"{ip} is not a leasable address of {self.config.server_network}"
            )
        return await self._call(self.store.assign, mac, ip)

    async def confirm(self, mac: MacLike, ip: IPLike) -> bool:
        lease = await self._call(self.store.require, mac)
        ip = IPv4Address(format_ip(ip))
        confirmed = lease.ip_address == ip and self._usable(ip)
        if not confirmed:
            self.logger.info(f"{lease} does not match requested {ip}")
        return confirmed

    async def release(self, mac: MacLike) -> bool:
        return await self._call(self.store.release, mac)

    async def start(self) -> None:
        self.logger.info("Starting lease service")
        await self._call(self.store.open)
        active = len(await self._call(self.store.addresses))
        network = self.config.server_network
        self.logger.info(f"Lease database: {self.store.path}")
        self.logger.info(f"Network: {network}, server: {self.config.server_ip}")
        self.logger.info(f"Router (Gateway): {self.config.server_router}")
        self.logger.info(f'DNS: {",".join([str(dns) for dns in self.config.dns_ips])}')
        self.logger.info(f"Active leases: {active}")

    async def stop(self) -> None:
        self.logger.info("Stopping lease service")
        await self._call(self.store.close)
        self.logger.info("Lease service stopped")

    async def __aenter__(self) -> "LeaseService":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()
