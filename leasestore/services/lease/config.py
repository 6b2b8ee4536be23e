#!/usr/bin/env python
# -*- coding: utf-8 -*-

from ipaddress import IPv4Address, IPv4Network
from typing import List, Optional, Tuple


class LeaseConfig:
    __slots__ = (
        "server_ip",
        "server_router",
        "server_network",
        "dns_ips",
    )

    def __init__(
        self,
        server_ip: IPv4Address,
        server_network: IPv4Network,
        server_router: Optional[IPv4Address] = None,
        dns_ips: List[IPv4Address] = [IPv4Address("1.1.1.1")],
    ) -> None:
        self.server_ip = server_ip
        self.server_network = server_network
        self.server_router = server_router if server_router is not None else server_ip
        self.dns_ips = dns_ips

    @property
    def netmask_ip(self) -> IPv4Address:
        return self.server_network.netmask

    @property
    def reserved_ips(self) -> Tuple[int, ...]:
        return (
            int(self.server_ip),
            int(self.server_router),
            int(self.server_network.network_address),
            int(self.server_network.broadcast_address),
            *[int(ip) for ip in self.dns_ips],
        )

    def __repr__(self) -> str:
        return f"LeaseConfig(network={self.server_network}, server_ip={self.server_ip})"
