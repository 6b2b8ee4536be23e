#!/usr/bin/env python
# -*- coding: utf-8 -*-

import json
import os
from ipaddress import AddressValueError, IPv4Address, IPv4Network, NetmaskValueError
from typing import List, Optional

from .services.lease.config import LeaseConfig


def _db_settings() -> dict:
    db_path = os.environ.get("DB_PATH", "shared/dhcp.db")
    if not db_path:
        raise ValueError("DB_PATH must not be empty")
    db_timeout = float(os.environ.get("DB_TIMEOUT", "5"))
    if db_timeout <= 0:
        raise ValueError("DB_TIMEOUT must be greater than 0")
    db_retries = int(os.environ.get("DB_RETRIES", "3"))
    if db_retries < 0:
        raise ValueError("DB_RETRIES must be 0 or greater")
    return {"db_path": db_path, "db_timeout": db_timeout, "db_retries": db_retries}


def _ip(value: str, name: str) -> IPv4Address:
    try:
        return IPv4Address(value.strip())
    except AddressValueError as e:
        raise ValueError(f"{name}: {e}")


class ServiceConfig:
    def __init__(
        self,
        db_path: str,
        server_ip: IPv4Address,
        network: IPv4Network,
        router_ip: IPv4Address,
        dns_ips: List[IPv4Address],
        *,
        db_timeout: float = 5.0,
        db_retries: int = 3,
    ):
        self.db_path = db_path
        self.db_timeout = db_timeout
        self.db_retries = db_retries
        self.server_ip = server_ip
        self.network = network
        self.router_ip = router_ip
        self.dns_ips = dns_ips

    def __repr__(self) -> str:
        return f"ServiceConfig(db={self.db_path}, network={self.network}...)"

    def lease_config(self) -> LeaseConfig:
        return LeaseConfig(
            server_ip=self.server_ip,
            server_network=self.network,
            server_router=self.router_ip,
            dns_ips=self.dns_ips,
        )

    @classmethod
    def From_env(cls) -> "ServiceConfig":
        env_file: Optional[str] = os.environ.get("ENV_FILE", None)
        if env_file:
            return cls.From_file(env_file)

        interface_ip = _ip(os.environ.get("INTERFACE_IP", "10.11.12.254"), "INTERFACE_IP")
        interface_subnet = int(os.environ.get("INTERFACE_SUBNET", "24"))

        if interface_subnet > 31 or interface_subnet < 0:
            raise ValueError(
                "INTERFACE_SUBNET must be between 0 and 31, defaults set to 24"
            )

        interface_network = IPv4Network(
            f"{interface_ip}/{interface_subnet}", strict=False
        )
        router_ip = _ip(os.environ.get("ROUTER_IP", str(interface_ip)), "ROUTER_IP")
        if router_ip not in interface_network:
            raise ValueError(f"ROUTER_IP must be inside {interface_network}")

        dns_ips = [
            _ip(ip, "DNS_IPS")
            for ip in os.environ.get("DNS_IPS", "1.1.1.1,8.8.8.8").split(",")
            if ip.strip()
        ]

        return cls(
            server_ip=interface_ip,
            network=interface_network,
            router_ip=router_ip,
            dns_ips=dns_ips,
            **_db_settings(),
        )

    @classmethod
    def From_file(cls, path: str) -> "ServiceConfig":
        """
        Load the network settings from a JSON environment file with the keys
        network_addr, subnet_mask, default_gateway, dhcp_svr_identifier and
        dns_svr_addr. Database settings still come from the environment.
        """
        if not os.path.isfile(path):
            raise ValueError(f"ENV_FILE {path} does not exist")
        with open(path, "r", encoding="utf-8") as f:
            try:
                env = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid env file format: {e}")

        try:
            network = IPv4Network(
                f"{env['network_addr']}/{env['subnet_mask']}", strict=True
            )
            server_ip = _ip(env["dhcp_svr_identifier"], "dhcp_svr_identifier")
            router_ip = _ip(env["default_gateway"], "default_gateway")
            dns_ip = _ip(env["dns_svr_addr"], "dns_svr_addr")
        except KeyError as e:
            raise ValueError(f"Missing {e.args[0]} in env file {path}")
        except (AddressValueError, NetmaskValueError) as e:
            raise ValueError(f"Invalid network in env file {path}: {e}")

        return cls(
            server_ip=server_ip,
            network=network,
            router_ip=router_ip,
            dns_ips=[dns_ip],
            **_db_settings(),
        )
