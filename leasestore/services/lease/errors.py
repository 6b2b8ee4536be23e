#!/usr/bin/env python
# -*- coding: utf-8 -*-

from typing import Optional


class LeaseError(Exception):
    pass


class AddressConflict(LeaseError):
    """IP address is actively leased to a different MAC address."""

    def __init__(self, ip_addr: str, mac_addr: Optional[str] = None) -> None:
        self.ip_addr = ip_addr
        self.mac_addr = mac_addr
        holder = f" by {mac_addr}" if mac_addr else ""
        super().__init__(f"{ip_addr} is already leased{holder}")


class NotFound(LeaseError):
    def __init__(self, mac_addr: str) -> None:
        self.mac_addr = mac_addr
        super().__init__(f"No active lease for {mac_addr}")


class StorageFailure(LeaseError):
    pass


class AddressUnavailable(LeaseError):
    pass
