#!/usr/bin/env python
# -*- coding: utf-8 -*-

import asyncio
import logging
from ipaddress import IPv4Address
from typing import Union

import macaddress


def format_mac(data: Union[bytes, str]) -> str:
    """
    Format MAC address from bytes or any common text notation to string.
    :return: MAC address in format xx:xx:xx:xx:xx:xx
    :rtype: str
    :exception: ValueError
    """
    if isinstance(data, str):
        data = data.strip()
    return str(macaddress.MAC(data)).lower().replace("-", ":")


def format_ip(data: Union[IPv4Address, int, str]) -> str:
    """
    Format IPv4 address to its dotted quad notation.
    :exception: ValueError
    """
    if isinstance(data, str):
        data = data.strip()
    return IPv4Address(data).exploded


def on_done(
    logger: logging.Logger,
    future: asyncio.Future,
) -> None:
    if future.cancelled():
        return
    exception = future.exception()
    if exception:
        logger.warning(f"Exception raised in the future object: {exception}")
