#!/usr/bin/env python
# -*- coding: utf-8 -*-

import asyncio
import logging
import os
import signal
import sys

import uvloop

from leasestore.config import ServiceConfig
from leasestore.services import LeaseService, LeaseStore
from leasestore.services.lease import LeaseError
from leasestore.utils import on_done
from functools import partial


async def main():  # pragma: no cover
    loop = asyncio.get_running_loop()
    waiter = loop.create_future()
    logger = logging.getLogger("leasestore.__main__")
    waiter.add_done_callback(partial(on_done, logger))
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, waiter.set_result, None)

    print("Starting service")

    try:
        service_config = ServiceConfig.From_env()
    except ValueError as e:
        print(f"Invalid configuration. {e}")
        exit(2)

    store = LeaseStore(
        service_config.db_path,
        timeout=service_config.db_timeout,
        retries=service_config.db_retries,
    )

    try:
        async with LeaseService(service_config.lease_config(), store):
            await waiter
            print("Stopping service")
        print("Service Stopped")
    except LeaseError as e:
        print(f"An error occurred. {e}")
        exit(1)


if __name__ == "__main__":
    log_level = os.environ.get("LOG_LEVEL", "ERROR").upper()
    logging.basicConfig(stream=sys.stdout, level=log_level)
    uvloop.install()
    asyncio.run(main(), debug=log_level == "DEBUG")
