#!/usr/bin/env python
# -*- coding: utf-8 -*-

import asyncio
import os
import tempfile
import unittest
import unittest.mock
from ipaddress import IPv4Address, IPv4Network

from .config import LeaseConfig
from .errors import AddressConflict, AddressUnavailable, NotFound
from .server import LeaseService
from .store import LeaseStore


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):
    network = "10.0.0.0/29"

    async def asyncSetUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = LeaseStore(os.path.join(self.tmp.name, "dhcp.db"), timeout=1.0)
        self.config = LeaseConfig(
            server_ip=IPv4Address("10.0.0.1"),
            server_network=IPv4Network(self.network),
            server_router=IPv4Address("10.0.0.2"),
            dns_ips=[IPv4Address("10.0.0.3")],
        )
        self.service = LeaseService(self.config, self.store)
        await self.service.start()

    async def asyncTearDown(self) -> None:
        await self.service.stop()
        self.tmp.cleanup()


class TestLeaseService(ServiceTestCase):
    async def testOfferFirstFreeAddress(self):
        # .0 network, .1 server, .2 router, .3 dns, .7 broadcast
        ip = await self.service.offer("AA:BB:CC:00:11:22")
        self.assertEqual(ip, IPv4Address("10.0.0.4"))
        # offering does not lease
        self.assertIsNone(await self.service.lookup("AA:BB:CC:00:11:22"))

    async def testOfferKeepsCurrentLease(self):
        await self.service.allocate("AA:BB:CC:00:11:22", "10.0.0.6")
        ip = await self.service.offer("AA:BB:CC:00:11:22", "10.0.0.5")
        self.assertEqual(ip, IPv4Address("10.0.0.6"))

    async def testOfferRequestedAddress(self):
        ip = await self.service.offer("AA:BB:CC:00:11:22", "10.0.0.6")
        self.assertEqual(ip, IPv4Address("10.0.0.6"))

    async def testOfferIgnoresUnusableRequest(self):
        await self.service.allocate("DD:EE:FF:33:44:55", "10.0.0.4")
        for requested in ("10.0.0.4", "10.0.0.1", "192.168.0.10", "garbage"):
            ip = await self.service.offer("AA:BB:CC:00:11:22", requested)
            self.assertEqual(ip, IPv4Address("10.0.0.5"))

    async def testOfferExhausted(self):
        for i, ip in enumerate(("10.0.0.4", "10.0.0.5", "10.0.0.6")):
            await self.service.allocate(f"02:00:00:00:00:{i:02x}", ip)
        with self.assertRaises(AddressUnavailable):
            await self.service.offer("AA:BB:CC:00:11:22")

    async def testReleasedAddressIsOfferedAgain(self):
        await self.service.allocate("DD:EE:FF:33:44:55", "10.0.0.4")
        self.assertTrue(await self.service.release("DD:EE:FF:33:44:55"))
        ip = await self.service.offer("AA:BB:CC:00:11:22")
        self.assertEqual(ip, IPv4Address("10.0.0.4"))

    async def testAllocate(self):
        entry = await self.service.allocate("AA:BB:CC:00:11:22", "10.0.0.5")
        self.assertEqual(entry.mac_addr, "aa:bb:cc:00:11:22")
        self.assertEqual(await self.service.lookup_by_ip("10.0.0.5"), entry)
        self.assertEqual(await self.service.list_active(), [entry])

    async def testAllocateRejectsUnusableAddress(self):
        for ip in ("10.0.0.0", "10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.7", "10.0.1.4"):
            with self.assertRaises(AddressUnavailable):
                await self.service.allocate("AA:BB:CC:00:11:22", ip)
        self.assertEqual(await self.service.list_active(), [])

    async def testAllocateConflict(self):
        await self.service.allocate("AA:BB:CC:00:11:22", "10.0.0.5")
        with self.assertRaises(AddressConflict):
            await self.service.allocate("DD:EE:FF:33:44:55", "10.0.0.5")

    async def testConcurrentAllocate(self):
        macs = [f"02:00:00:00:00:{i:02x}" for i in range(6)]
        results = await asyncio.gather(
            *[self.service.allocate(mac, "10.0.0.5") for mac in macs],
            return_exceptions=True,
        )
        conflicts = [r for r in results if isinstance(r, AddressConflict)]
        self.assertEqual(len(conflicts), len(macs) - 1)
        self.assertEqual(len(await self.service.list_active()), 1)

    async def testConfirm(self):
        await self.service.allocate("AA:BB:CC:00:11:22", "10.0.0.5")
        self.assertTrue(await self.service.confirm("AA:BB:CC:00:11:22", "10.0.0.5"))
        self.assertFalse(await self.service.confirm("AA:BB:CC:00:11:22", "10.0.0.6"))
        with self.assertRaises(NotFound):
            await self.service.confirm("DD:EE:FF:33:44:55", "10.0.0.5")

    async def testIsIPAvailable(self):
        await self.service.allocate("AA:BB:CC:00:11:22", "10.0.0.5")
        self.assertTrue(await self.service.is_ip_available("10.0.0.6"))
        self.assertTrue(await self.service.is_ip_available("10.0.0.5", "AA:BB:CC:00:11:22"))
        self.assertFalse(await self.service.is_ip_available("10.0.0.5"))
        self.assertFalse(await self.service.is_ip_available("10.0.0.5", "DD:EE:FF:33:44:55"))
        self.assertFalse(await self.service.is_ip_available("10.0.0.1"))

    async def testReleaseUnknown(self):
        self.assertFalse(await self.service.release("AA:BB:CC:00:11:22"))


class TestLeaseServiceLifecycle(unittest.IsolatedAsyncioTestCase):
    async def testAsyncWith(self):
        store = unittest.mock.Mock(spec=LeaseStore)
        store.path = "dhcp.db"
        store.addresses.return_value = []
        config = LeaseConfig(IPv4Address("10.0.0.1"), IPv4Network("10.0.0.0/24"))

        async with LeaseService(config, store) as service:
            self.assertIsInstance(service, LeaseService)
            store.open.assert_called_once()
            store.close.assert_not_called()
        store.close.assert_called_once()
