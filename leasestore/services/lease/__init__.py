#!/usr/bin/env python
# -*- coding: utf-8 -*-

__all__ = [
    "LeaseService",
    "LeaseConfig",
    "LeaseStore",
    "LeaseEntry",
    "LeaseError",
    "AddressConflict",
    "AddressUnavailable",
    "NotFound",
    "StorageFailure",
]
from .server import LeaseService
from .config import LeaseConfig
from .store import LeaseStore
from .entry import LeaseEntry
from .errors import (
    AddressConflict,
    AddressUnavailable,
    LeaseError,
    NotFound,
    StorageFailure,
)
