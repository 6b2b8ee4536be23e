#!/usr/bin/env python
# -*- coding: utf-8 -*-
#

__all__ = ["LeaseService", "LeaseConfig", "LeaseStore"]
from .lease import LeaseService, LeaseStore
from .lease.config import LeaseConfig
