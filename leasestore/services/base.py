#!/usr/bin/env python
# -*- coding: utf-8 -*-
import abc


class BaseService(abc.ABC):  # pragma: no cover

    """
    Base class for leasestore services.
    """

    @abc.abstractmethod
    async def start(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def stop(self) -> None:
        raise NotImplementedError
