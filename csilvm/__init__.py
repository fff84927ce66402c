# csilvm/__init__.py - LVM volume plugin package initialisation
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
csilvm top-level package.
"""
from ._csilvm import *  # noqa: F401, F403
from ._csilvm import __all__  # noqa: F401

from ._config import DriverConfig  # noqa: F401, E402
from ._driver import LvmDriver  # noqa: F401, E402

__all__ = list(__all__) + ["DriverConfig", "LvmDriver"]

__version__ = "0.1.0"
