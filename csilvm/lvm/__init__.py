# csilvm/lvm/__init__.py - Local node volume management
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Managers for volume groups, logical volumes, snapshots and mounts on the
current node.
"""
from ._exec import CommandExecutor, CommandResult
from ._vg import VolumeGroupManager, expand_devices, split_devices_pattern
from ._lv import LogicalVolumeManager
from ._snapshot import SnapshotManager, snapshot_size_sectors
from ._mounts import MountManager

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "VolumeGroupManager",
    "LogicalVolumeManager",
    "SnapshotManager",
    "MountManager",
    "expand_devices",
    "split_devices_pattern",
    "snapshot_size_sectors",
]
