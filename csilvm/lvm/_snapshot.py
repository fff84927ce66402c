# csilvm/lvm/_snapshot.py - LVM2 copy-on-write snapshot management
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
LVM2 copy-on-write snapshots of driver volumes.
"""
import logging

from csilvm import (
    CSILVM_SUBSYSTEM_LVM,
    SECTOR_SIZE,
    SNAPSHOT_RESERVE_SECTORS,
    CsiLvmExistsError,
    CsiLvmNotFoundError,
)

from ._exec import CommandExecutor
from ._vg import VolumeGroupManager
from ._lv import (
    LogicalVolumeManager,
    LVCREATE_CMD,
    LVCREATE_NAME,
    LVCREATE_SIZE,
    LVREMOVE_CMD,
    LVREMOVE_QUIET,
    LVREMOVE_YES,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_lvm(msg, *args, **kwargs):
    """A wrapper for lvm subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": CSILVM_SUBSYSTEM_LVM}, **kwargs)


LVCREATE_QUIET = "-q"
LVCREATE_SNAPSHOT = "-s"
LVCREATE_YES = "-y"


def snapshot_size_sectors(size):
    """
    Return the size in 512-byte sectors to reserve for a snapshot of an
    origin holding ``size`` bytes of data, including the fixed minimum
    reserve.

    :param size: The origin data size in bytes.
    :returns: The snapshot size in sectors.
    :rtype: ``int``
    """
    return size // SECTOR_SIZE + SNAPSHOT_RESERVE_SECTORS


class SnapshotManager:
    """
    Create and delete point-in-time snapshots of logical volumes.

    Snapshot names starting with "snapshot" are reserved by LVM2: callers
    must not pass them.
    """

    def __init__(self, executor=None, vg_manager=None, lv_manager=None):
        self.executor = executor or CommandExecutor()
        self.vg_manager = vg_manager or VolumeGroupManager(self.executor)
        self.lv_manager = lv_manager or LogicalVolumeManager(
            self.executor, self.vg_manager
        )

    def create_snapshot(self, vg_name, lv_name, snapshot_name, size):
        """
        Create snapshot ``snapshot_name`` of ``vg_name/lv_name``.

        :param size: The data size of the origin volume in bytes.
        :returns: The output of ``lvcreate``.
        :raises: ``CsiLvmNotFoundError`` if the volume group or origin do not
                 exist, ``CsiLvmExistsError`` if ``snapshot_name`` already
                 names a volume.
        """
        if not self.vg_manager.vg_exists(vg_name):
            raise CsiLvmNotFoundError(f"volume group {vg_name} does not exist")
        if not self.lv_manager.lv_exists(vg_name, lv_name):
            raise CsiLvmNotFoundError(f"logical volume {lv_name} does not exist")
        if self.lv_manager.lv_exists(vg_name, snapshot_name):
            raise CsiLvmExistsError(
                f"logical snapshot volume {snapshot_name} already exists"
            )

        sectors = snapshot_size_sectors(size)
        args = [
            LVCREATE_CMD,
            LVCREATE_QUIET,
            LVCREATE_SNAPSHOT,
            f"{vg_name}/{lv_name}",
            LVCREATE_NAME,
            snapshot_name,
            LVCREATE_YES,
            LVCREATE_SIZE,
            f"{sectors}s",
        ]
        _log_info(
            "Creating snapshot %s/%s of %s (%d sectors)",
            vg_name,
            snapshot_name,
            lv_name,
            sectors,
        )
        _log_debug_lvm("lvcreate %s", " ".join(args[1:]))
        return self.executor.check(args)

    def delete_snapshot(self, vg_name, snapshot_name):
        """
        Delete snapshot ``vg_name/snapshot_name``.

        Unlike ``LogicalVolumeManager.remove_volume()`` a missing snapshot is
        an error.

        :returns: The output of ``lvremove``.
        :raises: ``CsiLvmNotFoundError`` if the volume group or snapshot do
                 not exist.
        """
        if not self.vg_manager.vg_exists(vg_name):
            raise CsiLvmNotFoundError(f"volume group {vg_name} does not exist")
        if not self.lv_manager.lv_exists(vg_name, snapshot_name):
            raise CsiLvmNotFoundError(
                f"logical snapshot volume {snapshot_name} does not exist"
            )

        args = [LVREMOVE_CMD, LVREMOVE_QUIET, LVREMOVE_YES, f"{vg_name}/{snapshot_name}"]
        _log_info("Deleting snapshot %s/%s", vg_name, snapshot_name)
        _log_debug_lvm("lvremove %s", " ".join(args[1:]))
        return self.executor.check(args)
