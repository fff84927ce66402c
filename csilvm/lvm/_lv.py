# csilvm/lvm/_lv.py - Logical volume management
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Logical volume creation, extension and removal.
"""
import logging

from csilvm import (
    CSILVM_SUBSYSTEM_LVM,
    LV_OWNER_TAG,
    CsiLvmArgumentError,
    CsiLvmNotFoundError,
    LvmType,
    size_fmt,
)

from ._exec import CommandExecutor
from ._vg import VolumeGroupManager, LVM_ADD_TAG

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_lvm(msg, *args, **kwargs):
    """A wrapper for lvm subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": CSILVM_SUBSYSTEM_LVM}, **kwargs)


# lvs report options
LVS_CMD = "lvs"
LVS_NO_HEADINGS = "--noheadings"
LVS_OPTIONS = "-o"
LVS_LV_NAME = "lv_name"

# lvcreate command options
LVCREATE_CMD = "lvcreate"
LVCREATE_VERBOSE = "-v"
LVCREATE_NAME = "-n"
LVCREATE_WIPE_SIGNATURES = "-W"
LVCREATE_WIPE_YES = "y"
LVCREATE_SIZE = "-L"
LVCREATE_TYPE = "--type"
LVCREATE_STRIPES = "--stripes"
LVCREATE_MIRRORS = "--mirrors"
LVCREATE_NOSYNC = "--nosync"

# lvextend command options
LVEXTEND_CMD = "lvextend"
LVEXTEND_SIZE = "-L"
LVEXTEND_NOFSCK = "-n"
LVEXTEND_RESIZEFS = "-r"

# lvremove command options
LVREMOVE_CMD = "lvremove"
LVREMOVE_QUIET = "-q"
LVREMOVE_YES = "-y"

#: Striped and mirrored layouts need at least this many physical volumes
MIN_PVS_FOR_LAYOUT = 2


def bytes_arg(size):
    """Return an LVM size argument expressing ``size`` in bytes."""
    return f"{size}b"


class LogicalVolumeManager:
    """
    Manage the logical volumes of the driver's volume group.
    """

    def __init__(self, executor=None, vg_manager=None):
        self.executor = executor or CommandExecutor()
        self.vg_manager = vg_manager or VolumeGroupManager(self.executor)

    def lv_exists(self, vg_name: str, lv_name: str) -> bool:
        """
        Test whether ``vg_name/lv_name`` exists on this host.
        """
        result = self.executor.run(
            [LVS_CMD, f"{vg_name}/{lv_name}", LVS_NO_HEADINGS, LVS_OPTIONS, LVS_LV_NAME]
        )
        if not result.ok:
            _log_info("unable to list existing volumes: %s", result.output.strip())
            return False
        return lv_name == result.output.strip()

    def create_volume(self, vg_name, lv_name, size, lvm_type):
        """
        Create logical volume ``lv_name`` of ``size`` bytes in ``vg_name``.

        If the volume group has fewer than two physical volumes the layout
        is always created as linear, whatever ``lvm_type`` requests.

        :param vg_name: The volume group to allocate from.
        :param lv_name: The name of the new logical volume.
        :param size: The size of the new volume in bytes.
        :param lvm_type: An ``LvmType`` or its string value.
        :returns: The volume name if it already existed, or the output of
                  ``lvcreate``.
        :raises: ``CsiLvmArgumentError`` for a zero size or unknown type,
                 ``CsiLvmCalloutError`` if an LVM command fails.
        """
        if self.lv_exists(vg_name, lv_name):
            _log_info("logicalvolume: %s already exists", lv_name)
            return lv_name

        if size <= 0:
            raise CsiLvmArgumentError("size must be greater than 0")

        lvm_type = LvmType.from_string(lvm_type)

        args = [
            LVCREATE_CMD,
            LVCREATE_VERBOSE,
            LVCREATE_NAME,
            lv_name,
            LVCREATE_WIPE_SIGNATURES,
            LVCREATE_WIPE_YES,
            LVCREATE_SIZE,
            bytes_arg(size),
        ]

        pvs = self.vg_manager.pv_count(vg_name)
        if pvs < MIN_PVS_FOR_LAYOUT and lvm_type != LvmType.LINEAR:
            _log_warn(
                "pvcount of %s is %d (<%d): creating %s as linear instead of %s",
                vg_name,
                pvs,
                MIN_PVS_FOR_LAYOUT,
                lv_name,
                lvm_type,
            )
            lvm_type = LvmType.LINEAR

        layout_args = {
            LvmType.LINEAR: [],
            LvmType.STRIPED: [LVCREATE_TYPE, "striped", LVCREATE_STRIPES, str(pvs)],
            LvmType.MIRROR: [LVCREATE_TYPE, "raid1", LVCREATE_MIRRORS, "1", LVCREATE_NOSYNC],
        }
        args.extend(layout_args[lvm_type])
        args.extend([LVM_ADD_TAG, LV_OWNER_TAG, vg_name])

        _log_info("Creating %s logical volume %s/%s (%s)", lvm_type, vg_name, lv_name, size_fmt(size))
        _log_debug_lvm("lvcreate %s", " ".join(args[1:]))
        return self.executor.check(args)

    def extend_volume(self, vg_name, lv_name, size, is_block):
        """
        Grow ``vg_name/lv_name`` to ``size`` bytes.

        The new size is passed to ``lvextend`` unchecked: requests that do
        not grow the volume fail or succeed as ``lvextend`` decides.

        :param is_block: ``True`` for raw block volumes (no file system
                         resize), ``False`` to also resize the file system.
        :returns: The output of ``lvextend``.
        :raises: ``CsiLvmNotFoundError`` if the volume does not exist.
        """
        if not self.lv_exists(vg_name, lv_name):
            raise CsiLvmNotFoundError(f"logical volume {lv_name} does not exist")

        args = [
            LVEXTEND_CMD,
            LVEXTEND_SIZE,
            bytes_arg(size),
            LVEXTEND_NOFSCK if is_block else LVEXTEND_RESIZEFS,
            f"{vg_name}/{lv_name}",
        ]
        _log_info("Extending logical volume %s/%s to %s", vg_name, lv_name, size_fmt(size))
        _log_debug_lvm("lvextend %s", " ".join(args[1:]))
        return self.executor.check(args)

    def remove_volume(self, vg_name, lv_name):
        """
        Remove ``vg_name/lv_name``. Removing a volume that does not exist
        succeeds.

        :returns: A not found message, or the output of ``lvremove``.
        """
        if not self.lv_exists(vg_name, lv_name):
            return f"logical volume {lv_name} not found in volumegroup {vg_name}."

        args = [LVREMOVE_CMD, LVREMOVE_QUIET, LVREMOVE_YES, f"{vg_name}/{lv_name}"]
        _log_info("Removing logical volume %s/%s", vg_name, lv_name)
        _log_debug_lvm("lvremove %s", " ".join(args[1:]))
        return self.executor.check(args)
