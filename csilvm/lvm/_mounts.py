# csilvm/lvm/_mounts.py - Volume mount support
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Format, mount and unmount driver volumes.
"""
from pathlib import Path
import logging
import os

from csilvm import (
    CSILVM_SUBSYSTEM_MOUNTS,
    DEFAULT_FSTYPE,
    CsiLvmCalloutError,
    CsiLvmMountError,
    CsiLvmSystemError,
    lv_device_path,
)

from ._exec import CommandExecutor

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_mounts(msg, *args, **kwargs):
    """A wrapper for mounts subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": CSILVM_SUBSYSTEM_MOUNTS}, **kwargs)


BLKID_CMD = "blkid"
MKFS_CMD_PREFIX = "mkfs."

MOUNT_CMD = "mount"
# Make the mount visible outside the mount namespace of this process.
MOUNT_MAKE_SHARED = "--make-shared"
MOUNT_TYPE = "-t"
MOUNT_BIND = "--bind"

UMOUNT_CMD = "umount"
UMOUNT_LAZY = "--lazy"
UMOUNT_FORCE = "--force"

#: mount(8) output marking a target that is already mounted
_ALREADY_MOUNTED = "already mounted"

#: Mode for mount points: workloads may run with any uid/gid
MOUNT_POINT_MODE = 0o777


class MountManager:
    """
    Attach driver volumes to target paths and detach them again.
    """

    def __init__(self, executor=None, fstype=DEFAULT_FSTYPE):
        self.executor = executor or CommandExecutor()
        self.fstype = fstype

    def _is_formatted(self, devpath):
        """
        Return ``True`` if ``blkid`` reports a ``self.fstype`` signature on
        ``devpath``.

        This is a plain substring match on the ``blkid`` output and does not
        verify the file system identity. If ``blkid`` cannot be run the
        device is treated as unformatted.
        """
        try:
            result = self.executor.run([BLKID_CMD, devpath])
        except CsiLvmCalloutError as err:
            _log_error("unable to check if %s is already formatted: %s", devpath, err)
            return False
        if not result.ok:
            _log_info("unable to check if %s is already formatted: %s", devpath, result.output.strip())
        return self.fstype in result.output

    def _format(self, lv_name, devpath):
        mkfs_cmd = f"{MKFS_CMD_PREFIX}{self.fstype}"
        _log_info("formatting with %s %s", mkfs_cmd, devpath)
        try:
            return self.executor.check([mkfs_cmd, devpath])
        except CsiLvmCalloutError as err:
            raise CsiLvmCalloutError(
                f"unable to format lv:{lv_name} err:{err}",
                cmd=err.cmd,
                status=err.status,
                output=err.output,
            ) from err

    def _mount(self, devpath, mount_path, mount_args):
        """
        Call mount(8) with ``mount_args`` and return its output. A target
        that is already mounted is not an error.

        :raises: ``CsiLvmMountError`` on any other mount failure.
        """
        mount_cmd = [MOUNT_CMD] + mount_args
        _log_debug_mounts("Calling %s", " ".join(mount_cmd))
        result = self.executor.run(mount_cmd)
        if not result.ok:
            if _ALREADY_MOUNTED not in result.output:
                raise CsiLvmMountError(devpath, mount_path, result.status, result.output)
            _log_info("%s is already mounted at %s", devpath, mount_path)
        return result.output

    def _chmod(self, mount_path):
        try:
            os.chmod(mount_path, MOUNT_POINT_MODE)
        except OSError as err:
            raise CsiLvmSystemError(
                f"unable to change permissions of volume mount {mount_path}: {err}"
            ) from err

    def mount_filesystem(self, lv_name, mount_path, vg_name):
        """
        Mount the file system on ``vg_name/lv_name`` at ``mount_path``,
        creating it first if the volume carries no file system signature.

        :returns: The output of mount(8).
        :raises: ``CsiLvmCalloutError`` if formatting fails,
                 ``CsiLvmMountError`` if mounting fails,
                 ``CsiLvmSystemError`` if the mount point cannot be prepared.
        """
        devpath = lv_device_path(vg_name, lv_name)

        if not self._is_formatted(devpath):
            self._format(lv_name, devpath)

        try:
            os.makedirs(mount_path, mode=MOUNT_POINT_MODE, exist_ok=True)
        except OSError as err:
            raise CsiLvmSystemError(
                f"unable to create mount directory for lv:{lv_name}: {err}"
            ) from err

        output = self._mount(
            devpath,
            mount_path,
            [MOUNT_MAKE_SHARED, MOUNT_TYPE, self.fstype, devpath, mount_path],
        )
        self._chmod(mount_path)
        _log_info("mounted %s at %s", devpath, mount_path)
        return output

    def bind_mount_block(self, lv_name, mount_path, vg_name):
        """
        Bind mount the device node of ``vg_name/lv_name`` onto the file
        ``mount_path`` for raw block access.

        :returns: The output of mount(8).
        :raises: ``CsiLvmMountError`` if mounting fails,
                 ``CsiLvmSystemError`` if the target file cannot be created.
        """
        devpath = lv_device_path(vg_name, lv_name)

        # A device node can only be bind mounted onto an existing file.
        try:
            Path(mount_path).touch()
        except OSError as err:
            raise CsiLvmSystemError(
                f"unable to create mount target for lv:{lv_name}: {err}"
            ) from err

        output = self._mount(
            devpath, mount_path, [MOUNT_MAKE_SHARED, MOUNT_BIND, devpath, mount_path]
        )
        self._chmod(mount_path)
        _log_info("bind mounted %s at %s", devpath, mount_path)
        return output

    def unmount(self, target_path):
        """
        Lazily force-unmount ``target_path``. Failures, including a target
        that is not mounted, are logged and never raised.

        :returns: The output of umount(8).
        """
        umount_cmd = [UMOUNT_CMD, UMOUNT_LAZY, UMOUNT_FORCE, target_path]
        _log_debug_mounts("Calling %s", " ".join(umount_cmd))
        try:
            result = self.executor.run(umount_cmd)
        except CsiLvmCalloutError as err:
            _log_error("unable to umount %s: %s", target_path, err)
            return ""
        if not result.ok:
            _log_error("unable to umount %s output:%s", target_path, result.output.strip())
        return result.output
