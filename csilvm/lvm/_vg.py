# csilvm/lvm/_vg.py - Volume group management
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volume group discovery, activation and creation.
"""
from glob import glob
from typing import List, Union
import logging

from csilvm import (
    CSILVM_SUBSYSTEM_LVM,
    VG_OWNER_TAG,
    CsiLvmArgumentError,
    CsiLvmCalloutError,
)

from ._exec import CommandExecutor

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_lvm(msg, *args, **kwargs):
    """A wrapper for lvm subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": CSILVM_SUBSYSTEM_LVM}, **kwargs)


# vgs report options
VGS_CMD = "vgs"
VGS_NO_HEADINGS = "--noheadings"
VGS_OPTIONS = "-o"
VGS_VG_NAME = "vg_name"
VGS_PV_COUNT = "pv_count"

VGSCAN_CMD = "vgscan"

VGCHANGE_CMD = "vgchange"
VGCHANGE_ACTIVATE_ALL = "-ay"

VGCREATE_CMD = "vgcreate"
VGCREATE_VERBOSE = "-v"
LVM_ADD_TAG = "--add-tag"


def split_devices_pattern(devices_pattern: Union[str, List[str]]) -> List[str]:
    """
    Split a comma separated device glob list into its patterns.

    :param devices_pattern: A CSV string such as ``"/dev/sdb,/dev/nvme*n1"``
                            or an already split list of patterns.
    :returns: A list of non-empty, stripped glob patterns.
    """
    if isinstance(devices_pattern, str):
        devices_pattern = devices_pattern.split(",")
    return [pattern.strip() for pattern in devices_pattern if pattern.strip()]


def expand_devices(patterns: List[str]) -> List[str]:
    """
    Expand each glob pattern in ``patterns`` and return the union of the
    matching paths, in first-seen order. A pattern that matches nothing is
    not an error.
    """
    devices = []
    for pattern in patterns:
        _log_debug_lvm("search devices: %s", pattern)
        matches = sorted(glob(pattern.strip()))
        _log_debug_lvm("found: %s", matches)
        for match in matches:
            if match not in devices:
                devices.append(match)
    return devices


class VolumeGroupManager:
    """
    Ensure that the volume group backing the driver exists and is active.
    """

    def __init__(self, executor=None):
        self.executor = executor or CommandExecutor()

    def vg_exists(self, vg_name: str) -> bool:
        """
        Test whether the volume group ``vg_name`` exists on this host.

        :returns: ``True`` if ``vgs`` reports the group, or ``False`` on any
                  failure to list it.
        """
        result = self.executor.run(
            [VGS_CMD, vg_name, VGS_NO_HEADINGS, VGS_OPTIONS, VGS_VG_NAME]
        )
        if not result.ok:
            _log_info("unable to list existing volumegroups: %s", result.output.strip())
            return False
        return vg_name == result.output.strip()

    def vg_activate(self):
        """
        Scan for volume groups and activate all of their volumes. Failures
        are logged and otherwise ignored.
        """
        result = self.executor.run([VGSCAN_CMD])
        if not result.ok:
            _log_info("unable to scan for volumegroups: %s", result.output.strip())
        result = self.executor.run([VGCHANGE_CMD, VGCHANGE_ACTIVATE_ALL])
        if not result.ok:
            _log_info("unable to activate volumegroups: %s", result.output.strip())

    def pv_count(self, vg_name: str) -> int:
        """
        Return the number of physical volumes in volume group ``vg_name``.

        :raises: ``CsiLvmCalloutError`` if ``vgs`` fails or its output cannot
                 be parsed.
        """
        output = self.executor.check(
            [VGS_CMD, vg_name, VGS_NO_HEADINGS, VGS_OPTIONS, VGS_PV_COUNT]
        )
        try:
            return int(output.strip())
        except ValueError as err:
            raise CsiLvmCalloutError(
                f"Unable to parse {VGS_CMD} pv_count output: {output.strip()!r}",
                output=output,
            ) from err

    def ensure_volume_group(
        self, vg_name: str, devices_pattern: Union[str, List[str]]
    ) -> str:
        """
        Make sure the volume group ``vg_name`` exists, creating it over the
        devices matched by ``devices_pattern`` if necessary.

        :param vg_name: The volume group name.
        :param devices_pattern: Comma separated device globs, or a list.
        :returns: The volume group name if it already existed, or the output
                  of ``vgcreate``.
        :raises: ``CsiLvmArgumentError`` if the group must be created and no
                 device pattern is given,
                 ``CsiLvmCalloutError`` if ``vgcreate`` fails.
        """
        if self.vg_exists(vg_name):
            _log_info("volumegroup: %s already exists", vg_name)
            return vg_name

        # The group may exist but be inactive.
        self.vg_activate()
        if self.vg_exists(vg_name):
            _log_info("volumegroup: %s already exists", vg_name)
            return vg_name

        patterns = split_devices_pattern(devices_pattern)
        if not patterns:
            raise CsiLvmArgumentError(f"invalid empty flag {devices_pattern!r}")

        physical_volumes = expand_devices(patterns)

        args = [VGCREATE_CMD, VGCREATE_VERBOSE, vg_name]
        args.extend(physical_volumes)
        args.extend([LVM_ADD_TAG, VG_OWNER_TAG])
        _log_info("create vg with command: %s", " ".join(args))
        return self.executor.check(args)
