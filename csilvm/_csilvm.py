# csilvm/_csilvm.py - LVM volume plugin global definitions
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level csilvm package.
"""
from enum import Enum
import logging
import math

_log = logging.getLogger("csilvm")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# csilvm debugging subsystem mask
CSILVM_DEBUG_COMMAND = 1
CSILVM_DEBUG_LVM = 2
CSILVM_DEBUG_MOUNTS = 4
CSILVM_DEBUG_PROVISIONER = 8
CSILVM_DEBUG_ALL = (
    CSILVM_DEBUG_COMMAND
    | CSILVM_DEBUG_LVM
    | CSILVM_DEBUG_MOUNTS
    | CSILVM_DEBUG_PROVISIONER
)

# csilvm debugging subsystem names
CSILVM_SUBSYSTEM_COMMAND = "csilvm.command"
CSILVM_SUBSYSTEM_LVM = "csilvm.lvm"
CSILVM_SUBSYSTEM_MOUNTS = "csilvm.mounts"
CSILVM_SUBSYSTEM_PROVISIONER = "csilvm.provisioner"

_DEBUG_MASK_TO_SUBSYSTEM = {
    CSILVM_DEBUG_COMMAND: CSILVM_SUBSYSTEM_COMMAND,
    CSILVM_DEBUG_LVM: CSILVM_SUBSYSTEM_LVM,
    CSILVM_DEBUG_MOUNTS: CSILVM_SUBSYSTEM_MOUNTS,
    CSILVM_DEBUG_PROVISIONER: CSILVM_SUBSYSTEM_PROVISIONER,
}

_debug_subsystems = set()

#: Device node directory: logical volumes appear as /dev/<vg>/<lv>
DEV_PREFIX = "/dev"

SECTOR_SIZE = 512

#: Extra sectors added to every CoW snapshot (~5MiB) so that very small
#: origins do not exhaust their snapshot space immediately.
SNAPSHOT_RESERVE_SECTORS = 10000

#: Ownership tag added to volume groups created by this driver
VG_OWNER_TAG = "vg.metal-stack.io/csi-lvm-driver"

#: Ownership tag added to logical volumes created by this driver
LV_OWNER_TAG = "lv.metal-stack.io/csi-lvm-driver"

#: File system type used for filesystem volumes
DEFAULT_FSTYPE = "ext4"


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        # Always pass non-DEBUG messages.
        if record.levelno != logging.DEBUG:
            return True

        # Always pass DEBUG messages that aren't for a specific subsystem.
        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``csilvm`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    csilvm_log = logging.getLogger("csilvm")

    for handler in csilvm_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``csilvm`` package.

    :param mask: the logical OR of the ``CSILVM_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if mask < 0 or mask > CSILVM_DEBUG_ALL:
        raise ValueError(f"Invalid csilvm debug mask: {mask}")

    enabled_subsystems = []
    for flag, subsystem_name in _DEBUG_MASK_TO_SUBSYSTEM.items():
        if mask & flag:
            enabled_subsystems.append(subsystem_name)

    csilvm_log = logging.getLogger("csilvm")
    for handler in csilvm_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


#
# csilvm exception types
#


class CsiLvmError(Exception):
    """
    Base class for LVM volume plugin errors.
    """


class CsiLvmArgumentError(CsiLvmError):
    """
    An invalid or missing argument was passed to a csilvm API call. No
    external action has been taken.
    """


class CsiLvmConfigError(CsiLvmError):
    """
    The driver configuration is invalid.
    """


class CsiLvmPreconditionError(CsiLvmError):
    """
    The state of the host does not allow an operation to proceed.
    """


class CsiLvmNotFoundError(CsiLvmPreconditionError):
    """
    The requested object does not exist.
    """


class CsiLvmExistsError(CsiLvmPreconditionError):
    """
    The named object already exists.
    """


class CsiLvmSystemError(CsiLvmError):
    """
    An error when calling the operating system.
    """


class CsiLvmCalloutError(CsiLvmError):
    """
    An error calling out to an external program.
    """

    def __init__(self, msg: str, cmd=None, status=None, output: str = ""):
        """
        Initialise a new `CsiLvmCalloutError` exception.

        :param msg: A description of the failure.
        :param cmd: The argument list of the failed command, if any.
        :param status: The exit status of the command, if it ran.
        :param output: The combined stdout and stderr of the command.
        """
        self.cmd, self.status, self.output = cmd, status, output
        super().__init__(msg)


class CsiLvmMountError(CsiLvmCalloutError):
    """
    An error performing a mount operation.
    """

    def __init__(self, what: str, where: str, status: int, output: str):
        """
        Initialise a new `CsiLvmMountError` exception.

        :param what: The source for the failed mount operation.
        :param where: The intended mount point of the operation.
        :param status: The exit status of the mount(8) program.
        :param output: The output of mount(8).
        """
        self.what, self.where = what, where
        msg = f"Failed to mount {what} to {where} (status={status}): {output.strip()}"
        super().__init__(msg, status=status, output=output)


class CsiLvmClusterError(CsiLvmError):
    """
    An error talking to the cluster API.
    """

    def __init__(self, msg: str, status=None):
        self.status = status
        super().__init__(msg)


class CsiLvmExecutionFailedError(CsiLvmError):
    """
    A privileged provisioner pod terminated with failure. The requesting
    workload should be rescheduled to another node.
    """

    #: Signal for adapters to map this error onto a retryable status.
    reschedule = True


class CsiLvmTimeoutError(CsiLvmError):
    """
    A privileged provisioner pod did not reach a terminal state within its
    retry budget.
    """


#
# Enumerated types
#


class LvmType(Enum):
    """
    Logical volume layout types.
    """

    LINEAR = "linear"
    STRIPED = "striped"
    MIRROR = "mirror"

    def __str__(self):
        return self.value

    @classmethod
    def from_string(cls, value):
        """
        Return the ``LvmType`` for the string ``value``.

        :param value: A layout name, or an ``LvmType`` instance.
        :returns: The matching ``LvmType``.
        :raises: ``CsiLvmArgumentError`` if ``value`` names no known type.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as err:
            raise CsiLvmArgumentError(f"lvmType is incorrect: {value}") from err


class ActionType(Enum):
    """
    Actions that can be delegated to a privileged provisioner pod.
    """

    CREATE = "create"
    DELETE = "delete"
    CREATE_SNAPSHOT = "createsnapshot"
    RESTORE_SNAPSHOT = "restoresnapshot"

    def __str__(self):
        return self.value


class PullPolicy(Enum):
    """
    Image pull policies for the provisioner pod.
    """

    ALWAYS = "Always"
    IF_NOT_PRESENT = "IfNotPresent"

    def __str__(self):
        return self.value

    @classmethod
    def from_string(cls, value):
        """
        Map a configuration string to a ``PullPolicy``: "ifnotpresent" in any
        case selects ``IF_NOT_PRESENT``, anything else ``ALWAYS``.
        """
        if isinstance(value, cls):
            return value
        if value and value.strip().lower() == "ifnotpresent":
            return cls.IF_NOT_PRESENT
        return cls.ALWAYS


def size_fmt(value):
    """
    Format a size in bytes as a human readable string.

    :param value: The integer value to format.
    :returns: A human readable string reflecting value.
    """
    suffixes = ["B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB"]
    if value == 0:
        return "0B"
    magnitude = math.floor(math.log(abs(value), 1024))
    val = value / math.pow(1024, magnitude)
    if magnitude > 7:
        return f"{val:.1f}YiB"
    return f"{val:3.1f}{suffixes[magnitude]}"


def lv_device_path(vg_name, lv_name):
    """
    Return the device node path for logical volume ``lv_name`` in volume
    group ``vg_name``.
    """
    return f"{DEV_PREFIX}/{vg_name}/{lv_name}"


__all__ = [
    # Debug logging
    "CSILVM_DEBUG_COMMAND",
    "CSILVM_DEBUG_LVM",
    "CSILVM_DEBUG_MOUNTS",
    "CSILVM_DEBUG_PROVISIONER",
    "CSILVM_DEBUG_ALL",
    "CSILVM_SUBSYSTEM_COMMAND",
    "CSILVM_SUBSYSTEM_LVM",
    "CSILVM_SUBSYSTEM_MOUNTS",
    "CSILVM_SUBSYSTEM_PROVISIONER",
    "SubsystemFilter",
    "get_debug_mask",
    "set_debug_mask",
    # Constants
    "DEV_PREFIX",
    "SECTOR_SIZE",
    "SNAPSHOT_RESERVE_SECTORS",
    "VG_OWNER_TAG",
    "LV_OWNER_TAG",
    "DEFAULT_FSTYPE",
    # Exceptions
    "CsiLvmError",
    "CsiLvmArgumentError",
    "CsiLvmConfigError",
    "CsiLvmPreconditionError",
    "CsiLvmNotFoundError",
    "CsiLvmExistsError",
    "CsiLvmSystemError",
    "CsiLvmCalloutError",
    "CsiLvmMountError",
    "CsiLvmClusterError",
    "CsiLvmExecutionFailedError",
    "CsiLvmTimeoutError",
    # Types
    "LvmType",
    "ActionType",
    "PullPolicy",
    # Helpers
    "size_fmt",
    "lv_device_path",
]
