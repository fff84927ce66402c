# csilvm/_config.py - LVM volume plugin configuration
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Driver configuration.
"""
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, replace
from os.path import exists
import logging

from ._csilvm import CsiLvmConfigError, PullPolicy

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Default configuration file path
CSILVM_CFG_PATH = "/etc/csilvm/csilvm.conf"

#: Main configuration file section
_CFG_DRIVER = "Driver"

_CFG_NAME = "Name"
_CFG_NODE_ID = "NodeId"
_CFG_VERSION = "Version"
_CFG_DEVICES_PATTERN = "DevicesPattern"
_CFG_VOLUME_GROUP = "VolumeGroup"
_CFG_NAMESPACE = "Namespace"
_CFG_PROVISIONER_IMAGE = "ProvisionerImage"
_CFG_PULL_POLICY = "PullPolicy"
_CFG_LVM_TIMEOUT = "LvmTimeout"
_CFG_SNAPSHOT_TIMEOUT = "SnapshotTimeout"
_CFG_SNAPSHOT_BUFFER = "SnapshotBufferPercentage"
_CFG_COMMAND_TIMEOUT = "CommandTimeout"

_INT_KEYS = {
    _CFG_LVM_TIMEOUT: "lvm_timeout",
    _CFG_SNAPSHOT_TIMEOUT: "snapshot_timeout",
    _CFG_SNAPSHOT_BUFFER: "snapshot_buffer_percentage",
    _CFG_COMMAND_TIMEOUT: "command_timeout",
}

_STR_KEYS = {
    _CFG_NAME: "name",
    _CFG_NODE_ID: "node_id",
    _CFG_VERSION: "version",
    _CFG_DEVICES_PATTERN: "devices_pattern",
    _CFG_VOLUME_GROUP: "vg_name",
    _CFG_NAMESPACE: "namespace",
    _CFG_PROVISIONER_IMAGE: "provisioner_image",
}


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class DriverConfig:
    """
    Immutable driver configuration.
    """

    name: str = "lvm.csi.metal-stack.io"
    node_id: str = ""
    version: str = "dev"
    devices_pattern: str = ""
    vg_name: str = "csi-lvm"
    namespace: str = "default"
    provisioner_image: str = ""
    pull_policy: PullPolicy = PullPolicy.ALWAYS
    #: Polling budget in seconds for create and delete provisioner pods
    lvm_timeout: int = 60
    #: Polling budget in seconds for snapshot provisioner pods
    snapshot_timeout: int = 600
    snapshot_buffer_percentage: int = 0
    #: Timeout in seconds for local tool invocations (0: no timeout)
    command_timeout: int = 0

    def validate(self):
        """
        Check that the configuration identifies a driver and node.

        :raises: ``CsiLvmConfigError`` if a required value is missing or a
                 numeric value is out of range.
        """
        if not self.name:
            raise CsiLvmConfigError("no driver name provided")
        if not self.node_id:
            raise CsiLvmConfigError("no node id provided")
        for attr in _INT_KEYS.values():
            if getattr(self, attr) < 0:
                raise CsiLvmConfigError(f"{attr} must not be negative")
        return self

    def with_overrides(self, **kwargs):
        """
        Return a copy of this configuration with the given fields replaced.
        """
        if "pull_policy" in kwargs:
            kwargs["pull_policy"] = PullPolicy.from_string(kwargs["pull_policy"])
        return replace(self, **kwargs)

    @classmethod
    def from_file(cls, config_file: str = CSILVM_CFG_PATH) -> "DriverConfig":
        """
        Load ``DriverConfig`` from an INI-style configuration file located at
        ``config_file``. A missing file yields the default configuration.

        :param config_file: path to csilvm.conf
        :type config_file: ``str``.
        :returns: A ``DriverConfig`` instance initialised from ``config_file``.
        :raises: ``CsiLvmConfigError`` if the file cannot be parsed.
        """
        if not exists(config_file):
            return cls()

        _log_debug("Loading configuration from '%s'", config_file)
        cfg = ConfigParser()
        # Keep key case: option names are CamelCase.
        cfg.optionxform = str
        try:
            cfg.read([config_file])
        except ConfigParserError as err:
            raise CsiLvmConfigError(
                f"Error parsing configuration file '{config_file}': {err}"
            ) from err

        values = {}
        if cfg.has_section(_CFG_DRIVER):
            section = cfg[_CFG_DRIVER]
            for key, attr in _STR_KEYS.items():
                if key in section:
                    values[attr] = section[key].strip()
            for key, attr in _INT_KEYS.items():
                if key in section:
                    try:
                        values[attr] = section.getint(key)
                    except ValueError as err:
                        raise CsiLvmConfigError(
                            f"Invalid integer value for {key}: {section[key]}"
                        ) from err
            if _CFG_PULL_POLICY in section:
                values["pull_policy"] = PullPolicy.from_string(section[_CFG_PULL_POLICY])

        return cls(**values)
