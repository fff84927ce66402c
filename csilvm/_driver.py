# csilvm/_driver.py - LVM volume plugin driver
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
The driver object used by the protocol adapters.
"""
from typing import Mapping, Optional
import logging

from ._csilvm import (
    ActionType,
    CsiLvmArgumentError,
)
from ._config import DriverConfig
from .lvm import (
    CommandExecutor,
    VolumeGroupManager,
    LogicalVolumeManager,
    SnapshotManager,
    MountManager,
)
from .provisioner import VolumeAction, Dispatcher

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

_SNAPSHOT_ACTIONS = (ActionType.CREATE_SNAPSHOT, ActionType.RESTORE_SNAPSHOT)


class LvmDriver:
    """
    Entry point for volume operations on the current node and for
    delegating operations to other nodes.

    Operations on the same volume group or logical volume are not
    serialized here: callers must not run them concurrently.
    """

    # pylint: disable=too-many-arguments
    def __init__(self, config: DriverConfig, executor=None, pod_client=None, clock=None):
        """
        Initialise a new ``LvmDriver``.

        :param config: The validated driver configuration.
        :param executor: Command executor for local tools; a
                         ``CommandExecutor`` is created if not given.
        :param pod_client: ``PodClient`` for provisioner pods, required only
                           to dispatch actions.
        :param clock: Clock for provisioner pod polling.
        """
        self.config = config.validate()
        self.executor = executor or CommandExecutor(timeout=config.command_timeout)
        self.vgs = VolumeGroupManager(self.executor)
        self.lvs = LogicalVolumeManager(self.executor, self.vgs)
        self.snapshots = SnapshotManager(self.executor, self.vgs, self.lvs)
        self.mounts = MountManager(self.executor)
        self.pod_client = pod_client
        self.clock = clock

        _log_info("Driver: %s", config.name)
        _log_info("Version: %s", config.version)
        _log_info("pullpolicy: %s", config.pull_policy)

    def ensure_volume_group(self, vg_name=None, devices_pattern=None):
        """
        Ensure the volume group exists; see
        ``VolumeGroupManager.ensure_volume_group()``. Arguments default to
        the configured volume group and device patterns.
        """
        return self.vgs.ensure_volume_group(
            vg_name or self.config.vg_name,
            devices_pattern or self.config.devices_pattern,
        )

    def create_volume(self, vg_name, lv_name, size, lvm_type):
        return self.lvs.create_volume(vg_name, lv_name, size, lvm_type)

    def extend_volume(self, vg_name, lv_name, size, is_block):
        return self.lvs.extend_volume(vg_name, lv_name, size, is_block)

    def remove_volume(self, vg_name, lv_name):
        return self.lvs.remove_volume(vg_name, lv_name)

    def create_snapshot(self, vg_name, lv_name, snapshot_name, size):
        return self.snapshots.create_snapshot(vg_name, lv_name, snapshot_name, size)

    def delete_snapshot(self, vg_name, snapshot_name):
        return self.snapshots.delete_snapshot(vg_name, snapshot_name)

    def mount_filesystem(self, lv_name, mount_path, vg_name):
        return self.mounts.mount_filesystem(lv_name, mount_path, vg_name)

    def bind_mount_block(self, lv_name, mount_path, vg_name):
        return self.mounts.bind_mount_block(lv_name, mount_path, vg_name)

    def unmount(self, target_path):
        return self.mounts.unmount(target_path)

    # pylint: disable=too-many-arguments
    def volume_action(
        self,
        action: ActionType,
        name: str,
        node_name: str,
        size: int = 0,
        lvm_type: str = "",
        snapshot_name: str = "",
        s3_parameter: Optional[Mapping[str, str]] = None,
    ) -> VolumeAction:
        """
        Return a ``VolumeAction`` for ``action`` on volume ``name`` with the
        remaining fields taken from the driver configuration.
        """
        cfg = self.config
        return VolumeAction(
            action=action,
            name=name,
            node_name=node_name,
            vg_name=cfg.vg_name,
            size=size,
            lvm_type=str(lvm_type) if lvm_type else "",
            devices_pattern=cfg.devices_pattern,
            provisioner_image=cfg.provisioner_image,
            pull_policy=cfg.pull_policy,
            namespace=cfg.namespace,
            snapshot_name=snapshot_name,
            s3_parameter=dict(s3_parameter or {}),
            snapshot_buffer_percentage=cfg.snapshot_buffer_percentage,
        )

    def retry_seconds(self, action: ActionType) -> int:
        """
        Return the polling budget configured for ``action``.
        """
        if action in _SNAPSHOT_ACTIONS:
            return self.config.snapshot_timeout
        return self.config.lvm_timeout

    def dispatch_privileged_action(self, va: VolumeAction, retry_seconds: int):
        """
        Run ``va`` in a provisioner pod on its target node; see
        ``Dispatcher.dispatch()``.

        :raises: ``CsiLvmArgumentError`` if no pod client is configured.
        """
        if self.pod_client is None:
            raise CsiLvmArgumentError("no pod client configured for dispatching")
        Dispatcher(self.pod_client, clock=self.clock).dispatch(va, retry_seconds)

    def dispatch(self, va: VolumeAction):
        """
        Run ``va`` with the configured polling budget for its action.
        """
        self.dispatch_privileged_action(va, self.retry_seconds(va.action))
