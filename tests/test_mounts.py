# tests/test_mounts.py - Mount manager tests
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import logging
import tempfile
import stat
import os

from csilvm import CsiLvmCalloutError, CsiLvmMountError
from csilvm.lvm import MountManager

from tests import FakeExecutor

log = logging.getLogger()

_BLKID_EXT4 = '/dev/data/pvc-1: UUID="0b6f3c1e" BLOCK_SIZE="4096" TYPE="ext4"\n'
_ALREADY_MOUNTED = "mount: /mnt/x: /dev/mapper/data-pvc--1 already mounted on /mnt/x.\n"


def _mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


class MountManagerTests(unittest.TestCase):
    """Test mount handling with a scripted executor"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.tmpdir = tempfile.TemporaryDirectory(suffix="_test_mounts")
        self.addCleanup(self.tmpdir.cleanup)
        self.mount_path = os.path.join(self.tmpdir.name, "mnt", "pvc-1")

    def test_mount_filesystem_formats_once(self):
        executor = (
            FakeExecutor()
            .on("blkid", status=2, output="", times=1)
            .on("blkid", output=_BLKID_EXT4)
            .on("mount", status=0, times=1)
            .on("mount", status=32, output=_ALREADY_MOUNTED)
        )
        mounts = MountManager(executor)

        mounts.mount_filesystem("pvc-1", self.mount_path, "data")
        self.assertEqual(executor.commands("mkfs.ext4"), [["mkfs.ext4", "/dev/data/pvc-1"]])
        self.assertEqual(
            executor.commands("mount"),
            [["mount", "--make-shared", "-t", "ext4", "/dev/data/pvc-1", self.mount_path]],
        )
        self.assertTrue(os.path.isdir(self.mount_path))
        self.assertEqual(_mode(self.mount_path), 0o777)

        mounts.mount_filesystem("pvc-1", self.mount_path, "data")
        self.assertEqual(len(executor.commands("mkfs.ext4")), 1)
        self.assertEqual(len(executor.commands("mount")), 2)

    def test_mount_filesystem_format_failure_raises(self):
        executor = (
            FakeExecutor()
            .on("blkid", status=2)
            .on("mkfs.ext4", status=1, output="mkfs.ext4: Device size reported to be zero.\n")
        )
        with self.assertRaises(CsiLvmCalloutError) as cm:
            MountManager(executor).mount_filesystem("pvc-1", self.mount_path, "data")
        self.assertIn("unable to format lv:pvc-1", str(cm.exception))
        self.assertEqual(executor.commands("mount"), [])

    def test_mount_filesystem_mount_failure_raises(self):
        executor = (
            FakeExecutor()
            .on("blkid", output=_BLKID_EXT4)
            .on("mount", status=32, output="mount: /mnt/x: wrong fs type, bad option.\n")
        )
        with self.assertRaises(CsiLvmMountError) as cm:
            MountManager(executor).mount_filesystem("pvc-1", self.mount_path, "data")
        self.assertEqual(cm.exception.what, "/dev/data/pvc-1")
        self.assertEqual(cm.exception.where, self.mount_path)
        self.assertEqual(cm.exception.status, 32)
        self.assertEqual(executor.commands("mkfs.ext4"), [])

    def test_mount_filesystem_other_fstype(self):
        executor = FakeExecutor().on("blkid", status=2)
        MountManager(executor, fstype="xfs").mount_filesystem("pvc-1", self.mount_path, "data")
        self.assertEqual(len(executor.commands("mkfs.xfs")), 1)
        self.assertEqual(executor.commands("mount")[0][3], "xfs")

    def test_bind_mount_block(self):
        executor = FakeExecutor()
        target = os.path.join(self.tmpdir.name, "pvc-1-block")
        MountManager(executor).bind_mount_block("pvc-1", target, "data")
        self.assertTrue(os.path.isfile(target))
        self.assertEqual(_mode(target), 0o777)
        self.assertEqual(
            executor.commands("mount"),
            [["mount", "--make-shared", "--bind", "/dev/data/pvc-1", target]],
        )
        self.assertEqual(executor.commands("mkfs.ext4"), [])

    def test_bind_mount_block_existing_target(self):
        executor = FakeExecutor().on("mount", status=32, output=_ALREADY_MOUNTED)
        target = os.path.join(self.tmpdir.name, "pvc-1-block")
        with open(target, "w", encoding="utf8") as f:
            f.write("keep")
        MountManager(executor).bind_mount_block("pvc-1", target, "data")
        with open(target, "r", encoding="utf8") as f:
            self.assertEqual(f.read(), "keep")

    def test_bind_mount_block_failure_raises(self):
        executor = FakeExecutor().on("mount", status=32, output="mount: special device does not exist.\n")
        target = os.path.join(self.tmpdir.name, "pvc-1-block")
        with self.assertRaises(CsiLvmMountError):
            MountManager(executor).bind_mount_block("pvc-1", target, "data")

    def test_unmount(self):
        executor = FakeExecutor()
        MountManager(executor).unmount(self.mount_path)
        self.assertEqual(
            executor.commands("umount"),
            [["umount", "--lazy", "--force", self.mount_path]],
        )

    def test_unmount_failure_is_not_raised(self):
        executor = FakeExecutor().on("umount", status=32, output="umount: /mnt/x: not mounted.\n")
        output = MountManager(executor).unmount(self.mount_path)
        self.assertEqual(output, "umount: /mnt/x: not mounted.\n")

    def test_unmount_callout_error_is_not_raised(self):
        class _MissingUmount(FakeExecutor):
            def run(self, args):
                raise CsiLvmCalloutError("umount not found", cmd=args)

        self.assertEqual(MountManager(_MissingUmount()).unmount(self.mount_path), "")

    def test_mount_filesystem_missing_blkid_formats(self):
        class _MissingBlkid(FakeExecutor):
            def run(self, args):
                if args[0] == "blkid":
                    raise CsiLvmCalloutError("blkid not found", cmd=args)
                return super().run(args)

        executor = _MissingBlkid()
        MountManager(executor).mount_filesystem("pvc-1", self.mount_path, "data")
        self.assertEqual(executor.commands("mkfs.ext4"), [["mkfs.ext4", "/dev/data/pvc-1"]])
        self.assertEqual(len(executor.commands("mount")), 1)
