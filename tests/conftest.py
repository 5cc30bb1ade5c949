import os
from typing import List, Optional

import pytest

from bootimg_tool import (
    DTBH_MAGIC, DTBH_VERSION, FROM_FILE, SYNTHESIZED,
    BootImage, DtbEntry, DtbTable, compute_layout, default_signature,
)


def pattern(tag: bytes, size: int) -> bytes:
    """Non-zero filler so that misplaced bytes are easy to spot."""
    return (tag * (size // len(tag) + 1))[:size]


@pytest.fixture
def make_image():
    """Factory building an in-memory image whose size is its own layout total."""
    def _make(kernel: bytes = pattern(b"K", 5000), ramdisk: bytes = pattern(b"R", 3000),
              second: Optional[bytes] = None, dtb_blobs: Optional[List[bytes]] = None,
              page_size: int = 2048, name: str = "test.img") -> BootImage:
        image = BootImage(name=name)
        header = image.header
        header.page_size = page_size
        header.kernel_addr = 0x10008000
        header.ramdisk_addr = 0x11000000
        header.second_addr = 0x10f00000
        header.tags_addr = 0x10000100
        header.set_name(b"unit")
        header.set_cmdline(b"console=ttySAC2,115200")

        header.kernel_size = len(kernel)
        image.attach("kernel", kernel, FROM_FILE)
        header.ramdisk_size = len(ramdisk)
        image.attach("ramdisk", ramdisk, FROM_FILE)
        if second:
            header.second_size = len(second)
            image.attach("second", second, FROM_FILE)
        if dtb_blobs:
            entries = [DtbEntry(chip_id=0x1cfc, platform_id=0x50a6, hw_rev=idx) for idx in range(len(dtb_blobs))]
            template = DtbTable(DTBH_MAGIC, DTBH_VERSION, entries)
            table = DtbTable.synthesize(template, dtb_blobs, page_size)
            header.dtbs_size = table.segment_size(page_size)
            image.attach("dtbs", table, SYNTHESIZED)
        image.attach("signature", default_signature(), SYNTHESIZED)
        image.size = compute_layout(header)["total"]
        return image
    return _make


@pytest.fixture
def write_file(tmp_path):
    """Factory writing `data` to `tmp_path/name` and returning the path as a string."""
    def _write(name: str, data: bytes) -> str:
        path = os.path.join(str(tmp_path), name)
        with open(path, "wb") as f:
            f.write(data)
        return path
    return _write
