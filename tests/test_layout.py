import os

import pytest

from bootimg_tool import (
    ABSENT, DTBH_MAGIC, DTBH_VERSION, FROM_FILE, ORIGINAL, SYNTHESIZED,
    BootImage, BootImageHeader, BootImageWriter, CliLogger, DtbEntry, DtbTable, LayoutEngine,
    MalformedHeaderError, MemoryContainer, MissingFileError, MissingInputError, SegmentFiles,
    SizeMismatchError, apply_config, compute_layout, create_boot_image, decode_image,
    default_signature, encode_image,
)

from conftest import pattern


@pytest.fixture
def engine():
    return LayoutEngine(CliLogger(quiet=True))


def test_compute_layout_offsets():
    header = BootImageHeader()
    header.kernel_size = 5000
    header.ramdisk_size = 3000
    layout = compute_layout(header)
    assert layout["kernel"] == 2048
    assert layout["ramdisk"] == 8192
    assert layout["second"] == 12288
    assert layout["dtbs"] == 12288
    assert layout["signature"] == 12288
    assert layout["total"] == 14336


def test_compute_layout_with_every_segment():
    header = BootImageHeader()
    header.page_size = 4096
    header.kernel_size = 4096
    header.ramdisk_size = 1
    header.second_size = 8193
    header.dtbs_size = 12288
    layout = compute_layout(header)
    assert layout["ramdisk"] == 2 * 4096
    assert layout["second"] == 3 * 4096
    assert layout["dtbs"] == 6 * 4096
    assert layout["signature"] == 9 * 4096
    assert layout["total"] == 10 * 4096


def test_compute_layout_null_page_size():
    header = BootImageHeader()
    header.page_size = 0
    with pytest.raises(MalformedHeaderError):
        compute_layout(header)


def test_segments_report_offsets_and_provenance(make_image):
    image = make_image(second=b"S" * 10)
    segments = {segment.name: segment for segment in image.segments()}
    assert segments["ramdisk"].offset == 8192
    assert segments["second"].offset == 12288
    assert segments["second"].size == 10
    assert segments["dtbs"].provenance == ABSENT
    assert segments["signature"].provenance == SYNTHESIZED


def test_update_kernel_carries_ramdisk_and_second(make_image, write_file, engine):
    ramdisk = pattern(b"ramdisk", 3000)
    second = pattern(b"second", 700)
    original = decode_image(encode_image(make_image(ramdisk=ramdisk, second=second)))
    apply_config(original, ["bootsize = 0x10000"])
    new_kernel = pattern(b"kernel2", 7000)
    files = SegmentFiles(kernel=write_file("zImage", new_kernel))

    updated = engine.open_for_update(original, files)
    assert updated.provenance["kernel"] == FROM_FILE
    assert updated.provenance["ramdisk"] == ORIGINAL
    assert updated.provenance["second"] == ORIGINAL
    assert updated.source_offsets["ramdisk"] == 8192
    assert updated.header.kernel_size == 7000
    assert updated.size == 0x10000
    # The original image is left as decoded.
    assert original.header.kernel_size == 5000

    decoded = decode_image(encode_image(updated), container_size=0x10000)
    assert decoded.kernel == new_kernel
    assert decoded.ramdisk == ramdisk
    assert decoded.second == second
    assert decoded.signature == default_signature()


def test_update_too_big_for_container(make_image, write_file, engine):
    original = decode_image(encode_image(make_image()))
    files = SegmentFiles(kernel=write_file("zImage", b"k" * 9000))
    with pytest.raises(SizeMismatchError):
        engine.open_for_update(original, files)


def test_update_same_size_kernel_fits(make_image, write_file, engine):
    original = decode_image(encode_image(make_image()))
    files = SegmentFiles(kernel=write_file("zImage", b"k" * 6000))
    updated = engine.open_for_update(original, files)
    assert updated.size == original.size


def test_update_ramdisk_only(make_image, write_file, engine):
    original = decode_image(encode_image(make_image(second=b"S" * 300)))
    apply_config(original, ["bootsize = 0x10000"])
    files = SegmentFiles(ramdisk=write_file("initrd.gz", b"r" * 5000))
    updated = engine.open_for_update(original, files)
    assert updated.kernel is None
    assert updated.provenance["kernel"] == ABSENT
    assert updated.provenance["ramdisk"] == FROM_FILE
    assert updated.provenance["second"] == ORIGINAL
    assert compute_layout(updated.header)["second"] == 2048 * (1 + 3 + 3)


def test_nothing_replaced_leaves_ramdisk_and_second_unattached(make_image, engine):
    data = encode_image(make_image(second=b"S" * 300, dtb_blobs=[b"d" * 100]))
    original = decode_image(data)
    updated = engine.open_for_update(original, SegmentFiles())

    assert updated.kernel is None
    assert updated.ramdisk is None
    assert updated.second is None
    assert updated.provenance["ramdisk"] == ABSENT
    assert updated.provenance["second"] == ABSENT
    assert updated.header.ramdisk_size == 3000
    assert updated.provenance["dtbs"] == ORIGINAL
    assert updated.signature == default_signature()

    # Written in place, the untouched regions keep their bytes.
    container = MemoryContainer(data)
    BootImageWriter(CliLogger(quiet=True)).write(updated, container)
    assert container.getvalue() == data


def test_only_second_replaced(make_image, write_file, engine):
    original = decode_image(encode_image(make_image(second=b"S" * 300)))
    files = SegmentFiles(second=write_file("stage2.img", b"s" * 200))
    updated = engine.open_for_update(original, files)
    assert updated.ramdisk is None
    assert updated.provenance["second"] == FROM_FILE
    assert updated.header.second_size == 200


def test_dtbs_copied_when_not_replaced(make_image, write_file, engine):
    original = decode_image(encode_image(make_image(dtb_blobs=[b"a" * 100, b"b" * 5000])))
    original.size = 0x10000
    files = SegmentFiles(kernel=write_file("zImage", b"k" * 9000))
    updated = engine.open_for_update(original, files)
    assert updated.provenance["dtbs"] == ORIGINAL
    assert updated.dtbs.provenance == DtbTable.DECODED
    assert [e.offset for e in updated.dtbs.entries] == [2048, 4096]
    assert updated.header.dtbs_size == 10240

    decoded = decode_image(encode_image(updated), container_size=0x10000)
    assert decoded.dtbs.blobs == [b"a" * 100, b"b" * 5000]


def test_dtbs_synthesized_from_prefix(make_image, write_file, engine, tmp_path):
    entries = [DtbEntry(chip_id=0x1cfc, hw_rev=idx, offset=0x1234, dtb_size=1) for idx in range(2)]
    write_file("platform.dtbh", DtbTable(DTBH_MAGIC, DTBH_VERSION, entries).encode_header())
    write_file("platform.dtb_p0", b"a" * 100)
    write_file("platform.dtb_p1", b"b" * 5000)
    original = decode_image(encode_image(make_image()))
    original.size = 0x10000

    files = SegmentFiles(dtbs=os.path.join(str(tmp_path), "platform"))
    updated = engine.open_for_update(original, files)
    assert updated.provenance["dtbs"] == SYNTHESIZED
    assert [e.offset for e in updated.dtbs.entries] == [2048, 4096]
    assert [e.dtb_size for e in updated.dtbs.entries] == [100, 5000]
    assert updated.header.dtbs_size == 10240


def test_dtbs_prefix_missing_blob(make_image, write_file, engine, tmp_path):
    entries = [DtbEntry(), DtbEntry()]
    write_file("platform.dtbh", DtbTable(DTBH_MAGIC, DTBH_VERSION, entries).encode_header())
    write_file("platform.dtb_p0", b"a")
    original = decode_image(encode_image(make_image()))
    with pytest.raises(MissingFileError) as excinfo:
        engine.open_for_update(original, SegmentFiles(dtbs=os.path.join(str(tmp_path), "platform")))
    assert excinfo.value.subject.endswith("platform.dtb_p1")


def test_open_for_create_requires_kernel_and_ramdisk(write_file, engine):
    kernel = write_file("zImage", b"k")
    with pytest.raises(MissingInputError):
        engine.open_for_create(BootImage(), SegmentFiles(kernel=kernel))
    with pytest.raises(MissingInputError):
        engine.open_for_create(BootImage(), SegmentFiles(ramdisk=kernel))


def test_open_for_create_sizes_fresh_image(write_file, engine):
    files = SegmentFiles(kernel=write_file("zImage", b"k" * 5000),
                         ramdisk=write_file("initrd.gz", b"r" * 3000))
    image = engine.open_for_create(BootImage(), files)
    assert image.size == 14336
    assert image.second is None
    image.check()


def test_create_without_ramdisk_touches_nothing(write_file, tmp_path):
    kernel = write_file("zImage", b"k" * 100)
    target = os.path.join(str(tmp_path), "boot.img")
    before = sorted(os.listdir(str(tmp_path)))
    with pytest.raises(MissingInputError):
        create_boot_image(target, SegmentFiles(kernel=kernel), logger=CliLogger(quiet=True))
    assert sorted(os.listdir(str(tmp_path))) == before


def test_create_with_missing_kernel_file(write_file, tmp_path):
    ramdisk = write_file("initrd.gz", b"r" * 100)
    target = os.path.join(str(tmp_path), "boot.img")
    with pytest.raises(MissingFileError):
        create_boot_image(target, SegmentFiles(kernel=os.path.join(str(tmp_path), "nope"), ramdisk=ramdisk),
                          logger=CliLogger(quiet=True))
    assert not os.path.exists(target)
    assert not os.path.exists(target + ".tmp")


def test_create_bootsize_too_small(write_file, tmp_path):
    files = SegmentFiles(kernel=write_file("zImage", b"k" * 5000),
                         ramdisk=write_file("initrd.gz", b"r" * 3000))
    target = os.path.join(str(tmp_path), "boot.img")
    with pytest.raises(SizeMismatchError):
        create_boot_image(target, files, ["bootsize = 0x2000"], logger=CliLogger(quiet=True))
    assert not os.path.exists(target)


def test_create_writes_file(write_file, tmp_path):
    kernel = pattern(b"kernel", 5000)
    ramdisk = pattern(b"ramdisk", 3000)
    files = SegmentFiles(kernel=write_file("zImage", kernel), ramdisk=write_file("initrd.gz", ramdisk))
    target = os.path.join(str(tmp_path), "boot.img")
    image = create_boot_image(target, files, ["pagesize = 4096", "name = fresh"], logger=CliLogger(quiet=True))

    assert image.size == 5 * 4096
    assert not os.path.exists(target + ".tmp")
    with open(target, "rb") as f:
        data = f.read()
    assert len(data) == 5 * 4096
    decoded = decode_image(data)
    assert decoded.header.page_size == 4096
    assert decoded.header.name_text == "fresh"
    assert decoded.kernel == kernel
    assert decoded.ramdisk == ramdisk
