import io
import struct
import zlib

import pytest
from PIL import Image

from pdf_assembler.errors import (
    MalformedJpeg,
    MalformedJpeg2000,
    MalformedPng,
    MalformedTiff,
    UnknownColorSpace,
    UnrecognizedFormat,
)
from pdf_assembler.inspector import (
    TAG_ROWS_PER_STRIP,
    inspect,
    inspect_bytes,
    inspect_file,
    iter_images,
    next_image,
    read_raw_data,
)


# ---------------------------------------------------------------- TIFF

@pytest.mark.parametrize("order", ["<", ">"])
def test_tiff_geometry_and_resolution(tiff_factory, order):
    data = tiff_factory(4, 2, [b"\x00" * 8], order=order, resolution=(300, 300))
    desc = inspect_bytes(data)

    assert desc.format == "TIFF"
    assert (desc.width, desc.height) == (4, 2)
    assert (desc.x_dpi, desc.y_dpi) == (300, 300)
    assert desc.depth == 8
    assert desc.cspace == "DeviceGray"
    assert desc.compression == "NoCompression"
    assert desc.tag(TAG_ROWS_PER_STRIP) == 2


def test_tiff_centimeter_resolution_is_rounded(tiff_factory):
    data = tiff_factory(4, 2, [b"\x00" * 8], resolution=(40, 40), unit=3)
    desc = inspect_bytes(data)
    assert (desc.x_dpi, desc.y_dpi) == (102, 102)


def test_tiff_strips_concatenate_to_payload(tiff_factory):
    strips = [bytes(range(i * 12, i * 12 + 12)) for i in range(3)]
    data = tiff_factory(4, 9, strips, rows_per_strip=3)
    desc = inspect_bytes(data)

    assert len(desc.data_ranges) == 3
    assert read_raw_data(io.BytesIO(data), desc) == b"".join(strips)


def test_tiff_photometric_and_compression_mapping(tiff_factory):
    desc = inspect_bytes(tiff_factory(2, 2, [b"\x00" * 12], photometric=2, compression=5))
    assert desc.cspace == "DeviceRGB"
    assert desc.compression == "LZWDecode"

    desc = inspect_bytes(tiff_factory(2, 2, [b"\x00" * 16], photometric=5, compression=32946))
    assert desc.cspace == "DeviceCMYK"
    assert desc.compression == "FlateDecode"


def test_tiff_colormap_becomes_palette(tiff_factory):
    # 16-bit channels: all reds, then all greens, then all blues
    colormap = [0xFFFF, 0x0000, 0x0000, 0x8080, 0x0000, 0xFFFF]
    data = tiff_factory(2, 2, [b"\x00\x01\x01\x00"], photometric=3, colormap=colormap)
    desc = inspect_bytes(data)

    assert desc.cspace == "Indexed"
    assert desc.palette == [(255, 0, 0), (0, 128, 255)]


def test_tiff_missing_width_is_malformed(tiff_factory):
    data = tiff_factory(4, 2, [b"\x00" * 8], omit=[0x100])
    with pytest.raises(MalformedTiff):
        inspect_bytes(data)


def test_tiff_rational_keeps_integer_quotient(tiff_factory):
    data = tiff_factory(4, 2, [b"\x00" * 8], extra={
        0x11A: (5, [(601, 2)]),
        0x11B: (5, [(601, 2)]),
        0x128: (3, [2]),
    })
    desc = inspect_bytes(data)
    assert desc.x_dpi == 300


def test_tiff_resolution_below_one_falls_back(tiff_factory, caplog):
    data = tiff_factory(4, 2, [b"\x00" * 8], extra={
        0x11A: (5, [(1, 2)]),
        0x11B: (5, [(1, 2)]),
    })
    desc = inspect_bytes(data)
    assert (desc.x_dpi, desc.y_dpi) == (72, 72)
    assert "Unusable resolution" in caplog.text


def test_tiff_truncated_ifd_is_malformed(tiff_factory):
    data = tiff_factory(4, 2, [b"\x00" * 8])
    with pytest.raises(MalformedTiff):
        inspect_bytes(data[:20])


def test_multi_image_tiff(tmp_path):
    path = tmp_path / "two.tif"
    first = Image.new("L", (10, 10), 0)
    second = Image.new("L", (20, 5), 255)
    first.save(path, save_all=True, append_images=[second])

    with open(path, "rb") as f:
        descs = list(iter_images(f))
    assert [(d.width, d.height) for d in descs] == [(10, 10), (20, 5)]

    desc = inspect_file(path)
    with open(path, "rb") as f:
        nxt = next_image(f, desc)
    assert nxt is not None and nxt.width == 20


def test_pillow_group4_tiff(tmp_path):
    path = tmp_path / "g4.tif"
    Image.new("1", (64, 32), 1).save(path, compression="group4", dpi=(200, 200))
    desc = inspect_file(path)

    assert desc.depth == 1
    assert desc.compression == "CCITTFaxDecode"
    assert (desc.x_dpi, desc.y_dpi) == (200, 200)


# ---------------------------------------------------------------- PNG

def test_png_indexed_palette_and_transparency(png_factory):
    data = png_factory(2, 1, 3, 8, [b"\x00\x01"],
                       plte=b"\xff\xff\xff\x00\x00\x00", trns=b"\x00")
    desc = inspect_bytes(data)

    assert desc.cspace == "Indexed"
    assert len(desc.palette) == 2
    assert desc.palette == [(255, 255, 255), (0, 0, 0)]
    assert desc.trans == [0]


def test_png_gray_and_rgb_keys(png_factory):
    gray = inspect_bytes(png_factory(1, 1, 0, 8, [b"\x10"], trns=b"\x00\x10"))
    assert gray.trans == [16]

    rgb = inspect_bytes(png_factory(1, 1, 2, 8, [b"\x01\x02\x03"], trns=b"\x00\x01\x00\x02\x00\x03"))
    assert rgb.cspace == "DeviceRGB"
    assert rgb.trans == [1, 2, 3]


def test_png_phys_resolution(png_factory):
    # 11811 pixels per meter is 300 dpi
    desc = inspect_bytes(png_factory(1, 1, 0, 8, [b"\x00"], phys=(11811, 11811, 1)))
    assert (desc.x_dpi, desc.y_dpi) == (300, 300)


def test_png_aspect_ratio_only_keeps_default_resolution(png_factory):
    desc = inspect_bytes(png_factory(1, 1, 0, 8, [b"\x00"], phys=(1, 1, 0)))
    assert (desc.x_dpi, desc.y_dpi) == (72, 72)


def test_png_idat_ranges_concatenate(png_factory):
    rows = [bytes(range(16))] * 16
    data = png_factory(16, 16, 0, 8, rows, idat_parts=3)
    desc = inspect_bytes(data)

    assert len(desc.data_ranges) == 3
    payload = read_raw_data(io.BytesIO(data), desc)
    assert payload == zlib_payload(rows)


def zlib_payload(rows):
    return zlib.compress(b"".join(b"\x00" + r for r in rows), 9)


def test_png_alpha_and_interlace_flags(png_factory):
    desc = inspect_bytes(png_factory(1, 1, 6, 8, [b"\x00\x00\x00\xff"], interlace=1))
    assert desc.alpha
    assert desc.interlaced


def test_png_without_idat_is_malformed(png_factory):
    data = png_factory(1, 1, 0, 8, [b"\x00"])
    start = data.index(b"IDAT") - 4
    end = start + 12 + struct.unpack(">I", data[start:start + 4])[0]
    with pytest.raises(MalformedPng):
        inspect_bytes(data[:start] + data[end:])


# ---------------------------------------------------------------- JPEG

def test_jpeg_with_jfif(jpeg_bytes):
    desc = inspect_bytes(jpeg_bytes(size=(64, 48), dpi=(150, 150)))
    assert desc.format == "JPEG"
    assert (desc.width, desc.height) == (64, 48)
    assert (desc.x_dpi, desc.y_dpi) == (150, 150)
    assert desc.cspace == "DeviceRGB"
    assert desc.depth == 8
    assert desc.whole_file


def test_jpeg_grayscale(jpeg_bytes):
    desc = inspect_bytes(jpeg_bytes(mode="L"))
    assert desc.cspace == "DeviceGray"
    assert desc.components == 1


def test_jpeg_whole_file_is_payload(jpeg_bytes):
    data = jpeg_bytes()
    desc = inspect(io.BytesIO(data))
    assert read_raw_data(io.BytesIO(data), desc) == data


def test_jpeg_without_frame_header():
    with pytest.raises(MalformedJpeg):
        inspect_bytes(b"\xff\xd8\xff\xd9")


# ---------------------------------------------------------------- JPEG2000

def test_jp2_header_and_color(jp2_factory):
    desc = inspect_bytes(jp2_factory(120, 80, components=3, enum_cs=16))
    assert desc.format == "JPEG2000"
    assert (desc.width, desc.height) == (120, 80)
    assert desc.cspace == "DeviceRGB"
    assert desc.depth == 8
    assert desc.compression == "JPXDecode"


def test_jp2_gray_with_extended_length(jp2_factory):
    desc = inspect_bytes(jp2_factory(10, 20, components=1, enum_cs=17, extended_ihdr=True))
    assert (desc.width, desc.height) == (10, 20)
    assert desc.cspace == "DeviceGray"


def test_jp2_bad_header_length_is_reported():
    ihdr = struct.pack(">I", 18) + b"ihdr" + b"\x00" * 10
    data = b"\x00\x00\x00\x0cjP  \r\n\x87\n" + struct.pack(">I", len(ihdr) + 8) + b"jp2h" + ihdr
    with pytest.raises(MalformedJpeg2000, match="ihdr box has length 10"):
        inspect_bytes(data)


def test_jp2_unknown_color_space(jp2_factory):
    with pytest.raises(UnknownColorSpace):
        inspect_bytes(jp2_factory(10, 10, enum_cs=12))


def test_jp2_without_header_box():
    data = b"\x00\x00\x00\x0cjP  \r\n\x87\n" + b"\x00" * 16
    with pytest.raises(MalformedJpeg2000):
        inspect_bytes(data)


def test_unrecognized_format():
    with pytest.raises(UnrecognizedFormat):
        inspect_bytes(b"GIF89a" + b"\x00" * 20)
