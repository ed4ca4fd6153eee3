import io
import struct

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from grove import npy
from grove.errors import FormatError
from grove.npy import Dtype, Header, Version


HOST = npy.BYTEORDER_HOST


def test_preamble_length():
    assert 10 == npy.preamble_length(Version(1, 0))
    assert 12 == npy.preamble_length(Version(2, 0))
    assert 12 == npy.preamble_length(Version(3, 0))


def test_gen_parse_shape():
    assert '' == npy.gen_shape(())
    assert '3,' == npy.gen_shape((3,))
    assert '3, 3' == npy.gen_shape((3, 3))
    assert '2, 0, 4' == npy.gen_shape((2, 0, 4))
    assert () == npy.parse_shape('')
    assert (3,) == npy.parse_shape('3,')
    assert (3, 3) == npy.parse_shape('3, 3')
    assert (3, 3) == npy.parse_shape('3,3,')
    for s in 'x,', '3, y', '-1,':
        with pytest.raises(FormatError):
            npy.parse_shape(s)


def test_gen_parse_descr():
    assert '<f8' == npy.gen_descr(Dtype('<', 'f', 8))
    assert '|i1' == npy.gen_descr(Dtype('|', 'i', 1))
    assert '>c16' == npy.gen_descr(Dtype('>', 'c', 16))
    # unicode sizes count code points
    assert '<U5' == npy.gen_descr(Dtype('<', 'U', 20))
    assert Dtype('<', 'U', 20) == npy.parse_descr('<U5')
    assert Dtype('<', 'f', 8) == npy.parse_descr('<f8')
    assert Dtype('|', 'u', 1) == npy.parse_descr('|u1')
    for d in '', '<f', 'f8', '<fx', '*f8':
        with pytest.raises(FormatError):
            npy.parse_descr(d)


@pytest.mark.parametrize('scalar_type, descr', [
    (np.int8, '|i1'),
    (np.int16, HOST + 'i2'),
    (np.int32, HOST + 'i4'),
    (np.int64, HOST + 'i8'),
    (np.uint8, '|u1'),
    (np.uint16, HOST + 'u2'),
    (np.uint32, HOST + 'u4'),
    (np.uint64, HOST + 'u8'),
    (np.float32, HOST + 'f4'),
    (np.float64, HOST + 'f8'),
    (float, HOST + 'f8'),
    (np.complex64, HOST + 'c8'),
    (np.complex128, HOST + 'c16'),
    (complex, HOST + 'c16'),
    ('>i4', HOST + 'i4'),
    (bool, '|u1'),
    (np.intc, HOST + 'i4'),
])
def test_dtype_of(scalar_type, descr):
    assert descr == npy.dtype_of(scalar_type).descr


def test_dtype_of_platform_int():
    d = npy.dtype_of(int)
    assert 'i' == d.kind
    assert np.dtype(int).itemsize == d.itemsize
    d = npy.dtype_of(np.uintp)
    assert 'u' == d.kind
    assert np.dtype(np.uintp).itemsize == d.itemsize


@pytest.mark.parametrize('scalar_type', [np.float16, object, str, 'U5', 'S3', 'M8[ns]',
                                         'not a type'])
def test_dtype_of_unsupported(scalar_type):
    with pytest.raises(TypeError):
        npy.dtype_of(scalar_type)


def test_text_dtype():
    assert '|i1' == npy.TEXT_DTYPE.descr
    assert 1 == npy.TEXT_DTYPE.itemsize


def test_header_length():
    h = Header(Dtype('<', 'f', 8), True, (3, 3))
    assert 9 == h.length
    assert 72 == h.numbytes
    assert 1 == Header(Dtype('<', 'f', 8)).length
    assert 0 == Header(Dtype('<', 'f', 8), False, (3, 0)).numbytes


def test_gen_header():
    h = Header(Dtype('<', 'f', 8), True, (3, 3))
    text = npy.gen_header(Version(3, 0), h)
    assert text.startswith("{'descr': '<f8', 'fortran_order': True, 'shape': (3, 3), }")
    assert text.endswith(' \n')
    assert 0 == (npy.preamble_length(Version(3, 0)) + len(text)) % 64

    text = npy.gen_header(Version(1, 0), Header(Dtype('|', 'i', 1), False, (5,)))
    assert text.startswith("{'descr': '|i1', 'fortran_order': False, 'shape': (5,), }")
    assert 0 == (npy.preamble_length(Version(1, 0)) + len(text)) % 64

    text = npy.gen_header(Version(2, 0), Header(Dtype('<', 'i', 4), False, ()))
    assert text.startswith("{'descr': '<i4', 'fortran_order': False, 'shape': (), }")


@pytest.mark.parametrize('shape', [(), (0,), (1,), (7,), (3, 3), (2, 3, 4),
                                   tuple(range(1, 20)), (10**12, 10**12)])
def test_gen_header_alignment(shape):
    for version in npy.SUPPORTED_VERSIONS:
        for dtype in Dtype('<', 'f', 8), Dtype('|', 'u', 1), Dtype('<', 'c', 16):
            h = Header(dtype, False, shape)
            text = npy.gen_header(version, h)
            assert 0 == (npy.preamble_length(version) + len(text)) % 64
            assert h == npy.parse_header(text)


def test_parse_header():
    h = npy.parse_header("{'descr': '<i4', 'fortran_order': False, 'shape': (2, 5), }\n")
    assert Header(Dtype('<', 'i', 4), False, (2, 5)) == h

    # key order is irrelevant
    h = npy.parse_header("{'shape': (4,), 'fortran_order': True, 'descr': '>u2'}  \n")
    assert Header(Dtype('>', 'u', 2), True, (4,)) == h

    # numpy style spacing
    h = npy.parse_header("{'descr': '<c8', 'fortran_order': False, 'shape': (), }" +
                         ' ' * 20 + '\n')
    assert Header(Dtype('<', 'c', 8), False, ()) == h


@pytest.mark.parametrize('text', [
    # no newline
    "{'descr': '<i4', 'fortran_order': False, 'shape': (2, 5), }",
    # missing keys
    "{'fortran_order': False, 'shape': (2, 5), }\n",
    "{'descr': '<i4', 'shape': (2, 5), }\n",
    "{'descr': '<i4', 'fortran_order': False, }\n",
    # malformed values
    "{'descr': '<i', 'fortran_order': False, 'shape': (2, 5), }\n",
    "{'descr': <i4, 'fortran_order': False, 'shape': (2, 5), }\n",
    "{'descr': '<i4', 'fortran_order': False, 'shape': 2, }\n",
    "{'descr': '<i4', 'fortran_order': False, 'shape': (a, b), }\n",
])
def test_parse_header_invalid(text):
    with pytest.raises(FormatError):
        npy.parse_header(text)


def test_save_layout():
    h = Header(npy.dtype_of(np.float64), True, (3, 3))
    data = np.arange(9, dtype='f8').reshape(3, 3, order='F')
    f = io.BytesIO()
    npy.save(f, h, data)
    b = f.getvalue()

    assert npy.MAGIC == b[:6]
    assert b'\x03\x00' == b[6:8]
    header_length, = struct.unpack('<I', b[8:12])
    assert 0 == (12 + header_length) % 64
    assert b'\n' == b[12 + header_length - 1:12 + header_length]
    assert 12 + header_length + 72 == len(b)
    # payload is written verbatim
    assert data.tobytes(order='F') == b[12 + header_length:]


def test_save_size_mismatch():
    h = Header(npy.dtype_of(np.float64), False, (3,))
    f = io.BytesIO()
    with pytest.raises(ValueError):
        npy.save(f, h, b'\x00' * 23)
    with pytest.raises(ValueError):
        npy.save(f, h, np.zeros(4))
    # nothing written
    assert b'' == f.getvalue()


def test_save_load_roundtrip(tmp_path, path_type):
    h = Header(npy.dtype_of(np.int16), False, (2, 3))
    data = bytes(range(12))
    fn = path_type(tmp_path / 'data.npy')
    npy.save(fn, h, data)
    assert h == npy.load_header(fn)
    a = npy.load(fn)
    assert h == a.header
    assert data == a.data
    assert_array_equal(np.frombuffer(data, dtype=h.dtype.to_numpy()).reshape(2, 3),
                       a.to_numpy())


@pytest.mark.parametrize('dtype', ['i1', 'i2', 'i4', 'i8', 'u1', 'u2', 'u4', 'u8',
                                   'f4', 'f8', 'c8', 'c16'])
@pytest.mark.parametrize('order', ['C', 'F'])
def test_array_roundtrip(dtype, order):
    rng = np.random.default_rng(42)
    raw = rng.integers(0, 256, size=2 * 3 * 4 * np.dtype(dtype).itemsize, dtype='u1')
    a = raw.view(dtype).reshape(2, 3, 4).copy(order=order)

    f = io.BytesIO()
    h = npy.save_array(f, a)
    assert (order == 'F') == h.fortran_order
    assert (2, 3, 4) == h.shape

    f.seek(0)
    b = npy.load_array(f)
    assert a.dtype == b.dtype
    assert a.shape == b.shape
    # bit-exact, including NaN payloads
    assert a.tobytes(order='A') == b.tobytes(order='A')
    if order == 'F':
        assert b.flags.f_contiguous
    else:
        assert b.flags.c_contiguous


def test_array_roundtrip_scalar_and_empty():
    for a in np.array(42, dtype='i4'), np.zeros((0,)), np.zeros((3, 0), dtype='u2'):
        f = io.BytesIO()
        npy.save_array(f, a)
        f.seek(0)
        b = npy.load_array(f)
        assert a.shape == b.shape
        assert a.dtype == b.dtype
        assert_array_equal(a, b)


def test_array_non_contiguous():
    a = np.arange(20).reshape(4, 5)[::2, 1:4]
    f = io.BytesIO()
    h = npy.save_array(f, a)
    assert not h.fortran_order
    f.seek(0)
    assert_array_equal(a, npy.load_array(f))


def test_array_byteorder():
    a = np.arange(5, dtype='>i4')
    f = io.BytesIO()
    h = npy.save_array(f, a)
    assert '>i4' == h.dtype.descr
    f.seek(0)
    b = npy.load_array(f)
    assert np.dtype('>i4') == b.dtype
    assert_array_equal(a, b)


def test_array_bool():
    a = np.array([True, False, True])
    f = io.BytesIO()
    h = npy.save_array(f, a)
    assert '|u1' == h.dtype.descr
    f.seek(0)
    assert_array_equal([1, 0, 1], npy.load_array(f))


def test_array_unsupported():
    f = io.BytesIO()
    with pytest.raises(TypeError):
        npy.save_array(f, np.array(['a', 'b']))
    with pytest.raises(TypeError):
        npy.save_array(f, np.zeros(3, dtype='f2'))
    assert b'' == f.getvalue()


def test_numpy_interop(tmp_path):
    a = np.arange(12, dtype='f8').reshape(3, 4)

    # read files written by numpy
    fn = tmp_path / 'numpy.npy'
    np.save(fn, a)
    assert_array_equal(a, npy.load_array(fn))
    fn = tmp_path / 'numpy_f.npy'
    np.save(fn, np.asfortranarray(a))
    assert npy.load_header(fn).fortran_order
    assert_array_equal(a, npy.load_array(fn))

    # numpy reads files written here
    fn = tmp_path / 'grove.npy'
    npy.save_array(fn, np.asfortranarray(a))
    b = np.load(fn)
    assert_array_equal(a, b)
    assert b.flags.f_contiguous


def test_fortran_matrix(tmp_path):
    a = np.asfortranarray(np.arange(9, dtype=np.float64).reshape(3, 3))
    fn = tmp_path / 'matrix.npy'
    npy.save_array(fn, a)
    h = npy.load_header(fn)
    assert 8 == h.dtype.itemsize
    assert (3, 3) == h.shape
    assert h.fortran_order

    out = np.empty((3, 3), dtype=np.float64, order='F')
    npy.load_into(fn, Header(npy.dtype_of(np.float64), True, (3, 3)), out)
    assert_array_equal(a, out)


def test_load_into_mismatch():
    a = np.arange(6, dtype='i4').reshape(2, 3)
    f = io.BytesIO()
    h = npy.save_array(f, a)

    out = np.empty((3, 2), dtype='i4')
    f.seek(0)
    with pytest.raises(FormatError, match='header mismatch'):
        npy.load_into(f, npy.header_for_array(out), out)

    # reshape-tolerant variant
    f.seek(0)
    loaded = npy.load_into(f, npy.header_for_array(out), out, exact=False)
    assert h == loaded
    assert_array_equal(a.reshape(3, 2), out)

    # dtype must always match
    out = np.empty((2, 3), dtype='f4')
    f.seek(0)
    with pytest.raises(FormatError):
        npy.load_into(f, npy.header_for_array(out), out, exact=False)


def test_load_data():
    a = np.arange(4, dtype='u2')
    f = io.BytesIO()
    h = npy.save_array(f, a)
    f.seek(0)
    assert h == npy.load_header(f)
    buf = bytearray(h.numbytes)
    npy.load_data(f, buf)
    assert a.tobytes() == bytes(buf)

    # destination too small
    f.seek(0)
    npy.load_header(f)
    with pytest.raises(ValueError):
        npy.load_data(f, bytearray(2), h.numbytes)

    # read-only destination
    f.seek(0)
    npy.load_header(f)
    with pytest.raises(ValueError):
        npy.load_data(f, b'\x00' * 8)


def test_scalar(tmp_path, path_type):
    fn = path_type(tmp_path / 'scalar.npy')
    npy.save_scalar(fn, 3.5)
    h = npy.load_header(fn)
    assert () == h.shape
    assert HOST + 'f8' == h.dtype.descr
    assert 3.5 == npy.load_scalar(fn, float)
    assert 3.5 == npy.load_scalar(fn, np.float64)

    with pytest.raises(FormatError):
        npy.load_scalar(fn, np.float32)

    npy.save_scalar(fn, 7, np.uint16)
    assert HOST + 'u2' == npy.load_header(fn).dtype.descr
    v = npy.load_scalar(fn, np.uint16)
    assert 7 == v
    assert np.dtype(np.uint16) == v.dtype

    npy.save_scalar(fn, True)
    assert '|u1' == npy.load_header(fn).dtype.descr
    v = npy.load_scalar(fn, bool)
    assert isinstance(v, np.bool_)
    assert v

    npy.save_scalar(fn, 1 + 2j, np.complex64)
    assert 1 + 2j == npy.load_scalar(fn, np.complex64)

    with pytest.raises(ValueError):
        npy.save_scalar(fn, [1, 2])
    with pytest.raises(TypeError):
        npy.save_scalar(fn, 'foo')


def test_scalar_from_vector():
    f = io.BytesIO()
    npy.save_vector(f, [1.0, 2.0])
    f.seek(0)
    with pytest.raises(FormatError):
        npy.load_scalar(f, float)


def test_vector(tmp_path):
    fn = tmp_path / 'vector.npy'
    npy.save_vector(fn, [1, 2, 3], np.int16)
    h = npy.load_header(fn)
    assert (3,) == h.shape
    assert HOST + 'i2' == h.dtype.descr
    v = npy.load_vector(fn, np.int16)
    assert np.dtype(np.int16) == v.dtype
    assert_array_equal([1, 2, 3], v)

    npy.save_vector(fn, [])
    assert (0,) == npy.load_header(fn).shape
    assert 0 == len(npy.load_vector(fn, float))

    with pytest.raises(FormatError):
        npy.load_vector(fn, np.int16)
    with pytest.raises(ValueError):
        npy.save_vector(fn, [[1, 2], [3, 4]])

    npy.save_array(fn, np.zeros((2, 2)))
    with pytest.raises(FormatError):
        npy.load_vector(fn, float)


def test_text(tmp_path, path_type):
    text = 'Hallo/Hello/你好'
    encoded = text.encode('utf-8')
    fn = path_type(tmp_path / 'text.npy')
    npy.save_text(fn, text)

    h = npy.load_header(fn)
    assert npy.TEXT_DTYPE == h.dtype
    assert 1 == h.dtype.itemsize
    assert (len(encoded),) == h.shape
    assert (18,) == h.shape

    assert text == npy.load_text(fn)
    assert encoded == npy.load_text(fn, encoding=None)

    npy.save_text(fn, '')
    assert (0,) == npy.load_header(fn).shape
    assert '' == npy.load_text(fn)

    npy.save_vector(fn, [1, 2], np.uint8)
    with pytest.raises(FormatError):
        npy.load_text(fn)


def _raw_file(version, text, payload=b''):
    f = io.BytesIO()
    npy.write_header(f, version, text)
    f.write(payload)
    f.seek(0)
    return f


def test_read_versions():
    a = np.arange(4, dtype='<i2')
    for version in npy.SUPPORTED_VERSIONS:
        text = npy.gen_header(version, npy.header_for_array(a))
        f = _raw_file(version, text, a.tobytes())
        assert_array_equal(a, npy.load_array(f))


def test_write_header_version_1_limit():
    f = io.BytesIO()
    with pytest.raises(ValueError):
        npy.write_header(f, Version(1, 0), ' ' * 70000 + '\n')


def test_misaligned_header():
    text = "{'descr': '<i2', 'fortran_order': False, 'shape': (2,), }\n"
    payload = np.array([1, 2], dtype='<i2').tobytes()

    f = _raw_file(Version(1, 0), text, payload)
    with pytest.warns(UserWarning, match='not aligned'):
        a = npy.load_array(f)
    assert_array_equal([1, 2], a)


@pytest.mark.usefixtures('strict_alignment')
def test_misaligned_header_strict():
    text = "{'descr': '<i2', 'fortran_order': False, 'shape': (2,), }\n"
    f = _raw_file(Version(3, 0), text, b'\x01\x00\x02\x00')
    with pytest.raises(FormatError, match='not aligned'):
        npy.load_array(f)


def test_bad_magic():
    f = io.BytesIO(b'\x93NUMPZ\x01\x00' + b'\x00' * 100)
    with pytest.raises(FormatError, match='magic'):
        npy.load_header(f)


def test_unsupported_version():
    h = Header(Dtype('<', 'f', 8), False, (1,))
    text = npy.gen_header(Version(3, 0), h)
    f = io.BytesIO()
    npy.write_magic(f, Version(4, 0))
    f.write(struct.pack('<I', len(text)) + text.encode())
    f.seek(0)
    with pytest.raises(FormatError, match='version'):
        npy.load_header(f)


def test_truncated(tmp_path):
    a = np.arange(10, dtype='f8')
    f = io.BytesIO()
    npy.save_array(f, a)
    b = f.getvalue()

    for n in 0, 4, 7, 10, 40, len(b) - 1:
        with pytest.raises(FormatError):
            npy.load(io.BytesIO(b[:n]))
        with pytest.raises(FormatError):
            npy.load_array(io.BytesIO(b[:n]))

    # header intact, payload short
    out = np.empty(10, dtype='f8')
    with pytest.raises(FormatError):
        npy.load_into(io.BytesIO(b[:-8]), npy.header_for_array(out), out)


def test_missing_file(tmp_path):
    with pytest.raises(OSError):
        npy.load_header(tmp_path / 'missing.npy')
    with pytest.raises(OSError):
        npy.save_array(tmp_path / 'missing' / 'data.npy', np.zeros(3))
