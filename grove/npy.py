"""This module reads and writes arrays in the NumPy ``.npy`` binary format.

A file consists of a fixed preamble (the magic string ``\\x93NUMPY``, a major and a
minor version byte and a little-endian header length), an ASCII header holding a
Python dictionary literal with the keys ``descr``, ``fortran_order`` and ``shape``,
and finally the raw array payload. The header is padded with spaces and terminated
by a newline so that the payload starts at a multiple of 64 bytes.

All files are written with format version 3.0. Versions 1.0, 2.0 and 3.0 can be
read. The header is parsed by locating the three keys in the text rather than by
evaluating it, so only the subset of headers described above is understood.

Every function taking a file accepts either a binary file-like object positioned
at the right offset or a file system path, which is opened (and closed) for the
duration of the call.

"""
import operator
import os
import struct
import sys
import warnings
from contextlib import contextmanager
from functools import reduce
from typing import NamedTuple, Tuple

import numpy as np
from numcodecs.compat import ensure_contiguous_ndarray, ensure_text

from grove.config import config
from grove.errors import FormatError
from grove.util import normalize_shape


MAGIC = b'\x93NUMPY'
MAGIC_LENGTH = len(MAGIC)
HEADER_ALIGNMENT = 64

BYTEORDER_LITTLE = '<'
BYTEORDER_BIG = '>'
BYTEORDER_NONE = '|'
BYTEORDER_HOST = BYTEORDER_LITTLE if sys.byteorder == 'little' else BYTEORDER_BIG
_BYTEORDERS = (BYTEORDER_LITTLE, BYTEORDER_BIG, BYTEORDER_NONE)


class Version(NamedTuple):
    major: int
    minor: int


VERSION_1_0 = Version(1, 0)
VERSION_2_0 = Version(2, 0)
VERSION_3_0 = Version(3, 0)
SUPPORTED_VERSIONS = (VERSION_1_0, VERSION_2_0, VERSION_3_0)

# all files are written with the newest version
WRITE_VERSION = VERSION_3_0


def kind_size_multiplier(kind: str) -> int:
    """Bytes per unit of the size given in a descriptor; unicode strings count code
    points of 4 bytes each."""
    if kind == 'U':
        return 4
    return 1


class Dtype(NamedTuple):
    """Element type of an array: byte order character, kind character and the total
    number of bytes per element."""
    byteorder: str
    kind: str
    itemsize: int

    @property
    def descr(self) -> str:
        return gen_descr(self)

    def to_numpy(self) -> np.dtype:
        return np.dtype(self.descr)


class Header(NamedTuple):
    dtype: Dtype
    fortran_order: bool = False
    shape: Tuple[int, ...] = ()

    @property
    def length(self) -> int:
        """Number of elements; a 0-dimensional array holds one."""
        return reduce(operator.mul, self.shape, 1)

    @property
    def numbytes(self) -> int:
        return self.length * self.dtype.itemsize


class NpyArray(NamedTuple):
    header: Header
    data: bytes

    def to_numpy(self) -> np.ndarray:
        """Return a read-only array viewing the loaded payload."""
        order = 'F' if self.header.fortran_order else 'C'
        flat = np.frombuffer(self.data, dtype=self.header.dtype.to_numpy(),
                             count=self.header.length)
        return flat.reshape(self.header.shape, order=order)


# The fixed table of supported scalar types, keyed by numpy kind and byte size.
# Single byte types carry no byte order.
_DTYPE_TABLE = {
    ('i', 1): Dtype(BYTEORDER_NONE, 'i', 1),
    ('i', 2): Dtype(BYTEORDER_HOST, 'i', 2),
    ('i', 4): Dtype(BYTEORDER_HOST, 'i', 4),
    ('i', 8): Dtype(BYTEORDER_HOST, 'i', 8),
    ('u', 1): Dtype(BYTEORDER_NONE, 'u', 1),
    ('u', 2): Dtype(BYTEORDER_HOST, 'u', 2),
    ('u', 4): Dtype(BYTEORDER_HOST, 'u', 4),
    ('u', 8): Dtype(BYTEORDER_HOST, 'u', 8),
    ('f', 4): Dtype(BYTEORDER_HOST, 'f', 4),
    ('f', 8): Dtype(BYTEORDER_HOST, 'f', 8),
    ('c', 8): Dtype(BYTEORDER_HOST, 'c', 8),
    ('c', 16): Dtype(BYTEORDER_HOST, 'c', 16),
}

# single byte character type used to store text as a byte array
TEXT_DTYPE = Dtype(BYTEORDER_NONE, 'i', 1)


def dtype_of(scalar_type) -> Dtype:
    """Look up the descriptor of a scalar type in the fixed dtype table.

    Parameters
    ----------
    scalar_type : type, string or numpy dtype
        Anything :func:`numpy.dtype` accepts, e.g. ``float``, ``np.int16`` or ``'u4'``.

    Integer types whose width depends on the platform (``int``, ``np.intc``,
    ``np.uintp``, ...) as well as booleans are mapped by byte size and signedness onto
    the fixed width integers. Types outside the table raise :class:`TypeError`.

    Examples
    --------
    >>> dtype_of(np.float64).descr == BYTEORDER_HOST + 'f8'
    True
    >>> dtype_of(np.int8).descr
    '|i1'

    """
    try:
        d = np.dtype(scalar_type)
    except TypeError as e:
        raise TypeError('unsupported scalar type: %r' % (scalar_type,)) from e

    kind = d.kind
    if kind == 'b':
        kind = 'u'
    try:
        return _DTYPE_TABLE[kind, d.itemsize]
    except KeyError:
        raise TypeError('unsupported scalar type: %r' % (scalar_type,)) from None


def create_header(scalar_type, shape=(), fortran_order=False) -> Header:
    return Header(dtype_of(scalar_type), bool(fortran_order), normalize_shape(shape))


def preamble_length(version: Version) -> int:
    if version.major == 1:
        return MAGIC_LENGTH + 2 + 2
    return MAGIC_LENGTH + 2 + 4


def gen_descr(dtype: Dtype) -> str:
    # no quotes
    size = dtype.itemsize // kind_size_multiplier(dtype.kind)
    return '%s%s%d' % (dtype.byteorder, dtype.kind, size)


def parse_descr(text: str) -> Dtype:
    # no quotes
    if len(text) < 3:
        raise FormatError('invalid dtype descriptor %r' % text)
    byteorder, kind = text[0], text[1]
    if byteorder not in _BYTEORDERS:
        raise FormatError('invalid byte order in dtype descriptor %r' % text)
    try:
        size = int(text[2:])
    except ValueError:
        raise FormatError('invalid item size in dtype descriptor %r' % text) from None
    return Dtype(byteorder, kind, size * kind_size_multiplier(kind))


def gen_shape(shape) -> str:
    # no parentheses
    if len(shape) == 0:
        return ''
    elif len(shape) == 1:
        return '%d,' % shape[0]
    return ', '.join('%d' % s for s in shape)


def parse_shape(text: str) -> Tuple[int, ...]:
    # no parentheses
    shape = []
    for item in text.split(','):
        item = item.strip()
        if not item:
            continue
        try:
            shape.append(int(item))
        except ValueError:
            raise FormatError('invalid shape (%s)' % text) from None
    if any(s < 0 for s in shape):
        raise FormatError('invalid shape (%s)' % text)
    return tuple(shape)


def gen_header(version: Version, header: Header) -> str:
    """Generate padded header text, including the terminating newline."""
    text = "{'descr': '%s', 'fortran_order': %s, 'shape': (%s), }" % (
        gen_descr(header.dtype),
        'True' if header.fortran_order else 'False',
        gen_shape(header.shape),
    )

    # account for the newline when aligning
    expected_length = preamble_length(version) + len(text) + 1
    padding = -expected_length % HEADER_ALIGNMENT
    return text + ' ' * padding + '\n'


def _find_value(text: str, key: str) -> str:
    loc = text.find(key)
    if loc < 0:
        raise FormatError('cannot find %s in header' % key.split(':')[0])
    return text[loc + len(key):]


def parse_header(text: str) -> Header:
    """Parse header text as produced by :func:`gen_header` (or by numpy). The key
    order does not matter."""

    # remove trailing newline, as well as surrounding whitespace
    if not text.endswith('\n'):
        raise FormatError('invalid header: missing terminating newline')
    text = text[:-1].strip(' \t')

    # descr
    rest = _find_value(text, "'descr': ")
    begin = rest.find("'")
    end = rest.find("'", begin + 1)
    if begin < 0 or end < 0:
        raise FormatError('cannot find value for descr in header')
    dtype = parse_descr(rest[begin + 1:end])

    # fortran_order
    rest = _find_value(text, "'fortran_order': ")
    fortran_order = rest[:4] == 'True'

    # shape
    rest = _find_value(text, "'shape': ")
    begin = rest.find('(')
    end = rest.find(')')
    if begin < 0 or end < begin:
        raise FormatError('cannot find value for shape in header')
    shape = parse_shape(rest[begin + 1:end])

    return Header(dtype, fortran_order, shape)


def _read_exactly(fp, size: int, what: str) -> bytes:
    data = fp.read(size)
    if len(data) != size:
        raise FormatError('unexpected end of file while reading %s' % what)
    return data


def write_magic(fp, version: Version):
    fp.write(MAGIC)
    fp.write(bytes([version.major, version.minor]))


def read_magic(fp) -> Version:
    """Check the magic string and return the format version."""
    buf = _read_exactly(fp, MAGIC_LENGTH + 2, 'magic string')
    if buf[:MAGIC_LENGTH] != MAGIC:
        raise FormatError('not a valid npy file: bad magic string %r' % buf[:MAGIC_LENGTH])
    return Version(buf[MAGIC_LENGTH], buf[MAGIC_LENGTH + 1])


def write_header(fp, version: Version, text: str):
    write_magic(fp, version)
    encoding = 'utf-8' if version == VERSION_3_0 else 'latin1'
    data = text.encode(encoding)
    if version == VERSION_1_0:
        if len(data) > 0xffff:
            raise ValueError('header of %d bytes does not fit in format version 1.0'
                             % len(data))
        fp.write(struct.pack('<H', len(data)))
    else:
        fp.write(struct.pack('<I', len(data)))
    fp.write(data)


def _check_alignment(version: Version, header_length: int):
    total = preamble_length(version) + header_length
    if total % HEADER_ALIGNMENT:
        msg = ('npy header is not aligned: preamble and header span %d bytes, '
               'not a multiple of %d' % (total, HEADER_ALIGNMENT))
        if config.get('npy.strict_alignment'):
            raise FormatError(msg)
        warnings.warn(msg, UserWarning, stacklevel=4)


def read_header(fp) -> str:
    """Read the preamble and return the raw header text."""
    version = read_magic(fp)
    if version == VERSION_1_0:
        length_format = '<H'
    elif version in (VERSION_2_0, VERSION_3_0):
        length_format = '<I'
    else:
        raise FormatError('unsupported npy format version %d.%d' % version)

    raw_length = _read_exactly(fp, struct.calcsize(length_format), 'header length')
    header_length, = struct.unpack(length_format, raw_length)
    _check_alignment(version, header_length)

    raw = _read_exactly(fp, header_length, 'header')
    encoding = 'utf-8' if version == VERSION_3_0 else 'latin1'
    try:
        return ensure_text(raw, encoding)
    except UnicodeDecodeError as e:
        raise FormatError('header is not valid %s text' % encoding) from e


@contextmanager
def _open_file(fp, mode):
    attr = 'read' if 'r' in mode else 'write'
    if hasattr(fp, attr):
        yield fp
    else:
        with open(os.fspath(fp), mode) as f:
            yield f


def check_header(expected: Header, loaded: Header, exact=True):
    """Raise :class:`FormatError` unless `loaded` matches `expected`. With
    ``exact=False`` only dtype and number of elements are compared."""
    if exact:
        match = expected == loaded
    else:
        match = expected.dtype == loaded.dtype and expected.length == loaded.length
    if not match:
        raise FormatError('header mismatch: expected %r, found %r' % (expected, loaded))


def save(fp, header: Header, data):
    """Write `header` followed by the payload `data`.

    Parameters
    ----------
    fp : file-like or path
        Destination, opened for binary writing if a path.
    header : Header
        Description of the payload.
    data : bytes-like or contiguous array
        Exactly ``header.numbytes`` bytes, already laid out in the declared order.
        The payload is written verbatim.

    """
    payload = ensure_contiguous_ndarray(data)
    if payload.nbytes != header.numbytes:
        raise ValueError('payload holds %d bytes, header describes %d bytes'
                         % (payload.nbytes, header.numbytes))
    with _open_file(fp, 'wb') as f:
        write_header(f, WRITE_VERSION, gen_header(WRITE_VERSION, header))
        f.write(payload)


def load_header(fp) -> Header:
    """Read and parse the header. A file-like `fp` must be positioned at the start of
    the file and is left positioned at the start of the payload."""
    with _open_file(fp, 'rb') as f:
        return parse_header(read_header(f))


def load_data(fp, out, numbytes=None):
    """Read `numbytes` bytes of payload into the writable buffer `out`. `fp` must be
    positioned at the start of the payload."""
    buf = ensure_contiguous_ndarray(out)
    if not buf.flags.writeable:
        raise ValueError('destination buffer is read-only')
    view = memoryview(buf.view('u1'))
    if numbytes is None:
        numbytes = len(view)
    if numbytes > len(view):
        raise ValueError('destination buffer holds %d bytes, %d required'
                         % (len(view), numbytes))

    read = 0
    while read < numbytes:
        n = fp.readinto(view[read:numbytes])
        if not n:
            raise FormatError('unexpected end of file while reading data')
        read += n


def load(fp) -> NpyArray:
    """Load header and payload into memory."""
    with _open_file(fp, 'rb') as f:
        header = load_header(f)
        data = _read_exactly(f, header.numbytes, 'data')
    return NpyArray(header, data)


def load_into(fp, header: Header, out, exact=True) -> Header:
    """Load the payload into the pre-allocated buffer `out`, after checking the file
    header against `header` (see :func:`check_header`)."""
    with _open_file(fp, 'rb') as f:
        loaded = load_header(f)
        check_header(header, loaded, exact=exact)
        load_data(f, out, loaded.numbytes)
    return loaded


def save_scalar(fp, value, scalar_type=None):
    if scalar_type is None:
        scalar_type = np.asarray(value).dtype
    header = create_header(scalar_type)
    arr = np.asarray(value, dtype=header.dtype.to_numpy())
    if arr.ndim != 0:
        raise ValueError('expected a scalar value, found %d dimensions' % arr.ndim)
    save(fp, header, arr)


def load_scalar(fp, scalar_type):
    expected = dtype_of(scalar_type)
    with _open_file(fp, 'rb') as f:
        header = load_header(f)
        if header.shape:
            raise FormatError('array is not scalar (0-dimensional)')
        if header.dtype != expected:
            raise FormatError('array dtype does not match: expected %r, found %r'
                              % (expected.descr, header.dtype.descr))
        out = np.empty((), dtype=expected.to_numpy())
        load_data(f, out, header.numbytes)
    return out.astype(np.dtype(scalar_type))[()]


def save_vector(fp, values, scalar_type=None):
    if scalar_type is None:
        arr = np.asarray(values)
    else:
        arr = np.asarray(values, dtype=np.dtype(scalar_type))
    if arr.ndim != 1:
        raise ValueError('expected a 1-dimensional sequence, found %d dimensions'
                         % arr.ndim)
    header = create_header(arr.dtype, shape=arr.shape)
    save(fp, header, np.ascontiguousarray(arr, dtype=header.dtype.to_numpy()))


def load_vector(fp, scalar_type) -> np.ndarray:
    expected = dtype_of(scalar_type)
    with _open_file(fp, 'rb') as f:
        header = load_header(f)
        if len(header.shape) != 1:
            raise FormatError('array is not 1-dimensional')
        if header.dtype != expected:
            raise FormatError('array dtype does not match: expected %r, found %r'
                              % (expected.descr, header.dtype.descr))
        out = np.empty(header.shape, dtype=expected.to_numpy())
        load_data(f, out, header.numbytes)
    return out.astype(np.dtype(scalar_type), copy=False)


def save_text(fp, text):
    """Store text, encoded as UTF-8, as a 1-dimensional array of single bytes."""
    if isinstance(text, str):
        data = text.encode('utf-8')
    else:
        data = bytes(text)
    header = Header(TEXT_DTYPE, False, (len(data),))
    save(fp, header, data)


def load_text(fp, encoding='utf-8'):
    """Load text stored by :func:`save_text`. With ``encoding=None`` the raw bytes are
    returned."""
    with _open_file(fp, 'rb') as f:
        header = load_header(f)
        if len(header.shape) != 1:
            raise FormatError('array is not 1-dimensional')
        if header.dtype != TEXT_DTYPE:
            raise FormatError('array dtype does not match: expected %r, found %r'
                              % (TEXT_DTYPE.descr, header.dtype.descr))
        data = _read_exactly(f, header.numbytes, 'data')
    if encoding is None:
        return data
    return data.decode(encoding)


def header_for_array(arr) -> Header:
    """Describe a numpy array; its dtype must be in the fixed dtype table. The byte
    order of the array is kept."""
    arr = np.asarray(arr)
    dtype = dtype_of(arr.dtype)
    if dtype.byteorder != BYTEORDER_NONE:
        dtype = dtype._replace(byteorder=arr.dtype.str[0])
    fortran_order = bool(arr.flags.f_contiguous and not arr.flags.c_contiguous)
    return Header(dtype, fortran_order, tuple(arr.shape))


def save_array(fp, arr) -> Header:
    """Save a numpy array, in Fortran order if it is Fortran-contiguous and in C order
    otherwise."""
    arr = np.asarray(arr)
    if not (arr.flags.c_contiguous or arr.flags.f_contiguous):
        arr = np.ascontiguousarray(arr)
    header = header_for_array(arr)
    save(fp, header, arr)
    return header


def load_array(fp) -> np.ndarray:
    with _open_file(fp, 'rb') as f:
        header = load_header(f)
        order = 'F' if header.fortran_order else 'C'
        out = np.empty(header.shape, dtype=header.dtype.to_numpy(), order=order)
        load_data(f, out, header.numbytes)
    return out
