"""Convenience functions for storing and loading data."""
import os

from grove import npy
from grove.hierarchy import File
from grove.util import PathLike


# noinspection PyShadowingBuiltins
def open(path: PathLike, mode: str = 'a', **kwargs):
    """Convenience function to open a file using file-mode-like semantics.

    Parameters
    ----------
    path : string or os.PathLike
        Path to the directory of the store on the file system.
    mode : {'r', 'r+', 'a', 'w', 'w-', 'x'}, optional
        Persistence mode: 'r' means read only (must exist); 'r+' means
        read/write (must exist); 'a' means read/write (create if doesn't
        exist); 'w' means create (overwrite if exists); 'w-' and 'x' mean create
        (fail if exists).
    **kwargs
        Additional parameters are passed through to :class:`grove.hierarchy.File`.

    Returns
    -------
    f : :class:`grove.hierarchy.File`

    See Also
    --------
    grove.hierarchy.open_file

    """
    return File(path, mode=mode, **kwargs)


def save(path: PathLike, data):
    """Convenience function to save a NumPy array to a standalone ``.npy`` file.

    Parameters
    ----------
    path : string or os.PathLike
        Location of the file to write; an existing file is replaced.
    data : array_like
        Data to be stored; its dtype must be one of the supported scalar types.

    Returns
    -------
    header : :class:`grove.npy.Header`
        Header written to the file.

    Examples
    --------
    >>> import grove
    >>> import numpy as np
    >>> grove.save('data/example.npy', np.arange(10))
    Header(dtype=Dtype(byteorder='<', kind='i', itemsize=8), fortran_order=False, shape=(10,))
    >>> grove.load('data/example.npy')
    array([0, 1, 2, 3, 4, 5, 6, 7, 8, 9])

    """
    return npy.save_array(os.fspath(path), data)


def load(path: PathLike):
    """Load data from a standalone ``.npy`` file into memory.

    Parameters
    ----------
    path : string or os.PathLike
        Location of the file to read.

    Returns
    -------
    out : numpy.ndarray

    See Also
    --------
    save

    """
    return npy.load_array(os.fspath(path))
