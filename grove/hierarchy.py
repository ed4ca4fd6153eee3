import os

import numpy as np

from grove import npy
from grove.attrs import Attributes, load_attr, save_attr
from grove.errors import PathValidationError, TypeMismatchError
from grove.storage import (
    NodeKind,
    OpenState,
    StoreState,
    assert_is_node_dataset,
    assert_open,
    assert_writable,
    contains_node,
    create_file_node,
    create_node_with_intermediates,
    data_path,
    delete_file_node,
    delete_node,
    get_attribute,
    get_file_node,
    get_node,
    has_node,
    list_nodes,
    load_dataset,
    load_npy_meta,
    require_file_node,
    require_node,
    save_dataset,
)
from grove.util import TreeViewer


class _Base(object):
    """Properties shared by groups and datasets."""

    def __init__(self, node, state, cache_attrs=True):
        self._node = node
        self._state = state
        self._attrs = Attributes(node, state, cache=cache_attrs)

    @property
    def node(self):
        """The underlying :class:`grove.storage.Node` handle."""
        return self._node

    @property
    def path(self):
        """Path relative to the root of the file."""
        return self._node.relpath

    @property
    def name(self):
        """Name following h5py convention."""
        if self._node.relpath:
            # follow h5py convention: add leading slash
            return '/' + self._node.relpath
        return '/'

    @property
    def basename(self):
        """Final component of name."""
        return self.name.split('/')[-1]

    @property
    def fspath(self):
        """Directory of the node on the file system."""
        return self._node.path

    @property
    def read_only(self):
        """A boolean, True if modification operations are not permitted."""
        return self._state.read_only

    @property
    def attrs(self):
        """A MutableMapping containing user-defined attributes. Note that
        attribute values must be JSON serializable.

        Requesting the attributes creates an empty attribute file if there is none;
        on a read-only file this raises :class:`grove.errors.ReadOnlyError`."""
        get_attribute(self._node, self._state)
        return self._attrs

    def load_attr(self):
        """Load the whole attribute value of the node, which may be any JSON value."""
        return load_attr(get_attribute(self._node, self._state))

    def save_attr(self, value):
        """Replace the whole attribute value of the node."""
        assert_writable(self._state)
        save_attr(value, get_attribute(self._node, self._state))
        self._attrs.invalidate()

    def __eq__(self, other):
        return (
            isinstance(other, type(self)) and
            self._node.root == other.node.root and
            self._node.relpath == other.node.relpath
        )

    def __repr__(self):
        t = type(self)
        return '<{}.{} {!r}>'.format(t.__module__, t.__name__, self.name)


class Dataset(_Base):
    """A node holding a single array, stored as an ``.npy`` file. Should not be
    instantiated directly, use the methods of :class:`Group` instead.

    Parameters
    ----------
    node : grove.storage.Node
        Dataset node.
    state : grove.storage.StoreState
        Open state of the file the node belongs to.
    cache_attrs : bool, optional
        If True (default), user attributes will be cached for attribute read
        operations.

    """

    def __init__(self, node, state, cache_attrs=True):
        assert_is_node_dataset(node)
        super().__init__(node, state, cache_attrs=cache_attrs)

    @property
    def datapath(self):
        """Location of the ``.npy`` file."""
        return data_path(self._node)

    def load(self):
        """Load the data as a numpy array."""
        return load_dataset(self._node, self._state)

    def load_into(self, out, exact=True):
        """Load the data into the pre-allocated array `out`.

        With ``exact=True`` (default) dtype, shape and storage order of `out` must
        match the stored array, otherwise only dtype and number of elements.

        """
        assert_open(self._state)
        header = npy.header_for_array(out)
        npy.load_into(self.datapath, header, out, exact=exact)
        return out

    def save(self, data):
        """Replace the data. `data` may have any supported dtype and shape."""
        return save_dataset(self._node, data, self._state)

    def save_text(self, text):
        """Replace the data with text, stored UTF-8 encoded as a 1-dimensional array of
        single bytes."""
        assert_writable(self._state)
        npy.save_text(self.datapath, text)

    def load_text(self, encoding='utf-8'):
        assert_open(self._state)
        return npy.load_text(self.datapath, encoding=encoding)

    @property
    def header(self):
        assert_open(self._state)
        return npy.load_header(self.datapath)

    @property
    def meta(self):
        assert_open(self._state)
        return load_npy_meta(self.datapath)

    @property
    def shape(self):
        return self.header.shape

    @property
    def dtype(self):
        return self.header.dtype.to_numpy()

    @property
    def descr(self):
        return self.header.dtype.descr

    @property
    def wordsize(self):
        """Number of bytes per element."""
        return self.header.dtype.itemsize

    @property
    def fortran_order(self):
        return self.header.fortran_order


class Group(_Base):
    """A node containing other groups and datasets. Should not be instantiated
    directly, use :func:`open_file` or the methods of another group instead.

    Parameters
    ----------
    node : grove.storage.Node
        Group node, or the root node of a file.
    state : grove.storage.StoreState
        Open state of the file the node belongs to.
    cache_attrs : bool, optional
        If True (default), user attributes will be cached for attribute read
        operations.

    """

    def __init__(self, node, state, cache_attrs=True):
        super().__init__(node, state, cache_attrs=cache_attrs)
        self._cache_attrs = cache_attrs

    def _group(self, node):
        return Group(node, self._state, cache_attrs=self._cache_attrs)

    def _dataset(self, node):
        return Dataset(node, self._state, cache_attrs=self._cache_attrs)

    def has_group(self, name):
        return has_node(self._node, name, self._state, NodeKind.GROUP)

    def get_group(self, name):
        return self._group(get_node(self._node, name, self._state, NodeKind.GROUP))

    def create_group(self, name):
        """Create a sub-group. Missing intermediate groups are created as well.

        Parameters
        ----------
        name : string
            Group name or path relative to this group.

        Returns
        -------
        g : grove.hierarchy.Group

        Examples
        --------
        >>> import grove
        >>> f = grove.open_file('data/example.grove', mode='w')
        >>> g1 = f.create_group('foo')
        >>> g2 = f.create_group('bar/baz')
        >>> g2.name
        '/bar/baz'

        """
        node = create_node_with_intermediates(self._node, name, self._state,
                                              NodeKind.GROUP)
        return self._group(node)

    def require_group(self, name):
        """Obtain a sub-group, creating one (and any intermediate groups) if it
        doesn't exist.

        Examples
        --------
        >>> import grove
        >>> f = grove.open_file('data/example.grove', mode='w')
        >>> g1 = f.require_group('foo')
        >>> g2 = f.require_group('foo')
        >>> g1 == g2
        True

        """
        return self._group(require_node(self._node, name, self._state, NodeKind.GROUP))

    def delete_group(self, name):
        """Delete a sub-group together with all its members."""
        # check kind before deleting
        get_node(self._node, name, self._state, NodeKind.GROUP)
        delete_node(self._node, name, self._state)

    def has_dataset(self, name):
        return has_node(self._node, name, self._state, NodeKind.DATASET)

    def get_dataset(self, name):
        return self._dataset(get_node(self._node, name, self._state, NodeKind.DATASET))

    def create_dataset(self, name, data):
        """Create a dataset holding a copy of `data`. Missing intermediate groups are
        created.

        Parameters
        ----------
        name : string
            Dataset name or path relative to this group.
        data : array_like
            Initial data; its dtype must be one of the supported scalar types.

        Returns
        -------
        d : grove.hierarchy.Dataset

        Examples
        --------
        >>> import grove
        >>> import numpy as np
        >>> f = grove.open_file('data/example.grove', mode='w')
        >>> d = f.create_dataset('foo/bar', np.eye(3))
        >>> d.shape
        (3, 3)
        >>> f['foo']
        <grove.hierarchy.Group '/foo'>

        """
        assert_writable(self._state)
        data = np.asarray(data)

        # check dtype before touching the file system
        npy.header_for_array(data)

        node = create_node_with_intermediates(self._node, name, self._state,
                                              NodeKind.DATASET)
        d = self._dataset(node)
        d.save(data)
        return d

    def require_dataset(self, name, default_data):
        """Obtain a dataset, creating it with `default_data` if it doesn't exist. The
        data of an existing dataset is left untouched."""
        if not self.has_dataset(name):
            assert_writable(self._state)
            default_data = np.asarray(default_data)
            npy.header_for_array(default_data)
        node = require_node(self._node, name, self._state, NodeKind.DATASET)
        d = self._dataset(node)
        if not os.path.exists(d.datapath):
            d.save(default_data)
        return d

    def delete_dataset(self, name):
        # check kind before deleting
        get_node(self._node, name, self._state, NodeKind.DATASET)
        delete_node(self._node, name, self._state)

    def __contains__(self, item):
        """Test for group membership.

        Examples
        --------
        >>> import grove
        >>> f = grove.open_file('data/example.grove', mode='w')
        >>> g1 = f.create_group('foo')
        >>> d1 = f.create_dataset('bar', [1, 2, 3])
        >>> 'foo' in f
        True
        >>> 'bar' in f
        True
        >>> 'baz' in f
        False

        """
        try:
            return has_node(self._node, item, self._state)
        except (PathValidationError, TypeError):
            return False

    def __getitem__(self, item):
        """Obtain a group member, either a :class:`Group` or a :class:`Dataset`.

        Raises
        ------
        NotFoundError
            If there is no member at `item`.

        """
        node = get_node(self._node, item, self._state)
        if node.kind == NodeKind.GROUP:
            return self._group(node)
        elif node.kind == NodeKind.DATASET:
            return self._dataset(node)
        raise TypeMismatchError(item, node.kind.value, 'group or dataset')

    def __setitem__(self, item, value):
        if self.has_dataset(item):
            self.get_dataset(item).save(value)
        else:
            self.create_dataset(item, value)

    def __delitem__(self, item):
        delete_node(self._node, item, self._state)

    def group_keys(self):
        """Return an iterator over member names for groups only."""
        for key in list_nodes(self._node, self._state, NodeKind.GROUP):
            yield key

    def groups(self):
        """Return an iterator over (name, value) pairs for groups only."""
        for key in self.group_keys():
            yield key, self.get_group(key)

    def dataset_keys(self):
        """Return an iterator over member names for datasets only."""
        for key in list_nodes(self._node, self._state, NodeKind.DATASET):
            yield key

    def datasets(self):
        """Return an iterator over (name, value) pairs for datasets only."""
        for key in self.dataset_keys():
            yield key, self.get_dataset(key)

    def keys(self):
        """Return the sorted names of all groups and datasets in this group."""
        return sorted(list(self.group_keys()) + list(self.dataset_keys()))

    def __iter__(self):
        return iter(self.keys())

    def __len__(self):
        return len(self.keys())

    def values(self):
        return [self[key] for key in self.keys()]

    def items(self):
        return [(key, self[key]) for key in self.keys()]

    def _ipython_key_completions_(self):
        return self.keys()

    def tree(self, level=None):
        """Provide a ``print``-able display of the hierarchy.

        Parameters
        ----------
        level : int, optional
            Maximum depth to descend into the hierarchy.

        Examples
        --------
        >>> import grove
        >>> import numpy as np
        >>> f = grove.open_file('data/example.grove', mode='w')
        >>> g1 = f.create_group('foo')
        >>> g2 = g1.create_group('bar')
        >>> d1 = g2.create_dataset('baz', np.zeros(3))
        >>> print(f.tree())
        /
         └── foo
             └── bar
                 └── baz (3,) <f8

        """
        return TreeViewer(self, level=level)


_MODES = ('r', 'r+', 'w', 'w-', 'x', 'a')


class File(Group):
    """The root group of a store, backed by a directory on the file system.

    Parameters
    ----------
    path : string or os.PathLike
        Location of the store.
    mode : {'r', 'r+', 'w', 'w-', 'x', 'a'}, optional
        Persistence mode: 'r' means read only (must exist); 'r+' means
        read/write (must exist); 'w' means create (overwrite if exists);
        'w-' and 'x' mean create (fail if exists); 'a' means read/write
        (create if doesn't exist).
    cache_attrs : bool, optional
        If True (default), user attributes will be cached for attribute read
        operations.

    Notes
    -----
    All handles obtained from a file share its open state: after :func:`close`,
    any operation on them raises :class:`grove.errors.ClosedStoreError`.

    """

    def __init__(self, path, mode='a', cache_attrs=True):
        if mode not in _MODES:
            raise ValueError('mode must be one of %s, found %r'
                             % (', '.join(repr(m) for m in _MODES), mode))

        if mode == 'r':
            state = StoreState(OpenState.READ_ONLY)
            node = get_file_node(path, state)
        elif mode == 'r+':
            state = StoreState(OpenState.READ_WRITE)
            node = get_file_node(path, state)
        elif mode == 'w':
            if contains_node(os.path.abspath(os.fspath(path))):
                delete_file_node(path)
            state = StoreState(OpenState.READ_WRITE)
            node = create_file_node(path)
        elif mode in ('w-', 'x'):
            state = StoreState(OpenState.READ_WRITE)
            node = create_file_node(path)
        else:
            state = StoreState(OpenState.READ_WRITE)
            node = require_file_node(path)

        self._mode = mode
        super().__init__(node, state, cache_attrs=cache_attrs)

    @property
    def mode(self):
        return self._mode

    @property
    def closed(self):
        return self._state.closed

    def close(self):
        """Close the file, invalidating all handles obtained from it."""
        self._state.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        t = type(self)
        return '<{}.{} {!r} mode={!r}>'.format(t.__module__, t.__name__,
                                              self._node.root, self._mode)


def open_file(path, mode='a', cache_attrs=True):
    """Open a file, see :class:`File` for the meaning of `mode`.

    Examples
    --------
    >>> import grove
    >>> f = grove.open_file('data/example.grove', mode='w')
    >>> f.read_only
    False
    >>> f.close()
    >>> f = grove.open_file('data/example.grove', mode='r')
    >>> f.read_only
    True

    """
    return File(path, mode=mode, cache_attrs=cache_attrs)
