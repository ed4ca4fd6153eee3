from collections.abc import MutableMapping

from grove.storage import assert_open, assert_writable, get_attribute
from grove.util import json_dumps, json_loads


def load_attr(path):
    """Load the JSON value stored in the attribute file at `path`."""
    with open(path, 'rb') as f:
        return json_loads(f.read())


def save_attr(value, path):
    """Replace the content of the attribute file at `path` with the JSON value `value`."""
    data = json_dumps(value)
    with open(path, 'wb') as f:
        f.write(data)


class Attributes(MutableMapping):
    """Class providing access to user attributes on a group or dataset. Should not be
    instantiated directly, will be available via the `.attrs` property of a group or
    dataset.

    Parameters
    ----------
    node : grove.storage.Node
        Node owning the attributes.
    state : grove.storage.StoreState
        Open state of the file the node belongs to. Attributes cannot be accessed
        once the file is closed, nor modified if it is read-only.
    cache : bool, optional
        If True (default), attributes will be cached locally.

    """

    def __init__(self, node, state, cache=True):
        self._node = node
        self._state = state
        self.cache = cache
        self._cached_asdict = None

    @property
    def path(self):
        """Location of the attribute file. On a writable store a missing file is
        created holding an empty object."""
        return get_attribute(self._node, self._state)

    @property
    def read_only(self):
        return self._state.read_only

    def _get(self):
        assert_open(self._state)
        d = load_attr(self.path)
        if not isinstance(d, dict):
            raise TypeError('attributes at %r hold a JSON %s, not an object'
                            % (self.path, type(d).__name__))
        return d

    def asdict(self):
        """Retrieve all attributes as a dictionary."""
        assert_open(self._state)
        if self.cache and self._cached_asdict is not None:
            return self._cached_asdict
        d = self._get()
        if self.cache:
            self._cached_asdict = d
        return d

    def refresh(self):
        """Refresh cached attributes from the file."""
        if self.cache:
            self._cached_asdict = self._get()

    def invalidate(self):
        """Drop cached attributes; the next access reads the file again."""
        self._cached_asdict = None

    def __contains__(self, x):
        return x in self.asdict()

    def __getitem__(self, item):
        return self.asdict()[item]

    def _check_writable(self):
        assert_writable(self._state)

    def __setitem__(self, item, value):
        self._check_writable()

        # load existing data
        d = self._get()

        # set key value
        d[item] = value

        # _put modified data
        self._put(d)

    def __delitem__(self, item):
        self._check_writable()

        # load existing data
        d = self._get()

        # delete key value
        del d[item]

        # _put modified data
        self._put(d)

    def put(self, d):
        """Overwrite all attributes with the key/value pairs in the provided dictionary
        `d` in a single operation."""
        self._check_writable()
        self._put(dict(d))

    def _put(self, d):
        assert_writable(self._state)
        save_attr(d, self.path)
        if self.cache:
            self._cached_asdict = d

    # noinspection PyMethodOverriding
    def update(self, *args, **kwargs):
        # override to provide update in a single write
        self._check_writable()

        # load existing data
        d = self._get()

        # update
        d.update(*args, **kwargs)

        # _put modified data
        self._put(d)

    def keys(self):
        return self.asdict().keys()

    def __iter__(self):
        return iter(self.asdict())

    def __len__(self):
        return len(self.asdict())

    def _ipython_key_completions_(self):
        return sorted(self)
