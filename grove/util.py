import json
import ntpath
import numbers
import os
import posixpath

from asciitree import BoxStyle, LeftAligned
from asciitree.traversal import Traversal
from numcodecs.compat import ensure_text

from typing import Any, Tuple, Union

from grove.config import config
from grove.errors import PathValidationError


PathLike = Union[str, bytes, os.PathLike]


def json_dumps(o: Any) -> bytes:
    """Write JSON in a consistent, human-readable way."""
    return json.dumps(o, indent=config.get('json_indent'), sort_keys=True,
                      ensure_ascii=True, separators=(',', ': ')).encode('ascii')


def json_loads(s: Union[bytes, str]) -> Any:
    """Read JSON in a consistent way."""
    return json.loads(ensure_text(s, 'utf-8'))


def normalize_shape(shape) -> Tuple[int, ...]:
    """Convenience function to normalize the `shape` argument."""

    if shape is None:
        raise TypeError('shape is None')

    # handle 1D convenience form
    if isinstance(shape, numbers.Integral):
        shape = (int(shape),)

    # normalize
    shape = tuple(int(s) for s in shape)
    if any(s < 0 for s in shape):
        raise ValueError('shape must not contain negative dimensions, found %r' % (shape,))
    return shape


def _node_path_text(path: PathLike) -> str:
    if isinstance(path, os.PathLike):
        path = os.fspath(path)
    if isinstance(path, bytes):
        path = os.fsdecode(path)
    if not isinstance(path, str):
        raise TypeError('node path must be str, bytes or os.PathLike, found %r'
                        % type(path).__name__)
    return path


def normalize_node_path(path: PathLike) -> str:
    """Normalize a relative node path, raising :class:`PathValidationError` if the
    path cannot name a node below some root.

    Separators are always ``'/'`` in the result; backslashes are accepted on input.
    ``'.'`` segments and repeated separators are collapsed and ``'..'`` segments are
    resolved lexically, but the result may never climb above the path's own start.
    Nothing on the file system is consulted.

    Examples
    --------
    >>> normalize_node_path('foo//bar/./baz')
    'foo/bar/baz'
    >>> normalize_node_path('foo/../bar')
    'bar'

    """
    text = _node_path_text(path)

    # convert backslash to forward slash
    candidate = text.replace('\\', '/')

    if not candidate:
        raise PathValidationError(text)

    # no rooted or drive-qualified paths
    if candidate[0] == '/' or ntpath.splitdrive(candidate)[0]:
        raise PathValidationError(text)

    # final component must name something
    if candidate.rsplit('/', 1)[-1] in ('', '.', '..'):
        raise PathValidationError(text)

    normalized = posixpath.normpath(candidate)
    if normalized in ('.', '..') or normalized.startswith('../'):
        raise PathValidationError(text)

    return normalized


def is_valid_node_path(path: PathLike) -> bool:
    try:
        normalize_node_path(path)
    except PathValidationError:
        return False
    return True


def split_node_path(path: str) -> Tuple[str, ...]:
    # assume path is normalized
    return tuple(path.split('/'))


def join_node_path(*segments: str) -> str:
    return '/'.join(s for s in segments if s)


class TreeNode(object):

    def __init__(self, obj, depth=0, level=None):
        self.obj = obj
        self.depth = depth
        self.level = level

    def get_children(self):
        if hasattr(self.obj, 'values'):
            if self.level is None or self.depth < self.level:
                depth = self.depth + 1
                return [TreeNode(o, depth=depth, level=self.level)
                        for o in self.obj.values()]
        return []

    def get_text(self):
        name = self.obj.name.split("/")[-1] or "/"
        if hasattr(self.obj, 'shape'):
            name += ' {} {}'.format(self.obj.shape, self.obj.descr)
        return name


class TreeTraversal(Traversal):

    def get_children(self, node):
        return node.get_children()

    def get_root(self, tree):
        return tree

    def get_text(self, node):
        return node.get_text()


class TreeViewer(object):

    def __init__(self, group, level=None):

        self.group = group
        self.level = level

        self.text_kwargs = dict(
            horiz_len=2,
            label_space=1,
            indent=1
        )

        self.bytes_kwargs = dict(
            UP_AND_RIGHT="+",
            HORIZONTAL="-",
            VERTICAL="|",
            VERTICAL_AND_RIGHT="+"
        )

        self.unicode_kwargs = dict(
            UP_AND_RIGHT="└",
            HORIZONTAL="─",
            VERTICAL="│",
            VERTICAL_AND_RIGHT="├"
        )

    def __bytes__(self):
        drawer = LeftAligned(
            traverse=TreeTraversal(),
            draw=BoxStyle(gfx=self.bytes_kwargs, **self.text_kwargs)
        )
        root = TreeNode(self.group, level=self.level)
        return drawer(root).encode()

    def __unicode__(self):
        drawer = LeftAligned(
            traverse=TreeTraversal(),
            draw=BoxStyle(gfx=self.unicode_kwargs, **self.text_kwargs)
        )
        root = TreeNode(self.group, level=self.level)
        return drawer(root)

    def __repr__(self):
        return self.__unicode__()
