"""This module maps a hierarchy of nodes onto directories of a standard file system.

Every node is a directory holding a small JSON metadata record (``grove.json``) which
declares the kind of the node: the root ``file``, a ``group``, a ``dataset`` or a
``raw`` node. A directory without a metadata record is not a node. Datasets keep their
payload in ``data.npy`` and any node may carry user attributes in ``attributes.json``.

The functions in this module operate on :class:`Node` values, which are plain
immutable handles; nothing is cached, and every lookup reads the metadata from disk
again. All functions take the :class:`StoreState` shared by the handles of one open
store, and refuse to operate on a closed store or to modify a read-only store.

"""
import enum
import logging
import os
import shutil
from typing import Any, List, NamedTuple, Optional, Tuple

from grove import npy
from grove.config import config, parse_node_version
from grove.errors import (
    AlreadyExistsError,
    ClosedStoreError,
    MetadataError,
    NotFoundError,
    PathValidationError,
    ReadOnlyError,
    TypeMismatchError,
)
from grove.util import (
    PathLike,
    join_node_path,
    json_dumps,
    json_loads,
    normalize_node_path,
    split_node_path,
)

logger = logging.getLogger(__name__)

node_meta_key = 'grove.json'
attrs_key = 'attributes.json'
data_key = 'data.npy'

# names of the files inside a node directory, never valid as node names
reserved_names = (node_meta_key, attrs_key, data_key)


class NodeKind(enum.Enum):
    FILE = 'file'
    GROUP = 'group'
    DATASET = 'dataset'
    RAW = 'raw'

    @property
    def is_container(self) -> bool:
        return self in (NodeKind.FILE, NodeKind.GROUP)


class NodeMeta(NamedTuple):
    version: int
    kind: NodeKind


class Node(NamedTuple):
    """Handle on a node: its metadata, the root directory of the store and the
    ``'/'``-separated path relative to the root (empty for the root itself)."""
    meta: NodeMeta
    root: str
    relpath: str = ''

    @property
    def kind(self) -> NodeKind:
        return self.meta.kind

    @property
    def path(self) -> str:
        if not self.relpath:
            return self.root
        return os.path.join(self.root, *split_node_path(self.relpath))


class DatasetMeta(NamedTuple):
    shape: Tuple[int, ...]
    wordsize: int
    fortran_order: bool


class OpenState(enum.Enum):
    READ_ONLY = 'r'
    READ_WRITE = 'r+'
    CLOSED = 'closed'


class StoreState(object):
    """Open state of a store, shared by all node handles opened from it."""

    def __init__(self, open_state=OpenState.READ_WRITE):
        self.open_state = OpenState(open_state)

    @property
    def closed(self) -> bool:
        return self.open_state == OpenState.CLOSED

    @property
    def read_only(self) -> bool:
        return self.open_state == OpenState.READ_ONLY

    def close(self):
        self.open_state = OpenState.CLOSED

    def __repr__(self):
        return '%s(%s)' % (type(self).__name__, self.open_state.name)


def assert_open(state: StoreState):
    if state.open_state == OpenState.CLOSED:
        raise ClosedStoreError()


def assert_writable(state: StoreState):
    assert_open(state)
    if state.open_state == OpenState.READ_ONLY:
        raise ReadOnlyError()


def _node_name(node: Node) -> str:
    return node.relpath or node.root


def is_node_group(node: Node) -> bool:
    """Return True if the node can contain other nodes, i.e., if it is a group or the
    root of a store."""
    return node.kind.is_container


def assert_is_node_group(node: Node):
    if not is_node_group(node):
        raise TypeMismatchError(_node_name(node), node.kind.value, NodeKind.GROUP.value)


def is_node_dataset(node: Node) -> bool:
    return node.kind == NodeKind.DATASET


def assert_is_node_dataset(node: Node):
    if not is_node_dataset(node):
        raise TypeMismatchError(_node_name(node), node.kind.value, NodeKind.DATASET.value)


def is_node_raw(node: Node) -> bool:
    return node.kind == NodeKind.RAW


def assert_is_node_raw(node: Node):
    if not is_node_raw(node):
        raise TypeMismatchError(_node_name(node), node.kind.value, NodeKind.RAW.value)


def assert_exists_directory(path: PathLike):
    if not os.path.isdir(path):
        raise NotFoundError(os.fspath(path))


def assert_not_exists(path: PathLike):
    if os.path.lexists(path):
        raise AlreadyExistsError(os.fspath(path))


def contains_node(path: PathLike) -> bool:
    """Return True if `path` is a directory holding a node metadata record."""
    return os.path.isfile(os.path.join(path, node_meta_key))


def encode_node_meta(meta: NodeMeta) -> bytes:
    return json_dumps(dict(kind=meta.kind.value, version=meta.version))


def decode_node_meta(s) -> NodeMeta:
    try:
        meta = json_loads(s)
    except ValueError as e:
        raise MetadataError('node metadata is not valid JSON: %s' % e) from e
    if not isinstance(meta, dict):
        raise MetadataError('node metadata must be a JSON object, found %r'
                            % type(meta).__name__)

    # older stores name the kind "type"
    kind = meta.get('kind', meta.get('type'))
    try:
        kind = NodeKind(kind)
        version = parse_node_version(meta.get('version'))
    except ValueError as e:
        raise MetadataError('error decoding node metadata: %s' % e) from e
    return NodeMeta(version, kind)


def new_node_meta(kind: NodeKind) -> NodeMeta:
    return NodeMeta(parse_node_version(config.get('node.version')), kind)


def read_node_meta(nodepath: PathLike, state: StoreState) -> NodeMeta:
    assert_open(state)
    meta_path = os.path.join(nodepath, node_meta_key)
    try:
        with open(meta_path, 'rb') as f:
            data = f.read()
    except FileNotFoundError:
        raise MetadataError('no node metadata found at %r' % os.fspath(nodepath)) from None
    return decode_node_meta(data)


def write_node_meta(nodepath: PathLike, meta: NodeMeta, state: StoreState):
    assert_writable(state)
    with open(os.path.join(nodepath, node_meta_key), 'wb') as f:
        f.write(encode_node_meta(meta))


def _node_path(root: str, relpath: str) -> str:
    if not relpath:
        return root
    return os.path.join(root, *split_node_path(relpath))


def _get_node(root: str, relpath: str, state: StoreState,
              kind: Optional[NodeKind]) -> Node:
    path = _node_path(root, relpath)
    if not contains_node(path):
        raise NotFoundError(relpath)
    meta = read_node_meta(path, state)
    if kind is not None and meta.kind != kind:
        raise TypeMismatchError(relpath, meta.kind.value, kind.value)
    return Node(meta, root, relpath)


def _create_node(root: str, relpath: str, state: StoreState, kind: NodeKind) -> Node:
    # creates a single directory, the parent must exist
    path = _node_path(root, relpath)
    if os.path.lexists(path):
        raise AlreadyExistsError(relpath)
    os.mkdir(path)
    meta = new_node_meta(kind)
    write_node_meta(path, meta, state)
    logger.debug('created %s node %r in %r', kind.value, relpath, root)
    return Node(meta, root, relpath)


def _resolve(parent: Node, name: PathLike) -> Tuple[str, ...]:
    assert_is_node_group(parent)
    segments = split_node_path(normalize_node_path(name))
    for segment in segments:
        if segment in reserved_names:
            raise PathValidationError(segment)
    return segments


def has_node(parent: Node, name: PathLike, state: StoreState,
             kind: Optional[NodeKind] = None) -> bool:
    """Return True if a node of the given kind (or of any kind if `kind` is None)
    exists at `name` below `parent`."""
    assert_open(state)
    segments = _resolve(parent, name)
    path = _node_path(parent.root, join_node_path(parent.relpath, *segments))
    if not contains_node(path):
        return False
    if kind is None:
        return True
    return read_node_meta(path, state).kind == kind


def get_node(parent: Node, name: PathLike, state: StoreState,
             kind: Optional[NodeKind] = None) -> Node:
    """Look up an existing node of the given kind, or of any kind if `kind` is None.

    Raises
    ------
    NotFoundError
        If there is no node at `name`.
    TypeMismatchError
        If the node is of another kind.

    """
    assert_open(state)
    segments = _resolve(parent, name)
    return _get_node(parent.root, join_node_path(parent.relpath, *segments), state, kind)


def create_node(parent: Node, name: PathLike, state: StoreState, kind: NodeKind) -> Node:
    """Create a new node. Only the final segment of `name` is created; all intermediate
    segments must already exist as groups."""
    assert_writable(state)
    segments = _resolve(parent, name)

    relpath = parent.relpath
    for segment in segments[:-1]:
        relpath = join_node_path(relpath, segment)
        _get_node(parent.root, relpath, state, NodeKind.GROUP)

    relpath = join_node_path(relpath, segments[-1])
    return _create_node(parent.root, relpath, state, kind)


def require_node(parent: Node, name: PathLike, state: StoreState, kind: NodeKind) -> Node:
    """Obtain a node of the given kind, creating it if it does not exist.

    Existing intermediate segments must be groups and an existing final segment must
    be of `kind`, otherwise :class:`TypeMismatchError` is raised. Missing segments are
    created, intermediate ones as groups.

    """
    assert_open(state)
    segments = _resolve(parent, name)

    node = parent
    for i, segment in enumerate(segments):
        required_kind = kind if i == len(segments) - 1 else NodeKind.GROUP
        relpath = join_node_path(node.relpath, segment)
        if contains_node(_node_path(parent.root, relpath)):
            node = _get_node(parent.root, relpath, state, required_kind)
        else:
            assert_writable(state)
            node = _create_node(parent.root, relpath, state, required_kind)
    return node


def create_node_with_intermediates(parent: Node, name: PathLike, state: StoreState,
                                   kind: NodeKind) -> Node:
    """Create a new node, obtaining any intermediate groups via :func:`require_node`."""
    assert_writable(state)
    segments = _resolve(parent, name)
    if len(segments) > 1:
        parent = require_node(parent, join_node_path(*segments[:-1]), state,
                              NodeKind.GROUP)
    return create_node(parent, segments[-1], state, kind)


def delete_node(parent: Node, name: PathLike, state: StoreState):
    """Delete a node together with everything below it."""
    assert_writable(state)
    segments = _resolve(parent, name)
    relpath = join_node_path(parent.relpath, *segments)
    path = _node_path(parent.root, relpath)
    if not contains_node(path):
        raise NotFoundError(relpath)
    shutil.rmtree(path)
    logger.debug('deleted node %r in %r', relpath, parent.root)


def list_nodes(parent: Node, state: StoreState,
               kind: Optional[NodeKind] = None) -> List[str]:
    """Return the sorted names of the nodes directly below `parent`, optionally only
    those of the given kind."""
    assert_open(state)
    assert_is_node_group(parent)
    path = parent.path
    names = []
    for name in sorted(os.listdir(path)):
        child = os.path.join(path, name)
        if not contains_node(child):
            continue
        if kind is None or read_node_meta(child, state).kind == kind:
            names.append(name)
    return names


def get_attribute(node: Node, state: StoreState) -> str:
    """Return the path of the attribute file of `node`, creating an empty one if the
    store is writable."""
    assert_open(state)
    path = os.path.join(node.path, attrs_key)
    if not os.path.exists(path):
        if state.open_state == OpenState.READ_ONLY:
            raise ReadOnlyError()
        with open(path, 'wb') as f:
            f.write(json_dumps(dict()))
    return path


def data_path(node: Node) -> str:
    return os.path.join(node.path, data_key)


def _root_path(path: PathLike) -> str:
    return os.path.abspath(os.fspath(path))


def create_file_node(path: PathLike) -> Node:
    """Create the root of a new store; nothing may exist at `path` yet."""
    root = _root_path(path)
    assert_not_exists(root)
    os.mkdir(root)
    meta = new_node_meta(NodeKind.FILE)
    write_node_meta(root, meta, StoreState(OpenState.READ_WRITE))
    logger.debug('created file node at %r', root)
    return Node(meta, root)


def get_file_node(path: PathLike, state: StoreState) -> Node:
    assert_open(state)
    root = _root_path(path)
    assert_exists_directory(root)
    if not contains_node(root):
        raise NotFoundError(root)
    meta = read_node_meta(root, state)
    if meta.kind != NodeKind.FILE:
        raise TypeMismatchError(root, meta.kind.value, NodeKind.FILE.value)
    return Node(meta, root)


def require_file_node(path: PathLike) -> Node:
    if contains_node(_root_path(path)):
        return get_file_node(path, StoreState(OpenState.READ_WRITE))
    return create_file_node(path)


def delete_file_node(path: PathLike):
    """Delete a whole store. `path` must be the root of a store."""
    node = get_file_node(path, StoreState(OpenState.READ_WRITE))
    shutil.rmtree(node.root)
    logger.debug('deleted file node at %r', node.root)


def load_npy_meta(path: PathLike) -> DatasetMeta:
    """Summarize the header of an ``.npy`` file without reading its payload."""
    header = npy.load_header(path)
    return DatasetMeta(header.shape, header.dtype.itemsize, header.fortran_order)


def load_dataset(node: Node, state: StoreState) -> Any:
    assert_open(state)
    assert_is_node_dataset(node)
    return npy.load_array(data_path(node))


def save_dataset(node: Node, data, state: StoreState) -> npy.Header:
    assert_writable(state)
    assert_is_node_dataset(node)
    header = npy.save_array(data_path(node), data)
    logger.debug('saved %s array of shape %r to %r', header.dtype.descr, header.shape,
                 node.relpath)
    return header
