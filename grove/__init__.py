# flake8: noqa
from grove.config import config
from grove.convenience import load, open, save
from grove.errors import (AlreadyExistsError, ClosedStoreError, FormatError,
                          MetadataError, NotFoundError, PathValidationError,
                          ReadOnlyError, StateError, TypeMismatchError)
from grove.hierarchy import Dataset, File, Group, open_file
from grove.storage import DatasetMeta, NodeKind
from grove.util import is_valid_node_path, normalize_node_path
from grove.version import version as __version__
