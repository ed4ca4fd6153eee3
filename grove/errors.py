class MetadataError(Exception):
    pass


class FormatError(ValueError):
    pass


class _BaseGroveError(ValueError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class PathValidationError(_BaseGroveError):
    _msg = "invalid node path {0!r}"


class NotFoundError(_BaseGroveError):
    _msg = "nothing found at path {0!r}"


class AlreadyExistsError(_BaseGroveError):
    _msg = "path {0!r} already exists"


class TypeMismatchError(_BaseGroveError):
    _msg = "node at path {0!r} is {1!r}, expected {2!r}"


class StateError(RuntimeError):
    pass


class ClosedStoreError(StateError):
    def __init__(self):
        super().__init__("unable to operate on a closed store")


class ReadOnlyError(StateError):
    def __init__(self):
        super().__init__("store is read-only")
