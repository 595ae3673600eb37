class MetadataError(Exception):
    pass


class _BaseZarrError(ValueError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class _BaseZarrIndexError(IndexError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class NodeNotFoundError(_BaseZarrError):
    _msg = "nothing found at path {0!r}"


class ContainsGroupError(_BaseZarrError):
    _msg = "path {0!r} contains a group"


class ContainsArrayError(_BaseZarrError):
    _msg = "path {0!r} contains an array"


class BadCompressorError(_BaseZarrError):
    _msg = "bad compressor; expected object with encode and decode methods, found {0!r}"


class BoundsCheckError(_BaseZarrIndexError):
    _msg = "index out of bounds for dimension with length {0}"


class NegativeStepError(IndexError):
    def __init__(self):
        super().__init__("only slices with step >= 1 are supported")


def err_too_many_indices(selection, shape):
    raise IndexError(f"too many indices for array; expected {len(shape)}, got {len(selection)}")


def err_boundscheck(dim_len):
    raise BoundsCheckError(dim_len)


def err_negative_step():
    raise NegativeStepError()
