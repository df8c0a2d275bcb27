# common/errors.py


class FileShareError(Exception):
    """Base class for every failure raised by the file sharing core."""


class IOFailure(FileShareError):
    """Local or remote filesystem error."""


class ConnectionFailure(IOFailure):
    """Socket could not be opened, timed out or dropped mid-exchange."""


class NotFound(FileShareError):
    pass


class InvalidName(FileShareError):
    pass


class ProtocolError(FileShareError):
    pass
