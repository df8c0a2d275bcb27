# common/file_store.py
import logging
import os
import stat
import tempfile
from pathlib import Path

from common.errors import IOFailure, NotFound, InvalidName
from common.protocol import CHUNK_SIZE, ENCODING

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".fileshare-"  # In-flight writes, never listed or addressable
TEMP_SUFFIX = ".part"
FORBIDDEN_CHARS = ("/", "\\", "\0", "\n", "\r")

# Read once; os.umask can only be queried by setting it.
UMASK = os.umask(0)
os.umask(UMASK)


class FileStream:
    """Lazy chunked read of exactly `size` bytes of one open file.

    Closes itself once exhausted. A file that shrank since it was opened
    raises IOFailure; bytes appended after opening are not sent.
    """

    def __init__(self, name, file_obj, size, chunk_size=CHUNK_SIZE):
        self.name = name
        self.size = size
        self._file = file_obj
        self._chunk_size = chunk_size

    def __iter__(self):
        try:
            remaining = self.size
            while remaining:
                try:
                    chunk = self._file.read(min(self._chunk_size, remaining))
                except OSError as e:
                    raise IOFailure(f"Error reading '{self.name}': {e}") from e
                if not chunk:
                    raise IOFailure(
                        f"'{self.name}' ended after {self.size - remaining} of {self.size} bytes")
                remaining -= len(chunk)
                yield chunk
        finally:
            self.close()

    def close(self):
        self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class FileStore:
    """A flat folder of files addressed by bare name."""

    def __init__(self, folder, chunk_size=CHUNK_SIZE):
        self.folder = Path(folder)
        self.chunk_size = chunk_size

    def __repr__(self):
        return f"FileStore({str(self.folder)!r})"

    def resolve(self, name):
        """Map a bare filename to its path inside the folder.

        Anything that could land outside the folder, or below it, raises
        InvalidName before the filesystem is touched for I/O.
        """
        if not isinstance(name, str) or not name or name in (".", ".."):
            raise InvalidName(f"Invalid filename: {name!r}")
        if any(char in name for char in FORBIDDEN_CHARS) or os.path.isabs(name):
            raise InvalidName(f"Invalid filename: {name!r}")
        try:
            name.encode(ENCODING)
        except UnicodeEncodeError:
            raise InvalidName(f"Filename is not valid UTF-8: {name!r}") from None
        if name.startswith(TEMP_PREFIX):
            raise InvalidName(f"Reserved filename: {name!r}")
        root = self.folder.resolve()
        file_path = (root / name).resolve()
        if file_path.parent != root:
            raise InvalidName(f"Filename escapes the folder: {name!r}")
        return file_path

    def list(self):
        try:
            with os.scandir(self.folder) as it:
                entries = list(it)
        except OSError as e:
            raise IOFailure(f"Could not list '{self.folder}': {e}") from e
        files = []
        for entry in entries:
            if entry.name.startswith(TEMP_PREFIX) or "\n" in entry.name:
                continue
            try:
                entry.name.encode(ENCODING)
            except UnicodeEncodeError:
                logger.warning(f"Skipping {entry.name!r} in {self.folder}: name is not valid UTF-8")
                continue
            try:
                if entry.is_file():
                    files.append(entry.name)
            except OSError:
                logger.warning(f"Skipping unreadable entry '{entry.name}' in {self.folder}")
        return files

    def read(self, name):
        file_path = self.resolve(name)
        if not file_path.is_file():
            raise NotFound(f"File '{name}' not found.")
        try:
            f = open(file_path, "rb")
        except FileNotFoundError:
            raise NotFound(f"File '{name}' not found.") from None
        except OSError as e:
            raise IOFailure(f"Could not open '{name}': {e}") from e
        try:
            size = os.fstat(f.fileno()).st_size
        except OSError as e:
            f.close()
            raise IOFailure(f"Could not stat '{name}': {e}") from e
        return FileStream(name, f, size, self.chunk_size)

    def write(self, name, chunks):
        """Replace `name` with the bytes from `chunks`.

        Content goes to a temporary sibling which is renamed over the target
        only once complete, so readers see the old or the new file, never a
        mix. Any failure, including one raised by `chunks`, leaves the old
        file as it was.
        """
        file_path = self.resolve(name)
        try:
            fd, temp_path = tempfile.mkstemp(
                prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=file_path.parent)
        except OSError as e:
            raise IOFailure(f"Could not create temporary file for '{name}': {e}") from e

        written = 0
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    f.write(chunk)
                    written += len(chunk)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, self._mode_for(file_path))
            os.replace(temp_path, file_path)
        except OSError as e:
            self._discard(temp_path)
            raise IOFailure(f"Could not write '{name}': {e}") from e
        except BaseException:
            self._discard(temp_path)
            raise
        return written

    def _mode_for(self, file_path):
        """Permissions of the file being replaced, or the umask default for a new one."""
        try:
            return stat.S_IMODE(os.stat(file_path).st_mode)
        except FileNotFoundError:
            return 0o666 & ~UMASK

    def _discard(self, temp_path):
        try:
            os.unlink(temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary file {temp_path}: {e}")
