import pytest

from reportbot.disk import RemoteDisk
from reportbot.errors import DiskUnavailableError
from reportbot.events import EventManager
from reportbot.state import StateManager


class FakeDisk(RemoteDisk):
    """In-memory disk: folder path -> set of file names."""

    def __init__(self):
        self.folders: dict[str, set[str]] = {}
        self.unavailable = False
        self.fail_uploads = False
        self.uploads: list[tuple[str, str]] = []
        self.list_calls = 0

    def add(self, folder_path, *names):
        self.folders.setdefault(folder_path, set()).update(names)

    async def list_files(self, user_id, folder_path):
        self.list_calls += 1
        if self.unavailable:
            raise DiskUnavailableError("disk is down")
        return sorted(self.folders.get(folder_path, ()))

    async def ensure_path(self, user_id, folder_path):
        self.folders.setdefault(folder_path, set())

    async def upload_file(self, user_id, local_path, remote_path):
        if self.fail_uploads:
            return False
        folder, name = remote_path.rsplit("/", 1)
        self.add(folder, name)
        self.uploads.append((local_path, remote_path))
        return True


@pytest.fixture
def disk():
    return FakeDisk()


@pytest.fixture
def state():
    return StateManager()


@pytest.fixture
def events(disk, state):
    return EventManager(disk, state)
