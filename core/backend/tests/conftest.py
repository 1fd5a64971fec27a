import pytest

from config import DispatchMode, Settings
from services.db import JobRepository
from services.storage import BlobStore

from tests.fakes import FakeSupabase, WorkerStub


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def repository(supabase):
    return JobRepository(supabase, "jobs")


@pytest.fixture
def blob_store(supabase):
    return BlobStore(supabase)


@pytest.fixture
def worker():
    return WorkerStub()


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, groq_api_key="gsk-test", dispatch_mode=DispatchMode.SYNC)
