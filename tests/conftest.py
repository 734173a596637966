import asyncio

import pytest

from app.db.helpers import DatabaseError
from app.features.job_queue.domain import FeedJob, Job, NewJob
from app.features.presence.domain import Applier


class FakeJobRepository:
    def __init__(self, jobs=None, applications=None, flagged_job_ids=None, clients=None):
        self.jobs: list[Job] = list(jobs or [])
        self.applications = list(applications or [])
        self.flagged_job_ids: set[str] = set(flagged_job_ids or ())
        self.clients = list(clients or [])
        self.created: list[NewJob] = []
        self.fail_feed_ids: set[int] = set()

    async def get_jobs_by_client(self, client_id: str) -> list[Job]:
        return [job for job in self.jobs if job.client_id == client_id]

    async def get_applications_by_client(self, client_id: str):
        return [app for app in self.applications if app.client_id == client_id]

    async def get_flagged_job_ids(self, job_ids: list[str]) -> set[str]:
        return {job_id for job_id in job_ids if job_id in self.flagged_job_ids}

    async def get_job_by_feed_id(self, client_id: str, feed_job_id: int) -> Job | None:
        for job in self.jobs:
            if job.client_id == client_id and job.feed_job_id == feed_job_id:
                return job
        return None

    async def create_job(self, new_job: NewJob) -> Job:
        if new_job.feed_job_id in self.fail_feed_ids:
            raise DatabaseError("insert failed", operation="create_job")
        job = Job(
            id=f"job-{len(self.jobs) + 1}",
            client_id=new_job.client_id,
            feed_job_id=new_job.feed_job_id,
            job_title=new_job.job_title,
            company_name=new_job.company_name,
            job_url=new_job.job_url,
            job_location=new_job.job_location,
        )
        self.jobs.append(job)
        self.created.append(new_job)
        return job

    async def get_clients(self):
        return list(self.clients)


class FakeFeedClient:
    def __init__(self, items=None, items_by_client=None, errors_by_client=None):
        self.items = list(items or [])
        self.items_by_client = items_by_client or {}
        self.errors_by_client = errors_by_client or {}
        self.calls: list[tuple[str, int]] = []
        self.registered: list[tuple[str, int]] = []
        self.register_error: Exception | None = None

    async def fetch_user_job_feed(self, client_id: str, page_size: int) -> list[FeedJob]:
        self.calls.append((client_id, page_size))
        if client_id in self.errors_by_client:
            raise self.errors_by_client[client_id]
        return list(self.items_by_client.get(client_id, self.items))

    async def register_job_application(self, client_id: str, feed_job_id: int) -> None:
        if self.register_error is not None:
            raise self.register_error
        self.registered.append((client_id, feed_job_id))


def make_jobs(client_id: str, count: int, start: int = 1) -> list[Job]:
    return [
        Job(
            id=f"{client_id}-job-{n}",
            client_id=client_id,
            feed_job_id=n,
            job_title=f"Role {n}",
            company_name="Acme",
            job_url=f"https://jobs.example.com/{n}",
        )
        for n in range(start, start + count)
    ]


def feed_item(n: int, **overrides) -> FeedJob:
    data = {
        "canonical_job_id": n,
        "title": f"Engineer {n}",
        "company": "Globex",
        "company_logo": None,
        "job_location": "Remote",
        "apply_url": f"https://apply.example.com/{n}",
        "cursor_time": "2025-01-01T00:00:00Z",
        "cursor_id": n,
    }
    data.update(overrides)
    return FeedJob(**data)


class FakeApplierStore:
    def __init__(self, statuses: dict[str, str] | None = None):
        self.appliers = {
            applier_id: Applier(id=applier_id, status=status)
            for applier_id, status in (statuses or {}).items()
        }
        self.updates: list[tuple[str, str]] = []
        self.fail_updates = False
        self.fail_reads = False

    async def get_applier(self, applier_id: str) -> Applier | None:
        if self.fail_reads:
            raise DatabaseError("read failed", operation="get_applier")
        return self.appliers.get(applier_id)

    async def update_applier(self, applier_id: str, updates: dict) -> Applier | None:
        if self.fail_updates:
            raise DatabaseError("write failed", operation="update_applier")
        applier = self.appliers.get(applier_id)
        if applier is None:
            return None
        applier.status = updates["status"]
        applier.last_activity_at = updates.get("last_activity_at")
        self.updates.append((applier_id, updates["status"]))
        return applier


class HeldReadApplierStore(FakeApplierStore):
    """Applier store whose reads can be paused after the row is taken."""

    def __init__(self, statuses: dict[str, str] | None = None):
        super().__init__(statuses)
        self.hold_reads = False
        self.read_started = asyncio.Event()
        self.release = asyncio.Event()

    async def get_applier(self, applier_id: str) -> Applier | None:
        applier = await super().get_applier(applier_id)
        if not self.hold_reads or applier is None:
            return applier
        snapshot = Applier(id=applier.id, status=applier.status)
        self.hold_reads = False
        self.read_started.set()
        await self.release.wait()
        return snapshot


class FakePeer:
    def __init__(self):
        self.sent: list[dict] = []
        self.closed: tuple[int, str] | None = None
        self.open = True
        self.pings = 0
        self.fail_send = False
        self.fail_ping = False

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_json(self, payload: dict) -> None:
        if self.fail_send:
            raise RuntimeError("socket send failed")
        self.sent.append(payload)

    async def close(self, code: int, reason: str = "") -> None:
        self.closed = (code, reason)
        self.open = False

    async def ping(self) -> None:
        if self.fail_ping:
            raise ConnectionError("ping failed")
        self.pings += 1

    def messages(self, message_type: str) -> list[dict]:
        return [message for message in self.sent if message.get("type") == message_type]


class FakePubSub:
    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.unsubscribed: list[str] = []
        self.listen_error: Exception | None = None

    async def listen(self):
        if self.listen_error is not None:
            raise self.listen_error
        while True:
            yield await self.queue.get()

    async def unsubscribe(self, channel: str) -> None:
        self.unsubscribed.append(channel)

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    def __init__(self):
        self.pubsub = FakePubSub()
        self.subscriptions = 0
        self.published: list[tuple[str, str]] = []
        self.fail_publish = False

    async def subscribe(self, channel: str) -> FakePubSub:
        if self.pubsub.closed:
            self.pubsub = FakePubSub()
        self.subscriptions += 1
        return self.pubsub

    async def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        await self.pubsub.queue.put({"type": "message", "channel": channel, "data": message})
        return 1


@pytest.fixture
def job_repository():
    return FakeJobRepository()


@pytest.fixture
def feed_client():
    return FakeFeedClient()


@pytest.fixture
def applier_store():
    return FakeApplierStore({"applier-a": "offline", "applier-b": "offline", "applier-c": "offline"})


@pytest.fixture
def fake_redis():
    return FakeRedis()
