import asyncio

import pytest

from campus_booking.services.documents import Snapshot
from campus_booking.services.identity import IdentitySession
from campus_booking.services.subscriptions import Subscription


def make_session(uid: str) -> IdentitySession:
    return IdentitySession(uid=uid, email=f'{uid}@example.edu', session_id=f'session-{uid}')


class FakeIdentity:
    """Session stream that replays the current session to new subscribers."""

    def __init__(self, session: IdentitySession | None = None):
        self.session = session
        self.sign_out_calls = 0
        self._listeners = []

    def subscribe(self, on_change, on_error=None):
        subscription = Subscription(on_cancel=self._remove)
        self._listeners.append((subscription, on_change))
        asyncio.get_running_loop().call_soon(self._deliver, subscription, on_change, self.session)
        return subscription

    def _remove(self, subscription):
        self._listeners = [entry for entry in self._listeners if entry[0] is not subscription]

    @staticmethod
    def _deliver(subscription, on_change, session):
        if subscription.active:
            on_change(session)

    def emit(self, session: IdentitySession | None) -> None:
        self.session = session
        for subscription, on_change in list(self._listeners):
            self._deliver(subscription, on_change, session)

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.emit(None)


class FakeProfiles:
    def __init__(self, records=None, error: Exception | None = None, gates=None):
        self.records = records or {}
        self.error = error
        self.gates = gates or {}
        self.calls = []

    async def get_record(self, collection: str, doc_id: str) -> Snapshot:
        self.calls.append((collection, doc_id))
        if doc_id in self.gates:
            await self.gates[doc_id].wait()
        if self.error is not None:
            raise self.error
        data = self.records.get(doc_id)
        return Snapshot(id=doc_id, exists=data is not None, data=dict(data or {}))


@pytest.fixture
def session():
    return make_session


@pytest.fixture
def identity_factory():
    return FakeIdentity


@pytest.fixture
def profiles_factory():
    return FakeProfiles
