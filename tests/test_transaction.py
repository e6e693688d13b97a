import pytest
from pymongo.errors import OperationFailure

from errors import BadRequest, TransactionsUnsupported
from transaction import is_transaction_unsupported, run_unit

UNSUPPORTED = "Transaction numbers are only allowed on a replica set member or mongos"


class FakeSession:
    def __init__(self, fail_start=None, fail_commit=None, fail_abort=None):
        self.fail_start = fail_start
        self.fail_commit = fail_commit
        self.fail_abort = fail_abort
        self.events = []

    async def start_transaction(self):
        self.events.append("start")
        if self.fail_start:
            raise self.fail_start

    async def commit_transaction(self):
        self.events.append("commit")
        if self.fail_commit:
            raise self.fail_commit

    async def abort_transaction(self):
        self.events.append("abort")
        if self.fail_abort:
            raise self.fail_abort

    async def end_session(self):
        self.events.append("end")


class FakeStore:
    def __init__(self, session):
        self.session = session

    def start_session(self):
        return self.session


async def test_commits_on_success():
    session = FakeSession()
    seen = []

    async def work(s):
        seen.append(s)
        return "done"

    assert await run_unit(FakeStore(session), work) == "done"
    assert seen == [session]
    assert session.events == ["start", "commit", "end"]


async def test_aborts_and_reraises_on_failure():
    session = FakeSession()

    async def work(s):
        raise BadRequest("nope")

    with pytest.raises(BadRequest):
        await run_unit(FakeStore(session), work)
    assert session.events == ["start", "abort", "end"]


async def test_abort_failure_does_not_mask_original_error():
    session = FakeSession(fail_abort=OperationFailure("abort failed"))

    async def work(s):
        raise BadRequest("original")

    with pytest.raises(BadRequest, match="original"):
        await run_unit(FakeStore(session), work)
    assert session.events[-1] == "end"


async def test_falls_back_when_begin_is_unsupported():
    session = FakeSession(fail_start=OperationFailure(UNSUPPORTED, 20))
    seen = []

    async def work(s):
        seen.append(s)
        return 42

    assert await run_unit(FakeStore(session), work) == 42
    assert seen == [None]
    assert session.events == ["start", "end"]


async def test_falls_back_when_commit_is_unsupported():
    session = FakeSession(fail_commit=TransactionsUnsupported(UNSUPPORTED))
    seen = []

    async def work(s):
        seen.append(s)
        return len(seen)

    assert await run_unit(FakeStore(session), work) == 2
    assert seen == [session, None]
    assert session.events == ["start", "commit", "abort", "end"]


async def test_other_begin_errors_propagate():
    session = FakeSession(fail_start=OperationFailure("not authorized"))

    async def work(s):
        raise AssertionError("work must not run")

    with pytest.raises(OperationFailure):
        await run_unit(FakeStore(session), work)
    assert session.events == ["start", "end"]


def test_unsupported_detection():
    assert is_transaction_unsupported(TransactionsUnsupported("x"))
    assert is_transaction_unsupported(OperationFailure(UNSUPPORTED))
    assert not is_transaction_unsupported(OperationFailure("E11000 duplicate key"))
    assert not is_transaction_unsupported(ValueError(UNSUPPORTED))
