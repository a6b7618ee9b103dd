from datetime import date

import pytest

import db
from clients import ClientRepository
from errors import (
    DuplicateIdentityError,
    NotAuthenticatedError,
    RecordNotFoundError,
    StoreError,
    ValidationError,
)


def new_client(repo, cedula="12345678", document_type="V", start_date="2025-06-01", duration_months=1, **extra):
    fields = dict(
        document_type=document_type, cedula=cedula, full_name="Carla Díaz", phone="+584140000000",
        start_date=start_date, duration_months=duration_months,
    )
    fields.update(extra)
    return repo.create_client(**fields)


@pytest.fixture
def repo(trainer_a, today):
    r = ClientRepository(trainer_a, today=lambda: today)
    r.fetch_clients()
    return r


class FlakyStore:
    """Delegates to the real store, failing the named operations."""

    def __init__(self, fail_on):
        self.fail_on = set(fail_on)
        self.queries = 0

    def _maybe_fail(self, op):
        if op in self.fail_on:
            raise StoreError(f"{op} failed")

    def query(self, *args, **kwargs):
        self.queries += 1
        self._maybe_fail("query")
        return db.query(*args, **kwargs)

    def insert(self, *args, **kwargs):
        self._maybe_fail("insert")
        return db.insert(*args, **kwargs)

    def update(self, *args, **kwargs):
        self._maybe_fail("update")
        return db.update(*args, **kwargs)

    def delete(self, *args, **kwargs):
        self._maybe_fail("delete")
        return db.delete(*args, **kwargs)


# ---------- create ----------

def test_create_computes_end_date_and_caches(repo):
    client = new_client(repo, start_date="2025-06-01", duration_months=3)
    assert client.end_date == date(2025, 9, 1)
    assert repo.clients[0] == client
    assert repo.status_of(client) == "active"


def test_create_rejects_invalid_input_before_writing(repo):
    with pytest.raises(ValidationError) as exc:
        new_client(repo, cedula="", duration_months=0, full_name=" ")
    assert len(exc.value.messages) == 3
    assert db.query("clients") == []


def test_create_requires_start_date(repo):
    with pytest.raises(ValidationError):
        new_client(repo, start_date="")


def test_duplicate_identity_rejected_for_same_trainer(repo):
    first = new_client(repo, cedula="12345678")
    with pytest.raises(DuplicateIdentityError) as exc:
        new_client(repo, cedula="12345678")
    assert exc.value.existing_id == first.id
    assert exc.value.document_type == "V"
    assert len(db.query("clients")) == 1


def test_same_number_with_other_document_type_is_allowed(repo):
    new_client(repo, cedula="12345678", document_type="V")
    assert new_client(repo, cedula="12345678", document_type="E").document_type == "E"


def test_duplicate_scope_is_per_trainer(repo, trainer_b, today):
    new_client(repo, cedula="12345678")
    other = ClientRepository(trainer_b, today=lambda: today)
    assert other.create_client("V", "12345678", "Someone Else", "555", "2025-06-01", 1).trainer_id == trainer_b


def test_store_constraint_backs_up_the_precheck(repo, monkeypatch):
    new_client(repo, cedula="555")
    # simulate a concurrent writer slipping past the pre-check
    monkeypatch.setattr(repo, "check_duplicate_identity", lambda *a, **k: None)
    with pytest.raises(DuplicateIdentityError):
        new_client(repo, cedula="555")
    assert len(repo.clients) == 1


def test_requires_a_trainer(store):
    repo = ClientRepository(None)
    assert repo.fetch_clients() == []
    with pytest.raises(NotAuthenticatedError):
        new_client(repo)


# ---------- month overflow ----------

def test_creation_and_renewal_share_the_month_overflow_rule(repo):
    created = new_client(repo, start_date="2025-01-31", duration_months=1)
    renewed = repo.renew_client(created.id, 1, "2025-01-31")
    assert created.end_date == date(2025, 2, 28)
    assert renewed.end_date == created.end_date


# ---------- renew ----------

def test_renewal_is_not_additive(repo):
    client = new_client(repo, start_date="2023-12-01", duration_months=1)
    assert client.end_date == date(2024, 1, 1)
    renewed = repo.renew_client(client.id, 1)
    assert renewed.start_date == date(2025, 6, 15)
    assert renewed.end_date == date(2025, 7, 15)
    assert renewed.duration_months == 1
    assert repo.get(client.id) == renewed


def test_renew_with_future_start(repo):
    client = new_client(repo)
    renewed = repo.renew_client(client.id, 2, "2025-07-01")
    assert (renewed.start_date, renewed.end_date) == (date(2025, 7, 1), date(2025, 9, 1))


def test_renew_rejects_bad_duration(repo):
    client = new_client(repo)
    for bad in (0, -1, 1.5, True):
        with pytest.raises(ValidationError):
            repo.renew_client(client.id, bad)


def test_renew_has_no_upper_bound(repo):
    client = new_client(repo)
    assert repo.renew_client(client.id, 24).end_date == date(2027, 6, 15)


def test_renew_turns_expired_client_active(repo):
    client = new_client(repo, start_date="2025-01-01", duration_months=1)
    assert repo.status_of(client) == "expired"
    assert repo.status_of(repo.renew_client(client.id, 1)) == "active"


# ---------- update ----------

def test_update_recomputes_end_date(repo):
    client = new_client(repo, start_date="2025-06-01", duration_months=1)
    updated = repo.update_client(client.id, duration_months=3)
    assert updated.end_date == date(2025, 9, 1)
    updated = repo.update_client(client.id, start_date="2025-08-31")
    assert updated.end_date == date(2025, 11, 30)


def test_update_without_dates_keeps_window(repo):
    client = new_client(repo)
    updated = repo.update_client(client.id, full_name="  New Name ")
    assert updated.full_name == "New Name"
    assert updated.end_date == client.end_date


def test_update_duplicate_guard_excludes_self(repo):
    client = new_client(repo, cedula="111")
    assert repo.update_client(client.id, cedula="111").cedula == "111"


def test_update_to_taken_identity_rejected(repo):
    new_client(repo, cedula="111")
    second = new_client(repo, cedula="222")
    with pytest.raises(DuplicateIdentityError):
        repo.update_client(second.id, cedula="111")
    assert repo.get(second.id).cedula == "222"


def test_update_rejects_unknown_fields(repo):
    client = new_client(repo)
    with pytest.raises(ValidationError):
        repo.update_client(client.id, end_date="2030-01-01")


def test_cannot_touch_other_trainers_client(repo, trainer_b, today):
    client = new_client(repo)
    other = ClientRepository(trainer_b, today=lambda: today)
    with pytest.raises(ValidationError):
        other.update_client(client.id, phone="000")
    with pytest.raises(RecordNotFoundError):
        other.renew_client(client.id, 1)
    with pytest.raises(RecordNotFoundError):
        other.delete_client(client.id)


# ---------- delete ----------

def test_delete_removes_from_cache_and_store(repo):
    client = new_client(repo)
    repo.delete_client(client.id)
    assert repo.clients == []
    assert db.query("clients") == []


# ---------- store failures ----------

@pytest.mark.parametrize(
    "failing_op, action, expected_queries",
    [
        ("update", lambda r, c: r.renew_client(c.id, 2), 1),
        # cache miss lookup + re-fetch
        ("update", lambda r, c: r.update_client(c.id, phone="777"), 2),
        # duplicate pre-check + re-fetch
        ("insert", lambda r, c: new_client(r, cedula="999"), 2),
        ("delete", lambda r, c: r.delete_client(c.id), 1),
    ],
    ids=["renew", "update", "create", "delete"],
)
def test_store_failure_resyncs_and_reraises(trainer_a, today, failing_op, action, expected_queries):
    repo = ClientRepository(trainer_a, today=lambda: today)
    client = new_client(repo)
    flaky = FlakyStore({failing_op})
    repo.store = flaky
    repo.clients = []  # diverged cache

    with pytest.raises(StoreError):
        action(repo, client)

    assert flaky.queries == expected_queries
    assert repo.clients == [client]
    assert repo.error == f"{failing_op} failed"
    assert len(db.query("clients")) == 1


def test_failed_fetch_empties_cache(repo):
    new_client(repo)
    repo.store = FlakyStore({"query"})
    assert repo.fetch_clients() == []
    assert repo.error == "query failed"


def test_validation_errors_do_not_resync(trainer_a, today):
    flaky = FlakyStore(set())
    repo = ClientRepository(trainer_a, store=flaky, today=lambda: today)
    with pytest.raises(ValidationError):
        new_client(repo, duration_months=0)
    assert flaky.queries == 0


# ---------- dashboard ----------

def test_stats_and_search(repo):
    new_client(repo, cedula="1", full_name="Ana Active", start_date="2025-06-01", duration_months=2)
    new_client(repo, cedula="2", full_name="Eva Expiring", phone="+58999", start_date="2025-05-17", duration_months=1)
    new_client(repo, cedula="3", full_name="Ed Expired", start_date="2025-01-01", duration_months=1)

    assert repo.stats() == {"total": 3, "active": 1, "expiring": 1, "expired": 1}
    assert [c.cedula for c in repo.search("eva")] == ["2"]
    assert [c.cedula for c in repo.search("+58999")] == ["2"]
    assert [c.cedula for c in repo.search(status_filter="expired")] == ["3"]
    assert repo.search("ana", "expired") == []


def test_clear_state(repo):
    new_client(repo)
    repo.clear_state()
    assert repo.clients == [] and repo.error is None


# ---------- cleared or odd-typed fields ----------

@pytest.mark.parametrize("field, value", [("cedula", "   "), ("start_date", ""), ("full_name", ""), ("document_type", "")])
def test_update_rejects_cleared_required_field(repo, field, value):
    client = new_client(repo)
    with pytest.raises(ValidationError):
        repo.update_client(client.id, **{field: value})
    assert repo.get(client.id) == client
    assert db.query("clients")[0][field] == {
        "cedula": client.cedula, "start_date": "2025-06-01",
        "full_name": client.full_name, "document_type": client.document_type,
    }[field]


def test_non_string_phone_is_normalised(repo):
    client = new_client(repo, phone=5551234)
    assert client.phone == "5551234"
    assert repo.update_client(client.id, phone=5559999).phone == "5559999"
