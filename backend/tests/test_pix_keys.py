"""
Key registry: handle validation, uniqueness, atomic entitlement consumption.
"""
import pytest
from sqlalchemy import select, func

from backend.core.database import pix_keys
from backend.core.errors import ConflictError, EntitlementExhaustedError, ValidationError
from backend.features.orders.service import OrderLedger
from backend.features.pix_keys.service import KeyRegistry, compose_key, validate_handle
from backend.features.plans.service import get_plan
from backend.models.pix_key import PixKeyStatus


@pytest.fixture
def registry(db):
    return KeyRegistry(db, "chavepix.club")


@pytest.fixture
def entitle(db):
    ledger = OrderLedger(db)

    def _entitle(user_id="user_alice", plan_type="single"):
        order = ledger.create_order(user_id, get_plan(plan_type))
        ledger.mark_completed(order.id, user_id)

    return _entitle


def _count_keys(db, user_id="user_alice"):
    with db.session() as session:
        return session.execute(
            select(func.count()).select_from(pix_keys).where(pix_keys.c.user_id == user_id)
        ).scalar_one()


def test_create_key_composes_full_key(registry, entitle):
    entitle()
    key = registry.create_key("user_alice", "joao.silva")

    assert key.key == "joao.silva@chavepix.club"
    assert key.local_handle == "joao.silva"
    assert key.status is PixKeyStatus.ACTIVE
    assert registry.list_keys("user_alice")[0].id == key.id


def test_duplicate_handle_is_conflict(registry, entitle, db):
    entitle(plan_type="five_pack")
    registry.create_key("user_alice", "joao.silva")

    with pytest.raises(ConflictError) as exc_info:
        registry.create_key("user_alice", "joao.silva")

    assert exc_info.value.code == "conflict"
    assert _count_keys(db) == 1


@pytest.mark.parametrize("handle", ["joao@silva", "joao.silva@chavepix.club", "@"])
def test_handle_with_at_sign_rejected_before_write(registry, entitle, db, handle):
    entitle()
    with pytest.raises(ValidationError):
        registry.create_key("user_alice", handle)
    assert _count_keys(db) == 0


@pytest.mark.parametrize("handle", ["", "joao silva", " joao", "a" * 65, None])
def test_malformed_handles_rejected(handle):
    with pytest.raises(ValidationError):
        validate_handle(handle)


def test_max_length_handle_accepted():
    assert validate_handle("a" * 64) == "a" * 64


def test_no_entitlement_writes_nothing(registry, db):
    with pytest.raises(EntitlementExhaustedError):
        registry.create_key("user_alice", "joao.silva")
    assert _count_keys(db) == 0


def test_entitlement_is_consumed(registry, entitle, db):
    entitle(plan_type="single")
    registry.create_key("user_alice", "first")

    with pytest.raises(EntitlementExhaustedError):
        registry.create_key("user_alice", "second")
    assert _count_keys(db) == 1


def test_five_pack_allows_five_keys(registry, entitle, db):
    entitle(plan_type="five_pack")
    for i in range(5):
        registry.create_key("user_alice", f"key{i}")

    with pytest.raises(EntitlementExhaustedError):
        registry.create_key("user_alice", "key5")
    assert _count_keys(db) == 5


def test_same_handle_for_different_users(registry, entitle):
    entitle("user_alice")
    entitle("user_bob")

    registry.create_key("user_alice", "loja")
    registry.create_key("user_bob", "loja")

    assert [k.user_id for k in registry.list_keys("user_bob")] == ["user_bob"]


def test_compose_key():
    assert compose_key("maria", "chavepix.club") == "maria@chavepix.club"


def test_concurrent_creates_consume_single_entitlement_once(tmp_path):
    import threading

    from backend.core.database import Database

    database = Database(f"sqlite:///{tmp_path / 'keys.sqlite3'}")
    database.create_all()
    ledger = OrderLedger(database)
    order = ledger.create_order("user_alice", get_plan("single"))
    ledger.mark_completed(order.id, "user_alice")
    registry = KeyRegistry(database, "chavepix.club")

    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def worker(i):
        barrier.wait()
        try:
            registry.create_key("user_alice", f"handle{i}")
            outcome = "ok"
        except EntitlementExhaustedError:
            outcome = "entitlement_exhausted"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    try:
        assert sorted(results) == ["entitlement_exhausted"] * 7 + ["ok"]
        assert _count_keys(database) == 1
    finally:
        database.dispose()
