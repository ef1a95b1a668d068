import random
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from pymongo.errors import DuplicateKeyError

from errors import InsufficientStock, InvalidRequest, UnknownActor


def test_query_unknown_record_is_zero(bank, hospital):
    record = bank.ledger.query(hospital["id"], "B+")
    assert record["units"] == 0
    assert record["updated_at"] is None


def test_credit_then_debit(bank, hospital):
    bank.ledger.credit(hospital["id"], "A+", 15)
    record = bank.ledger.debit(hospital["id"], "A+", 4)
    assert record["units"] == 11
    assert bank.ledger.query(hospital["id"], "A+")["units"] == 11


def test_credit_keeps_one_record_per_key(bank, hospital):
    bank.ledger.credit(hospital["id"], "O+", 1)
    bank.ledger.credit(hospital["id"], "O+", 2)
    assert bank.store.db["inventory"].count_documents({"facility_id": hospital["id"]}) == 1


def test_refused_debit_leaves_count_unchanged(bank, hospital):
    bank.ledger.credit(hospital["id"], "AB-", 3)
    with pytest.raises(InsufficientStock) as excinfo:
        bank.ledger.debit(hospital["id"], "AB-", 4)
    assert excinfo.value.available == 3
    assert excinfo.value.requested == 4
    assert bank.ledger.query(hospital["id"], "AB-")["units"] == 3


def test_debit_of_never_credited_group(bank, hospital):
    with pytest.raises(InsufficientStock):
        bank.ledger.debit(hospital["id"], "B-", 1)


@pytest.mark.parametrize("units", [0, -2, 1.5, True])
def test_rejects_non_positive_or_fractional_units(bank, hospital, units):
    with pytest.raises(InvalidRequest):
        bank.ledger.credit(hospital["id"], "A+", units)
    with pytest.raises(InvalidRequest):
        bank.ledger.debit(hospital["id"], "A+", units)


def test_rejects_unknown_blood_group(bank, hospital):
    with pytest.raises(InvalidRequest):
        bank.ledger.credit(hospital["id"], "C+", 1)


def test_only_facilities_hold_stock(bank, receiver):
    with pytest.raises(UnknownActor):
        bank.ledger.credit(receiver["id"], "A+", 1)


@pytest.mark.parametrize("seed", range(6))
def test_random_sequences_never_go_negative(bank, hospital, seed):
    rng = random.Random(seed)
    expected = 0
    for _ in range(50):
        units = rng.randint(1, 6)
        if rng.random() < 0.45:
            bank.ledger.credit(hospital["id"], "O-", units)
            expected += units
        else:
            try:
                bank.ledger.debit(hospital["id"], "O-", units)
                expected -= units
            except InsufficientStock as exc:
                assert exc.available == expected < units
        record = bank.ledger.query(hospital["id"], "O-")
        assert record["units"] == expected
        assert record["units"] >= 0


def test_concurrent_debits_serialize(bank, hospital):
    bank.ledger.credit(hospital["id"], "A-", 10)
    attempts = 25
    barrier = threading.Barrier(attempts)

    def debit_one(_):
        barrier.wait()
        try:
            bank.ledger.debit(hospital["id"], "A-", 1)
            return True
        except InsufficientStock:
            return False

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        results = list(pool.map(debit_one, range(attempts)))

    assert results.count(True) == 10
    assert bank.ledger.query(hospital["id"], "A-")["units"] == 0


def test_list_reports_every_blood_group(bank, hospital):
    bank.ledger.credit(hospital["id"], "B+", 12)
    records = {r["blood_group"]: r["units"] for r in bank.ledger.list(hospital["id"])}
    assert len(records) == 8
    assert records["B+"] == 12
    assert records["O-"] == 0


def test_summary_levels(bank, hospital):
    bank.ledger.credit(hospital["id"], "A+", 15)
    bank.ledger.credit(hospital["id"], "B-", 8)
    bank.ledger.credit(hospital["id"], "AB-", 3)
    summary = bank.ledger.summary(hospital["id"])
    levels = {g["blood_group"]: g["level"] for g in summary["blood_groups"]}
    assert summary["total_units"] == 26
    assert levels["A+"] == "sufficient"
    assert levels["B-"] == "limited"
    assert levels["AB-"] == "low"
    assert levels["O+"] == "low"


class FirstInsertLost:
    """Collection whose first upsert loses the insert race to another writer."""

    def __init__(self, collection, facility_id, blood_group, units):
        self.collection = collection
        self.existing = {"facility_id": facility_id, "blood_group": blood_group, "units": units}
        self.raced = False

    def find_one_and_update(self, *args, **kwargs):
        if not self.raced:
            self.raced = True
            self.collection.insert_one(dict(self.existing))
            raise DuplicateKeyError("E11000 duplicate key error")
        return self.collection.find_one_and_update(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self.collection, name)


def test_first_credit_survives_a_concurrent_insert(bank, hospital, monkeypatch):
    racing = FirstInsertLost(bank.store.db["inventory"], hospital["id"], "AB+", 2)
    monkeypatch.setattr(type(bank.ledger), "collection", property(lambda self: racing))
    record = bank.ledger.credit(hospital["id"], "AB+", 3)
    monkeypatch.undo()

    assert record["units"] == 5
    assert bank.ledger.query(hospital["id"], "AB+")["units"] == 5
