"""
Tests for account funding and transaction history
"""

import sqlite3
import threading
import pytest
from decimal import Decimal

from banking_demo.accounts import AccountManager, AccountStatus, AccountType
from banking_demo.errors import (
    BadRequestError, InternalError, NotFoundError, ValidationError, to_http_exception
)
from banking_demo.storage import InMemoryStorage, SQLiteStorage
from banking_demo.transactions import (
    FundingSource, FundingSourceType, TransactionProcessor, TransactionStatus, TransactionType
)


VISA = FundingSource(type="card", account_number="4532015112830366")
BANK = FundingSource(type="bank", account_number="000123456789", routing_number="021000021")


class SequenceGenerator:
    def __init__(self):
        self.counter = 0

    def generate(self):
        self.counter += 1
        return f"{self.counter:010d}"


class CountingStorage(InMemoryStorage):
    """Counts read queries issued against storage"""

    def __init__(self):
        super().__init__()
        self.reads = 0

    def load(self, table, record_id):
        self.reads += 1
        return super().load(table, record_id)

    def find(self, table, filters, order_by=None, descending=False, limit=None):
        self.reads += 1
        return super().find(table, filters, order_by=order_by, descending=descending, limit=limit)


class FailingTransactionInsertStorage(InMemoryStorage):
    """Accepts accounts but fails to write transactions"""

    def insert(self, table, record_id, data, unique_fields=()):
        if table == "transactions":
            raise sqlite3.OperationalError("disk I/O error")
        return super().insert(table, record_id, data, unique_fields=unique_fields)


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    backend = InMemoryStorage() if request.param == "memory" else SQLiteStorage(":memory:")
    yield backend
    backend.close()


@pytest.fixture
def account_manager(storage):
    return AccountManager(storage, SequenceGenerator())


@pytest.fixture
def processor(storage, account_manager):
    return TransactionProcessor(storage, account_manager)


@pytest.fixture
def checking(account_manager):
    return account_manager.create_account("u1", "checking")


class TestFundingSource:
    """Test funding source construction"""

    def test_type_from_string(self):
        assert VISA.type == FundingSourceType.CARD

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc_info:
            FundingSource(type="crypto", account_number="123")
        assert "funding_type" in exc_info.value.errors

    def test_repr_masks_number(self):
        assert "4532015112830366" not in repr(VISA)
        assert "0366" in repr(VISA)


class TestFundAccount:
    """Test funding rules and balance effects"""

    def test_fund_from_card(self, processor, checking):
        result = processor.fund_account(checking.id, "u1", "100.50", VISA)

        assert result.new_balance == Decimal("100.50")
        assert result.transaction.amount == Decimal("100.50")
        assert result.transaction.transaction_type == TransactionType.DEPOSIT
        assert result.transaction.status == TransactionStatus.COMPLETED
        assert result.transaction.description == "Funding from card"
        assert result.transaction.processed_at is not None

    def test_fund_from_bank(self, processor, checking):
        result = processor.fund_account(checking.id, "u1", "25", BANK)
        assert result.transaction.description == "Funding from bank"
        assert result.new_balance == Decimal("25.00")

    def test_sequential_funding_adds_exactly(self, processor, account_manager, checking):
        processor.fund_account(checking.id, "u1", "100.50", VISA)
        result = processor.fund_account(checking.id, "u1", "25.75", VISA)

        assert result.new_balance == Decimal("126.25")
        assert account_manager.get_account_for_user(checking.id, "u1").balance == Decimal("126.25")

    def test_one_transaction_per_funding(self, processor, storage, checking):
        processor.fund_account(checking.id, "u1", "10.00", VISA)
        assert storage.count("transactions") == 1

    @pytest.mark.parametrize("amount", ["0", "0.00", "-5", "10.999", "010.50", "abc", "10000.01"])
    def test_rejected_amounts_change_nothing(self, processor, storage, account_manager, checking, amount):
        with pytest.raises(ValidationError) as exc_info:
            processor.fund_account(checking.id, "u1", amount, VISA)

        assert "amount" in exc_info.value.errors
        assert storage.count("transactions") == 0
        assert account_manager.get_account_for_user(checking.id, "u1").balance == Decimal("0.00")

    def test_maximum_amount_accepted(self, processor, checking):
        assert processor.fund_account(checking.id, "u1", "10000.00", VISA).new_balance == Decimal("10000.00")

    def test_invalid_card(self, processor, checking):
        bad_card = FundingSource(type="card", account_number="4532015112830367")
        with pytest.raises(ValidationError) as exc_info:
            processor.fund_account(checking.id, "u1", "10.00", bad_card)
        assert "account_number" in exc_info.value.errors

    def test_bank_without_routing(self, processor, checking):
        source = FundingSource(type="bank", account_number="000123456789")
        with pytest.raises(ValidationError) as exc_info:
            processor.fund_account(checking.id, "u1", "10.00", source)
        assert "routing_number" in exc_info.value.errors

    def test_foreign_account(self, processor, checking, storage):
        with pytest.raises(NotFoundError):
            processor.fund_account(checking.id, "intruder", "10.00", VISA)
        assert storage.count("transactions") == 0

    def test_missing_account(self, processor):
        with pytest.raises(NotFoundError):
            processor.fund_account("no-such-account", "u1", "10.00", VISA)

    def test_inactive_account(self, processor, storage, checking):
        storage.update_if("accounts", checking.id, {"status": "active"},
                          {"status": AccountStatus.FROZEN.value})

        with pytest.raises(BadRequestError) as exc_info:
            processor.fund_account(checking.id, "u1", "10.00", VISA)
        assert str(exc_info.value) == "Account is not active"
        assert storage.count("transactions") == 0

    def test_storage_failure_is_internal_error(self):
        storage = FailingTransactionInsertStorage()
        account_manager = AccountManager(storage, SequenceGenerator())
        processor = TransactionProcessor(storage, account_manager)
        account = account_manager.create_account("u1", "checking")

        with pytest.raises(InternalError) as exc_info:
            processor.fund_account(account.id, "u1", "10.00", VISA)

        assert str(exc_info.value) == "Failed to record transaction"
        assert to_http_exception(exc_info.value).status_code == 500
        assert account_manager.get_account_for_user(account.id, "u1").balance == Decimal("0.00")

    def test_concurrent_funding(self, processor, account_manager, checking):
        barrier = threading.Barrier(10)
        errors = []

        def fund():
            barrier.wait()
            try:
                processor.fund_account(checking.id, "u1", "5.00", VISA)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=fund) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert account_manager.get_account_for_user(checking.id, "u1").balance == Decimal("50.00")
        assert len(processor.get_transactions(checking.id, "u1")) == 10


class TestGetTransactions:
    """Test transaction history"""

    def test_newest_first(self, processor, checking):
        for amount in range(1, 11):
            processor.fund_account(checking.id, "u1", str(amount), VISA)

        entries = processor.get_transactions(checking.id, "u1")
        assert [e.transaction.amount for e in entries] == [Decimal(n) for n in range(10, 0, -1)]

    def test_entries_carry_account_type(self, processor, account_manager):
        savings = account_manager.create_account("u1", "savings")
        processor.fund_account(savings.id, "u1", "10.00", VISA)

        entries = processor.get_transactions(savings.id, "u1")
        assert all(e.account_type == AccountType.SAVINGS for e in entries)

    def test_only_this_account(self, processor, account_manager, checking):
        savings = account_manager.create_account("u1", "savings")
        processor.fund_account(checking.id, "u1", "10.00", VISA)
        processor.fund_account(savings.id, "u1", "20.00", VISA)

        entries = processor.get_transactions(checking.id, "u1")
        assert [e.transaction.account_id for e in entries] == [checking.id]

    def test_empty_history(self, processor, checking):
        assert processor.get_transactions(checking.id, "u1") == []

    def test_foreign_account(self, processor, checking):
        with pytest.raises(NotFoundError):
            processor.get_transactions(checking.id, "u2")

    def test_read_count_independent_of_history_length(self):
        storage = CountingStorage()
        account_manager = AccountManager(storage, SequenceGenerator())
        processor = TransactionProcessor(storage, account_manager)
        account = account_manager.create_account("u1", "checking")

        for _ in range(10):
            processor.fund_account(account.id, "u1", "1.00", VISA)

        storage.reads = 0
        entries = processor.get_transactions(account.id, "u1")
        assert len(entries) == 10
        assert storage.reads == 2

    def test_description_returned_verbatim(self, processor, storage, checking):
        processor.fund_account(checking.id, "u1", "10.00", VISA)
        row = storage.find_one("transactions", {"account_id": checking.id})
        storage.update_if("transactions", row["id"], {"id": row["id"]},
                          {"description": "<script>alert('x')</script>"})

        entries = processor.get_transactions(checking.id, "u1")
        assert entries[0].transaction.description == "<script>alert('x')</script>"
