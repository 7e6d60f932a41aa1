"""
Transaction Processing Module

Funds accounts from an external card or bank account and lists an account's
transactions newest first. Each funding event writes exactly one deposit
transaction and then moves the balance by the same amount. Transaction
records are never modified after they are written.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from enum import Enum
import uuid

from .accounts import AccountManager, AccountType, to_money
from .config import get_config
from .errors import BadRequestError, InternalError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord
from .validators import collect_errors, validate_amount, validate_funding_source


class TransactionType(Enum):
    """Types of account transactions"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(Enum):
    """States of a transaction"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class FundingSourceType(Enum):
    """Where funding money comes from"""
    CARD = "card"
    BANK = "bank"


@dataclass(frozen=True)
class FundingSource:
    """External source of a funding request; never persisted"""
    type: FundingSourceType
    account_number: str
    routing_number: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.type, FundingSourceType):
            try:
                object.__setattr__(self, 'type', FundingSourceType(self.type))
            except ValueError:
                raise ValidationError.for_field("funding_type", "Funding type must be 'card' or 'bank'")

    def __repr__(self) -> str:
        return f"FundingSource(type={self.type.value!r}, account_number='****{self.account_number[-4:]}')"


@dataclass
class Transaction(StorageRecord):
    """Immutable record of one movement of money on an account"""
    account_id: str
    transaction_type: TransactionType
    amount: Decimal
    description: str
    status: TransactionStatus
    processed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Transaction':
        processed_at = None
        if data.get('processed_at'):
            processed_at = datetime.fromisoformat(data['processed_at'])

        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Decimal(data['amount']),
            description=data['description'],
            status=TransactionStatus(data['status']),
            processed_at=processed_at,
        )

    def with_account_type(self, account_type: AccountType) -> 'AccountTransaction':
        return AccountTransaction(transaction=self, account_type=account_type)


@dataclass(frozen=True)
class AccountTransaction:
    """A transaction together with the type of the account it belongs to"""
    transaction: Transaction
    account_type: AccountType


@dataclass(frozen=True)
class FundingResult:
    """Outcome of a funding request"""
    transaction: Transaction
    new_balance: Decimal


class TransactionProcessor:
    """
    Processes funding requests and serves transaction history
    """

    def __init__(self, storage: StorageInterface, account_manager: AccountManager):
        self.storage = storage
        self.account_manager = account_manager
        self.table_name = "transactions"
        self.logger = get_logger("banking_demo.transactions")

    def fund_account(
        self,
        account_id: str,
        user_id: str,
        amount: Union[str, Decimal],
        funding_source: FundingSource
    ) -> FundingResult:
        """
        Deposit amount into the caller's account from an external source.

        Args:
            account_id: Account to fund
            user_id: Caller; must own the account
            amount: Positive amount with at most two decimal places
            funding_source: Card or bank the money comes from

        Returns:
            The newest transaction of the account and the updated balance

        Raises:
            ValidationError: Amount or funding source rejected
            NotFoundError: Account missing or owned by someone else
            BadRequestError: Account is not active
            InternalError: Written transaction could not be read back
        """
        deposit = self._validate_funding(amount, funding_source)

        account = self.account_manager.get_account_for_user(account_id, user_id)
        if not account.is_active():
            raise BadRequestError("Account is not active")

        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account.id,
            transaction_type=TransactionType.DEPOSIT,
            amount=deposit,
            description=f"Funding from {funding_source.type.value}",
            status=TransactionStatus.COMPLETED,
            processed_at=now,
        )
        try:
            self.storage.insert(self.table_name, transaction.id, transaction.to_dict())
        except Exception as e:
            self.logger.error(f"Transaction insert failed: {e}")
            raise InternalError("Failed to record transaction") from e

        latest = self.storage.find_one(
            self.table_name, {"account_id": account.id}, order_by="created_at", descending=True
        )
        if not latest:
            raise InternalError("Failed to record transaction")

        new_balance = self.account_manager.apply_deposit(account, deposit)

        log_action(
            self.logger, "info", "Account funded",
            user_id=user_id, action="fund_account", resource=f"account:{account.id}",
            extra={
                "transaction_id": transaction.id,
                "amount": str(deposit),
                "funding_type": funding_source.type.value,
                "new_balance": str(new_balance),
            }
        )

        return FundingResult(transaction=Transaction.from_dict(latest), new_balance=new_balance)

    def get_transactions(self, account_id: str, user_id: str) -> List[AccountTransaction]:
        """
        All transactions of the caller's account, newest first.

        Each entry carries the account type from the ownership lookup, so the
        whole listing costs one account read and one transaction query.
        Descriptions are plain text and must be displayed as such.

        Raises:
            NotFoundError: Account missing or owned by someone else
        """
        account = self.account_manager.get_account_for_user(account_id, user_id)

        rows = self.storage.find(
            self.table_name, {"account_id": account.id}, order_by="created_at", descending=True
        )
        return [Transaction.from_dict(row).with_account_type(account.account_type) for row in rows]

    def _validate_funding(self, amount: Union[str, Decimal], funding_source: FundingSource) -> Decimal:
        maximum = Decimal(get_config().max_funding_amount)
        amount_result = validate_amount(amount, require_positive=True, maximum=maximum)
        source_results = validate_funding_source(
            funding_source.type.value, funding_source.account_number, funding_source.routing_number
        )

        errors = collect_errors([amount_result] + source_results)
        if errors:
            log_action(
                self.logger, "info", "Funding request rejected",
                action="fund_account", extra={"fields": sorted(errors)}
            )
            raise ValidationError(errors)
        return to_money(amount_result.value)
