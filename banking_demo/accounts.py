"""
Account Management Module

Opens checking and savings accounts (at most one of each per user), looks up
accounts on behalf of their owner and applies balance changes. Balances are
exact Decimals with two places and are only ever changed through a
compare-and-set on the stored value, so concurrent deposits never lose an
update.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Union
from enum import Enum
import uuid

from .account_numbers import AccountNumberGenerator
from .errors import ConflictError, InternalError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .storage import DuplicateKeyError, StorageInterface, StorageRecord, format_timestamp


CENTS = Decimal("0.01")


class AccountType(Enum):
    """Account products a user can open"""
    CHECKING = "checking"
    SAVINGS = "savings"


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "active"      # Normal operation
    FROZEN = "frozen"      # Temporarily suspended
    CLOSED = "closed"      # Permanently closed


def to_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS)


@dataclass
class Account(StorageRecord):
    """Deposit account owned by one user"""
    user_id: str
    account_number: str
    account_type: AccountType
    balance: Decimal = Decimal("0.00")
    status: AccountStatus = AccountStatus.ACTIVE

    def __post_init__(self):
        self.balance = to_money(Decimal(self.balance))

    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def to_dict(self) -> Dict:
        result = super().to_dict()
        # One row per (user, type); enforced by storage as a unique field
        result['user_account_type'] = f"{self.user_id}:{self.account_type.value}"
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'Account':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            account_number=data['account_number'],
            account_type=AccountType(data['account_type']),
            balance=Decimal(data['balance']),
            status=AccountStatus(data['status']),
        )


class AccountManager:
    """
    Manages account creation, ownership lookups and balance updates
    """

    def __init__(self, storage: StorageInterface, generator: Optional[AccountNumberGenerator] = None):
        self.storage = storage
        self.generator = generator or AccountNumberGenerator()
        self.accounts_table = "accounts"
        self.logger = get_logger("banking_demo.accounts")

    def create_account(self, user_id: str, account_type: Union[AccountType, str]) -> Account:
        """
        Open a new account with a zero balance.

        Args:
            user_id: ID of account owner
            account_type: checking or savings

        Returns:
            The account as re-read from storage

        Raises:
            ValidationError: Unknown account type
            ConflictError: User already has an account of this type
            InternalError: Storage failed to persist or return the account
        """
        account_type = self._parse_account_type(account_type)

        existing = self.storage.find_one(
            self.accounts_table, {"user_id": user_id, "account_type": account_type.value}
        )
        if existing:
            raise ConflictError(f"You already have a {account_type.value} account")

        attempts = 0
        while True:
            attempts += 1
            account_number = self.generator.generate()
            if self.storage.find_one(self.accounts_table, {"account_number": account_number}):
                continue

            now = datetime.now(timezone.utc)
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user_id,
                account_number=account_number,
                account_type=account_type,
            )

            try:
                self.storage.insert(
                    self.accounts_table, account.id, account.to_dict(),
                    unique_fields=("account_number", "user_account_type")
                )
                break
            except DuplicateKeyError as e:
                if e.field == "user_account_type":
                    raise ConflictError(f"You already have a {account_type.value} account")
                # Lost a race for this number (or id); draw another candidate
                continue
            except Exception as e:
                self.logger.error(f"Account insert failed: {e}")
                raise InternalError("Failed to create account") from e

        stored = self.storage.find_one(self.accounts_table, {"account_number": account_number})
        if not stored:
            log_action(
                self.logger, "error", "Created account could not be read back",
                user_id=user_id, action="create_account"
            )
            raise InternalError("Failed to create account")

        created = Account.from_dict(stored)
        log_action(
            self.logger, "info", f"Account created: {account_type.value}",
            user_id=user_id, action="create_account", resource=f"account:{created.id}",
            extra={"account_type": account_type.value, "attempts": attempts}
        )
        return created

    def get_account_for_user(self, account_id: str, user_id: str) -> Account:
        """
        Fetch an account owned by user_id.

        Raises:
            NotFoundError: Missing and foreign accounts are indistinguishable
        """
        data = self.storage.load(self.accounts_table, account_id)
        if not data or data.get('user_id') != user_id:
            raise NotFoundError("Account not found")
        return Account.from_dict(data)

    def get_user_accounts(self, user_id: str) -> List[Account]:
        """All accounts of a user, oldest first"""
        accounts_data = self.storage.find(self.accounts_table, {"user_id": user_id}, order_by="created_at")
        return [Account.from_dict(data) for data in accounts_data]

    def apply_deposit(self, account: Account, amount: Decimal) -> Decimal:
        """
        Add amount to the stored balance and return the new balance.

        The new balance is one addition over the balance last read; if another
        writer changed it in between, re-read and try again.
        """
        amount = to_money(amount)
        current = account.balance
        while True:
            new_balance = to_money(current + amount)
            updated = self.storage.update_if(
                self.accounts_table, account.id,
                expected={"balance": str(current)},
                changes={
                    "balance": str(new_balance),
                    "updated_at": format_timestamp(datetime.now(timezone.utc)),
                }
            )
            if updated:
                account.balance = new_balance
                return new_balance

            data = self.storage.load(self.accounts_table, account.id)
            if not data:
                raise InternalError("Account disappeared during balance update")
            current = Decimal(data['balance'])

    @staticmethod
    def _parse_account_type(account_type: Union[AccountType, str]) -> AccountType:
        if isinstance(account_type, AccountType):
            return account_type
        try:
            return AccountType(account_type)
        except ValueError:
            raise ValidationError.for_field("account_type", "Account type must be 'checking' or 'savings'")
