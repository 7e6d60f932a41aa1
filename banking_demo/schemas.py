"""
Pydantic schemas for requests and responses

Request models carry raw form text; field rules live in the validators and
are applied by the services. Response models are the only shapes handed back
to clients, so they list exactly the fields that may leave the server: no
credential hashes, no funding card numbers. Descriptions are plain text.
"""

from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from .accounts import Account
from .transactions import AccountTransaction, FundingResult, FundingSource, Transaction
from .users import UserProfile


# Requests

class SignupRequest(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str
    phone: str
    date_of_birth: str = Field(..., description="ISO date (YYYY-MM-DD)")
    ssn: str
    address: str
    city: str
    state: str
    zip_code: str


class LoginRequest(BaseModel):
    email: str
    password: str


class CreateAccountRequest(BaseModel):
    account_type: str = Field(..., description="Account type (checking, savings)")


class FundingSourceModel(BaseModel):
    type: str = Field(..., description="Funding source type (card, bank)")
    account_number: str
    routing_number: Optional[str] = None

    def to_funding_source(self) -> FundingSource:
        return FundingSource(
            type=self.type,
            account_number=self.account_number,
            routing_number=self.routing_number
        )


class FundAccountRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    funding_source: FundingSourceModel


# Responses

class UserModel(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: str
    date_of_birth: date
    address: str
    city: str
    state: str
    zip_code: str

    @classmethod
    def from_profile(cls, profile: UserProfile) -> 'UserModel':
        return cls(
            id=profile.id,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            phone=profile.phone,
            date_of_birth=profile.date_of_birth,
            address=profile.address,
            city=profile.city,
            state=profile.state,
            zip_code=profile.zip_code
        )


class AccountModel(BaseModel):
    id: str
    account_number: str
    account_type: str
    balance: str = Field(..., description="Decimal amount as string")
    status: str
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> 'AccountModel':
        return cls(
            id=account.id,
            account_number=account.account_number,
            account_type=account.account_type.value,
            balance=str(account.balance),
            status=account.status.value,
            created_at=account.created_at
        )


class TransactionModel(BaseModel):
    id: str
    account_id: str
    type: str
    amount: str
    description: str = Field(..., description="Plain text; never interpret as markup")
    status: str
    created_at: datetime
    processed_at: Optional[datetime] = None
    account_type: Optional[str] = None

    @classmethod
    def from_transaction(cls, transaction: Transaction,
                         account_type: Optional[str] = None) -> 'TransactionModel':
        return cls(
            id=transaction.id,
            account_id=transaction.account_id,
            type=transaction.transaction_type.value,
            amount=str(transaction.amount),
            description=transaction.description,
            status=transaction.status.value,
            created_at=transaction.created_at,
            processed_at=transaction.processed_at,
            account_type=account_type
        )

    @classmethod
    def from_account_transaction(cls, entry: AccountTransaction) -> 'TransactionModel':
        return cls.from_transaction(entry.transaction, entry.account_type.value)


class FundingResponse(BaseModel):
    transaction: TransactionModel
    new_balance: str

    @classmethod
    def from_result(cls, result: FundingResult) -> 'FundingResponse':
        return cls(
            transaction=TransactionModel.from_transaction(result.transaction),
            new_balance=str(result.new_balance)
        )


class TransactionListResponse(BaseModel):
    transactions: List[TransactionModel]

    @classmethod
    def from_entries(cls, entries: List[AccountTransaction]) -> 'TransactionListResponse':
        return cls(transactions=[TransactionModel.from_account_transaction(e) for e in entries])
