"""
Banking system wiring

Builds every component over one storage backend chosen from configuration.
"""

from datetime import timedelta
from typing import Optional

from .accounts import AccountManager
from .account_numbers import AccountNumberGenerator
from .config import BankingDemoConfig, get_config
from .hashing import CredentialHasher
from .logging_config import setup_logging
from .sessions import SessionManager
from .storage import StorageInterface, create_storage
from .transactions import TransactionProcessor
from .users import UserManager


class BankingSystem:
    """All services sharing one storage backend and one hasher"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[BankingDemoConfig] = None,
                 hasher: Optional[CredentialHasher] = None):
        self.config = config or get_config()
        self.logger = setup_logging(
            level=self.config.log_level,
            log_format=self.config.log_format,
            log_file=self.config.log_file
        )

        self.storage = storage or create_storage(self.config.database_url)
        self.hasher = hasher or CredentialHasher(
            work_factor=self.config.hash_work_factor,
            block_size=self.config.hash_block_size,
            parallelism=self.config.hash_parallelism
        )

        self.session_manager = SessionManager(
            self.storage, timedelta(days=self.config.session_duration_days)
        )
        self.user_manager = UserManager(self.storage, self.session_manager, self.hasher)
        self.account_manager = AccountManager(self.storage, AccountNumberGenerator(self.hasher))
        self.transaction_processor = TransactionProcessor(self.storage, self.account_manager)

    def close(self) -> None:
        self.storage.close()
