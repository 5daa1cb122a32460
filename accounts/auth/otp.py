"""
One-time login codes bound to a phone number.

OTPStore persists one record per phone in a JSON file. Records expire
ttl_seconds after creation: reads treat older records as absent, and
purge_expired() (run periodically by the API scheduler) deletes them.
"""

import hmac
import json
import logging
import secrets
import threading
import time
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, asdict

from .password import normalize_phone
from .users import IdentityValidationError

logger = logging.getLogger(__name__)

DEFAULT_OTPS_FILE = Path(__file__).parent.parent.parent / "data" / "otps.json"

OTP_TTL_SECONDS = 300  # 5 minutes from creation
OTP_CODE_LENGTH = 6


@dataclass
class OTPRecord:
    """A pending code for one phone."""
    phone: str
    code: str
    created_at: float

    def expires_at(self, ttl_seconds: int) -> float:
        return self.created_at + ttl_seconds

    def is_expired(self, ttl_seconds: int, now: Optional[float] = None) -> bool:
        now = now if now is not None else time.time()
        return self.expires_at(ttl_seconds) <= now


class OTPStore:
    """JSON-based OTP storage, keyed by normalized phone."""

    def __init__(self, file_path: Optional[Path] = None, ttl_seconds: int = OTP_TTL_SECONDS):
        self.file_path = file_path or DEFAULT_OTPS_FILE
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            self._save_all({})

    def _load_all(self) -> dict[str, dict]:
        try:
            with open(self.file_path, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return {}

    def _save_all(self, records: dict[str, dict]):
        with open(self.file_path, "w") as f:
            json.dump(records, f, indent=2)

    def put(self, record: OTPRecord):
        """Store a record, replacing any earlier code for the phone."""
        with self._lock:
            records = self._load_all()
            records[record.phone] = asdict(record)
            self._save_all(records)

    def get(self, phone: str, now: Optional[float] = None) -> Optional[OTPRecord]:
        """Get the live record for a phone; expired records read as None."""
        with self._lock:
            data = self._load_all().get(phone)
        if not data:
            return None
        record = OTPRecord(**data)
        if record.is_expired(self.ttl_seconds, now):
            return None
        return record

    def consume(self, phone: str, code: str, now: Optional[float] = None) -> bool:
        """
        Delete the record for phone if it is live and matches code.

        Check and delete happen under one lock, so a code is consumed at most once.

        Returns:
            True if the code matched and was consumed
        """
        with self._lock:
            records = self._load_all()
            data = records.get(phone)
            if not data:
                return False

            record = OTPRecord(**data)
            if record.is_expired(self.ttl_seconds, now):
                return False

            if not hmac.compare_digest(record.code.encode(), code.encode()):
                return False

            del records[phone]
            self._save_all(records)
        return True

    def purge_expired(self, now: Optional[float] = None) -> int:
        """
        Delete every record older than the TTL.

        Returns:
            Number of records removed
        """
        with self._lock:
            records = self._load_all()
            live = {
                phone: data for phone, data in records.items()
                if not OTPRecord(**data).is_expired(self.ttl_seconds, now)
            }
            removed = len(records) - len(live)
            if removed:
                self._save_all(live)
        return removed


class OTPManager:
    """
    Issues and verifies one-time codes.

    Usage:
        manager = OTPManager(OTPStore())
        code = manager.issue("+15550001")
        manager.verify("+15550001", code)  # True, once
    """

    def __init__(
        self,
        store: Optional[OTPStore] = None,
        code_length: int = OTP_CODE_LENGTH,
        default_country_code: str = ""
    ):
        self.store = store or OTPStore()
        self.code_length = code_length
        self.default_country_code = default_country_code

    @property
    def ttl_seconds(self) -> int:
        return self.store.ttl_seconds

    def _normalize(self, phone: str) -> str:
        normalized = normalize_phone(phone, self.default_country_code)
        if not normalized:
            raise IdentityValidationError(f"Invalid phone number: {phone}")
        return normalized

    def generate_code(self) -> str:
        """Random numeric code of code_length digits (leading zeros allowed)."""
        return "".join(secrets.choice("0123456789") for _ in range(self.code_length))

    def issue_record(self, phone: str) -> OTPRecord:
        """
        Issue a new code for a phone.

        Args:
            phone: Phone number (will be normalized)

        Returns:
            The stored record; delivering record.code is the caller's job

        Raises:
            IdentityValidationError: If phone is invalid
        """
        record = OTPRecord(
            phone=self._normalize(phone),
            code=self.generate_code(),
            created_at=time.time()
        )
        self.store.put(record)
        logger.info(f"Issued OTP for {record.phone}")
        return record

    def issue(self, phone: str) -> str:
        """Issue a new code for a phone and return it."""
        return self.issue_record(phone).code

    def verify(self, phone: str, code: str) -> bool:
        """
        Check a code and consume it on success.

        Returns:
            True at most once per issued code
        """
        normalized = normalize_phone(phone, self.default_country_code)
        if not normalized or not code:
            return False

        if self.store.consume(normalized, code):
            logger.info(f"OTP verified for {normalized}")
            return True

        logger.debug(f"OTP rejected for {normalized}")
        return False

    def purge_expired(self) -> int:
        removed = self.store.purge_expired()
        if removed:
            logger.info(f"Purged {removed} expired OTP records")
        return removed
