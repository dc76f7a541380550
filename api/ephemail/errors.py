"""Error taxonomy shared by the stores and the HTTP host"""

from typing import Optional


class TempMailError(Exception):
    """Base class for errors raised on creation and mutation paths"""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class QuotaExceeded(TempMailError):
    """Daily (or custom domain lifetime) limit reached"""

    code = "quota_exceeded"

    def __init__(self, tier: str, limit: int, scope: str = "daily", domain: Optional[str] = None):
        if domain:
            message = f"Custom domain {domain} {scope} limit of {limit} reached"
        else:
            message = f"Daily limit exceeded for {tier} emails (limit {limit})"
        super().__init__(message)
        self.tier = tier
        self.limit = limit
        self.scope = scope
        self.domain = domain


class DomainInvalid(TempMailError):
    code = "domain_invalid"

    def __init__(self, domain: str):
        super().__init__(f"Domain {domain} is not available")
        self.domain = domain


class InvalidTier(TempMailError):
    code = "invalid_tier"

    def __init__(self, tier: str):
        super().__init__(f"Unknown tier '{tier}'")
        self.tier = tier


class AddressGenerationExhausted(TempMailError):
    code = "address_generation_exhausted"

    def __init__(self, attempts: int):
        super().__init__(f"Unable to generate unique address after {attempts} attempts")
        self.attempts = attempts


class NotFoundOrExpired(TempMailError):
    """Entity absent, expired or owned by someone else. Never distinguished."""

    code = "not_found"

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class StorageUnavailable(TempMailError):
    code = "storage_unavailable"

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(message)


class NoGmailAccounts(TempMailError):
    code = "no_gmail_accounts"

    def __init__(self):
        super().__init__("No Gmail accounts available")
