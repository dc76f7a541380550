"""Models package"""

from ephemail.models.domain import Domain, CustomDomain, DomainCacheStats
from ephemail.models.usage import ApiUsageDaily
from ephemail.models.gmail import GmailAccount

__all__ = ["Domain", "CustomDomain", "DomainCacheStats", "ApiUsageDaily", "GmailAccount"]
