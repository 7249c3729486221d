"""ORM models. Importing this package registers every table on Base.metadata."""

from library_api.models.enums import BookStatus, UserRole, UserTier
from library_api.models.user import User
from library_api.models.book import Book
from library_api.models.loan import Loan

__all__ = ["Book", "BookStatus", "Loan", "User", "UserRole", "UserTier"]
