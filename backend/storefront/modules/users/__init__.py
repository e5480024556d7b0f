"""
Users Module - Accounts and wallets.
"""

from storefront.modules.users.service import UserService

__all__ = ["UserService"]
