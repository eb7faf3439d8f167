from promo_credits.models.credit_account import CreditAccount
from promo_credits.models.credit_transaction import CreditTransaction
from promo_credits.models.organization import Organization
from promo_credits.models.promotion import Promotion
from promo_credits.models.promotion_package import PromotionPackage
from promo_credits.models.user import User

__all__ = [
    "CreditAccount",
    "CreditTransaction",
    "Organization",
    "Promotion",
    "PromotionPackage",
    "User",
]
