"""Models package."""

from .user import User
from .credit_transaction import CreditTransaction
from .agent import Agent
from .unified_user import UnifiedUser
from .unified_credit_transaction import UnifiedCreditTransaction
from .credit_reservation import CreditReservation
from .story import Story
from .brand_kit import BrandKit
from .stripe_webhook_event import StripeWebhookEvent
