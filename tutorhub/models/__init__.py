from tutorhub.models.availability import AvailabilityRule
from tutorhub.models.catalog import Course, Package
from tutorhub.models.session import TutoringSession
from tutorhub.models.subscription import Subscription, SubscriptionWeek, WeekSlot

__all__ = [
    "AvailabilityRule",
    "Course",
    "Package",
    "Subscription",
    "SubscriptionWeek",
    "TutoringSession",
    "WeekSlot",
]
