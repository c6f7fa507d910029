from app.models.user import User, UserRole  # noqa: F401
from app.models.subscription import (  # noqa: F401
    UNLIMITED,
    BillingPeriod,
    PlanTier,
    PlanTierConfig,
    Subscription,
)
from app.models.listing import Listing, ListingStatus  # noqa: F401
from app.models.security_deposit import (  # noqa: F401
    SecurityDeposit,
    SecurityDepositStatus,
)
from app.models.billing import (  # noqa: F401
    CallbackOutcome,
    CallbackResult,
    Payment,
    PaymentCallback,
    PaymentGateway,
    PaymentPurposeType,
    PaymentStatus,
)
from app.models.notification import (  # noqa: F401
    NotificationChannel,
    NotificationType,
    UserNotification,
)
