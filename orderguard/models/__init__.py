from orderguard.models.signals import (
    IdentifierType,
    CooldownStatus,
    BlocklistEntry,
    BlocklistOutcome,
    BlocklistRequest,
    BlocklistMutationResponse,
    MatchType,
    SimilarMatch,
)
from orderguard.models.orders import (
    OrderRequest,
    OrderRecord,
    OrderFingerprint,
    OrderPlacementResponse,
)
from orderguard.models.scoring import (
    RiskTier,
    SignalKind,
    Signal,
    FraudScoreCache,
    FraudScoreResponse,
    BatchMode,
    BatchJobState,
    BatchRequest,
    BatchStatus,
)
from orderguard.models.decision import (
    Action,
    CheckoutRequest,
    Decision,
    BlockedAttempt,
    AttemptStats,
)
from orderguard.models.settings import (
    GuardSettings,
    SettingsUpdate,
)
