from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Set

# ClaimResult.reason values
REASON_AUTH = "auth"                      # upstream says the stored credentials are bad
REASON_MANUAL = "manual"                  # captcha / risk check, the user has to claim by hand
REASON_TRANSPORT = "transport"
REASON_OAUTH = "oauth"
REASON_NO_CREDENTIALS = "no_credentials"


@dataclass
class Reward:
    name: str
    count: int = 1
    id: Optional[str] = None
    icon: Optional[str] = None


@dataclass
class ClaimResult:
    """Outcome of one claim attempt. Terminal: never retried within the same run."""
    success: bool
    message: str
    already_claimed: bool = False
    rewards: Optional[List[Reward]] = None
    game: Optional[str] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if self.already_claimed and not self.success:
            raise ValueError("already_claimed result must be successful")

    @property
    def needs_setup(self) -> bool:
        return self.reason in (REASON_AUTH, REASON_OAUTH, REASON_NO_CREDENTIALS)


@dataclass
class ValidationResult:
    valid: bool
    message: Optional[str] = None


@dataclass
class RedeemResult:
    success: bool
    message: str


@dataclass
class SigningCredential:
    """Short-lived SKPORT credential produced by the OAuth exchange."""
    cred: str
    signing_secret: str
    user_id: str
    hg_id: Optional[str] = None


@dataclass
class GameAccount:
    game_biz: str
    region: str
    game_uid: str
    nickname: str = ""
    level: int = 0
    region_name: str = ""


@dataclass
class HoyolabProfile:
    token: str
    games: Set[str] = field(default_factory=set)
    account_name: str = "Unknown"
    last_claim: Optional[datetime] = None
    last_claim_result: Optional[str] = None


@dataclass
class EndfieldProfile:
    account_token: str
    game_id: str
    server: str = "2"
    account_name: str = "Unknown"
    last_claim: Optional[datetime] = None
    last_claim_result: Optional[str] = None


@dataclass
class AccountRecord:
    discord_id: str
    username: str = ""
    hoyolab: Optional[HoyolabProfile] = None
    endfield: Optional[EndfieldProfile] = None
    notify_on_claim: bool = True


@dataclass
class AccountClaimOutcome:
    hoyolab_results: Optional[List[ClaimResult]] = None
    endfield_result: Optional[ClaimResult] = None

    @property
    def empty(self) -> bool:
        return self.hoyolab_results is None and self.endfield_result is None
