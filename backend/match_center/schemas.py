from datetime import datetime
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import ACTIVE, CURRENCY_VALUES, PLANNED, RESULT_TIERS, TOURNAMENT_TYPES

LATIN_WORD = r"^[A-Za-z]+$"
LATIN_WORDS = r"^[A-Za-z ]+$"

Tier = Literal[tuple(RESULT_TIERS)]
Currency = Literal[tuple(CURRENCY_VALUES)]
TournamentType = Literal[tuple(TOURNAMENT_TYPES)]


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class PatchModel(StrictModel):
    """Partial update body. Fields listed in ``not_null`` may be omitted but never set to null."""

    not_null: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data):
        if isinstance(data, dict):
            nulls = [name for name in cls.not_null if name in data and data[name] is None]
            if nulls:
                raise ValueError(f"{', '.join(nulls)} cannot be null")
        return data


# ─── Auth ───

class AdminLogin(BaseModel):
    email: str
    password: str


# ─── Players ───

class PlayerCreate(StrictModel):
    first_name: str = Field(pattern=LATIN_WORD, min_length=1, max_length=50)
    last_name: str = Field(pattern=LATIN_WORD, min_length=1, max_length=50)
    avatar: Optional[str] = None
    bio: Optional[str] = Field(default=None, max_length=5000)
    rating: float = Field(default=0, ge=0)
    social_links: Dict[str, str] = {}
    seo: Dict[str, Any] = {}


class PlayerUpdate(PatchModel):
    not_null = ("first_name", "last_name", "avatar", "rating", "social_links", "seo")

    first_name: Optional[str] = Field(default=None, pattern=LATIN_WORD, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, pattern=LATIN_WORD, min_length=1, max_length=50)
    avatar: Optional[str] = None
    bio: Optional[str] = Field(default=None, max_length=5000)
    rating: Optional[float] = Field(default=None, ge=0)
    social_links: Optional[Dict[str, str]] = None
    seo: Optional[Dict[str, Any]] = None


# ─── Families ───

class FamilyCreate(StrictModel):
    name: str = Field(pattern=LATIN_WORDS, min_length=3, max_length=100)
    display_last_name: str = Field(pattern=LATIN_WORD, min_length=1, max_length=50)
    owner: str
    description: Optional[str] = Field(default=None, max_length=5000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    seo: Dict[str, Any] = {}


class FamilyUpdate(PatchModel):
    not_null = ("name", "display_last_name", "seo")

    name: Optional[str] = Field(default=None, pattern=LATIN_WORDS, min_length=3, max_length=100)
    display_last_name: Optional[str] = Field(default=None, pattern=LATIN_WORD, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=5000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    seo: Optional[Dict[str, Any]] = None


class FamilyMemberAdd(StrictModel):
    player_id: str


class FamilyOwnerChange(StrictModel):
    new_owner_id: str


# ─── Templates ───

class MapTemplateCreate(StrictModel):
    name: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    map_image: Optional[str] = None


class MapTemplateUpdate(PatchModel):
    not_null = ("name",)

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    map_image: Optional[str] = None


class PrizeTarget(StrictModel):
    tier: Tier
    rank: Optional[int] = Field(default=None, ge=1)


class PrizeRule(StrictModel):
    target: PrizeTarget
    currency: Currency
    amount: float = Field(ge=0)


class TournamentTemplateCreate(StrictModel):
    name: str = Field(min_length=3, max_length=100)
    description: Optional[str] = None
    rules: Optional[str] = None
    default_image: Optional[str] = None
    map_templates: List[str] = Field(min_length=1)
    prize_pool: List[PrizeRule] = []


class TournamentTemplateUpdate(PatchModel):
    not_null = ("name", "map_templates", "prize_pool")

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = None
    rules: Optional[str] = None
    default_image: Optional[str] = None
    map_templates: Optional[List[str]] = Field(default=None, min_length=1)
    prize_pool: Optional[List[PrizeRule]] = None


# ─── Tournaments ───

class TournamentCreate(StrictModel):
    template_id: str
    name: Optional[str] = Field(default=None, min_length=3, max_length=150)
    tournament_type: TournamentType = "family"
    start_date: datetime
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    rules: Optional[str] = None
    prize_pool: Optional[List[PrizeRule]] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TournamentUpdate(PatchModel):
    not_null = ("name", "status", "start_date", "prize_pool")

    name: Optional[str] = Field(default=None, min_length=3, max_length=150)
    status: Optional[Literal[PLANNED, ACTIVE]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    rules: Optional[str] = None
    prize_pool: Optional[List[PrizeRule]] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ParticipantAdd(StrictModel):
    participant_type: TournamentType = "family"
    family_id: Optional[str] = None
    team_name: Optional[str] = Field(default=None, min_length=1, max_length=100)

    @model_validator(mode="after")
    def check_reference(self):
        if self.participant_type == "family" and not self.family_id:
            raise ValueError("family_id is required for family participants")
        if self.participant_type == "team" and not self.team_name:
            raise ValueError("team_name is required for team participants")
        return self


class TournamentOutcome(StrictModel):
    family_id: str
    tier: Tier
    rank: Optional[int] = Field(default=None, ge=1)


class TournamentComplete(StrictModel):
    outcomes: Optional[List[TournamentOutcome]] = None
    winner_id: Optional[str] = None


# ─── Maps ───

class MapParticipant(StrictModel):
    participant: str
    players: List[str] = []


class MapCreate(StrictModel):
    tournament_id: str
    template_id: str
    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    start_date_time: datetime
    participants: List[MapParticipant] = []


class MapUpdate(PatchModel):
    not_null = ("name", "start_date_time", "participants")

    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    start_date_time: Optional[datetime] = None
    participants: Optional[List[MapParticipant]] = None


class WeaponStat(StrictModel):
    weapon: str = Field(min_length=1)
    shots_fired: int = Field(default=0, ge=0)
    hits: int = Field(default=0, ge=0)
    kills: int = Field(default=0, ge=0)
    damage: float = Field(default=0, ge=0)
    headshots: int = Field(default=0, ge=0)


class PlayerStatRow(StrictModel):
    player_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    family_id: Optional[str] = None
    kills: int = Field(default=0, ge=0)
    deaths: int = Field(default=0, ge=0)
    damage_dealt: float = Field(default=0, ge=0)
    shots_fired: int = Field(default=0, ge=0)
    hits: int = Field(default=0, ge=0)
    headshots: int = Field(default=0, ge=0)
    weapon_stats: List[WeaponStat] = []

    @model_validator(mode="after")
    def check_identity(self):
        if not self.player_id and not (self.first_name and self.last_name):
            raise ValueError("player_id or first_name and last_name are required")
        return self


class RatingChange(StrictModel):
    family_id: str
    change: float


class MapComplete(StrictModel):
    winner_family_id: str
    mvp_player_id: Optional[str] = None
    rating_changes: List[RatingChange] = []
    player_stats: List[PlayerStatRow] = []
