"""Data models for ticket classification and routing."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ticketai.conditions import evaluate, parse_conditions
from ticketai.errors import ServiceErrorKind


class TicketCategory(str, Enum):
    """Supported ticket categories."""

    BILLING = "billing"
    TECHNICAL = "technical"
    FEATURE_REQUEST = "feature_request"
    BUG = "bug"
    ACCOUNT = "account"
    GENERAL = "general"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    VERY_NEGATIVE = "very_negative"


# --- Classification ---


class Sentiment(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: SentimentLabel = SentimentLabel.NEUTRAL
    score: float = Field(default=0.0, ge=-1.0, le=1.0)


class ConfidenceScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: float = Field(default=0.0, ge=0.0, le=1.0)
    priority: float = Field(default=0.0, ge=0.0, le=1.0)
    sentiment: float = Field(default=0.0, ge=0.0, le=1.0)

    def mean(self) -> float:
        return (self.category + self.priority + self.sentiment) / 3


class ClassificationResult(BaseModel):
    """Normalized output of one classification call. Immutable once returned."""

    model_config = ConfigDict(frozen=True)

    category: TicketCategory = TicketCategory.GENERAL
    priority: Priority = Priority.MEDIUM
    sentiment: Sentiment = Field(default_factory=Sentiment)
    confidence: ConfidenceScores = Field(default_factory=ConfidenceScores)
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    model_version: str = ""
    model_provider: str = ""
    processing_time_ms: int = Field(default=0, ge=0)
    failure: Optional[ServiceErrorKind] = Field(
        None, description="Set when this is the fallback result of a failed call"
    )

    @property
    def failed(self) -> bool:
        return self.failure is not None


class ExtractedEntities(BaseModel):
    order_ids: list[str] = Field(default_factory=list)
    account_numbers: list[str] = Field(default_factory=list)
    emails: list[str] = Field(default_factory=list)
    phones: list[str] = Field(default_factory=list)
    products: list[str] = Field(default_factory=list)
    dates: list[str] = Field(default_factory=list)


class Emotions(BaseModel):
    model_config = ConfigDict(frozen=True)

    joy: float = Field(default=0.0, ge=0.0, le=1.0)
    anger: float = Field(default=0.0, ge=0.0, le=1.0)
    sadness: float = Field(default=0.0, ge=0.0, le=1.0)
    fear: float = Field(default=0.0, ge=0.0, le=1.0)
    disgust: float = Field(default=0.0, ge=0.0, le=1.0)


class SentimentAnalysis(BaseModel):
    """Detailed sentiment of a text: polarity score, strength and emotion breakdown."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(default=0.0, ge=-1.0, le=1.0)
    magnitude: float = Field(default=0.0, ge=0.0, le=1.0)
    emotions: Emotions = Field(default_factory=Emotions)


# --- Queue jobs ---


class ClassificationJob(BaseModel):
    """Queue payload: {ticketId, tenantId, subject, body}."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ticket_id: str = Field(..., alias="ticketId")
    tenant_id: str = Field(..., alias="tenantId")
    subject: str = ""
    body: str = ""


class RoutingJob(BaseModel):
    """Follow-up job referencing a classified ticket."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ticket_id: str = Field(..., alias="ticketId")
    tenant_id: str = Field(..., alias="tenantId")


# --- Organizational state ---


class TeamMembership(BaseModel):
    team_id: str
    is_team_lead: bool = False


class Agent(BaseModel):
    """An assignable agent with skills, team memberships and capacity."""

    agent_id: str = Field(..., description="Unique agent identifier")
    tenant_id: str = Field(default="", description="Owning tenant")
    display_name: str = Field(default="", description="Display name")
    role: str = Field(default="agent", description="agent | manager | admin")
    skills: list[str] = Field(default_factory=list)
    teams: list[TeamMembership] = Field(default_factory=list)
    current_load: int = Field(default=0, ge=0)
    capacity: int = Field(default=10, ge=1)
    active: bool = True

    @property
    def load_ratio(self) -> float:
        return self.current_load / self.capacity

    def in_team(self, team_id: str) -> bool:
        return any(m.team_id == team_id for m in self.teams)

    def leads(self, team_id: Optional[str] = None) -> bool:
        """Team lead of `team_id`, or of any team when team_id is None."""
        return any(m.is_team_lead and (team_id is None or m.team_id == team_id) for m in self.teams)


class Team(BaseModel):
    team_id: str
    tenant_id: str = ""
    name: str = ""
    skills: list[str] = Field(default_factory=list)
    member_ids: list[str] = Field(default_factory=list)


class RuleActions(BaseModel):
    assign_team: Optional[str] = None
    assign_user: Optional[str] = None
    set_priority: Optional[Priority] = None
    add_tags: list[str] = Field(default_factory=list)


class RoutingRule(BaseModel):
    """Tenant-configured condition -> action mapping; higher priority is evaluated first."""

    rule_id: str = ""
    tenant_id: str = ""
    name: str
    priority: int = 0
    conditions: Optional[dict[str, Any]] = Field(default_factory=dict)
    actions: RuleActions = Field(default_factory=RuleActions)
    active: bool = True

    _parsed = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        # Raises RuleConditionError for unsupported operators.
        self._parsed = parse_conditions(self.conditions)

    def matches(self, ticket: "Ticket") -> bool:
        return evaluate(self._parsed, ticket.field_value)


# --- Tickets & decisions ---


class Ticket(BaseModel):
    """
    Live ticket record as seen by routing. Extra fields (e.g. channel,
    customer_tier) are kept so rules can match on them.
    """

    model_config = ConfigDict(extra="allow", use_enum_values=True)

    ticket_id: str
    tenant_id: str = ""
    subject: str = ""
    body: str = ""
    category: Optional[TicketCategory] = None
    priority: Optional[Priority] = None
    sentiment: Optional[SentimentLabel] = None
    sentiment_score: Optional[float] = None
    ai_processed: bool = False
    ai_confidence: Optional[float] = None
    tags: list[str] = Field(default_factory=list)
    assigned_to: Optional[str] = None
    assigned_team: Optional[str] = None

    def field_value(self, name: str) -> Any:
        if name in type(self).model_fields:
            return getattr(self, name)
        return (self.model_extra or {}).get(name)

    @property
    def text(self) -> str:
        return f"{self.subject or ''} {self.body or ''}"


class RoutingDecision(BaseModel):
    """Output of one routing invocation. A report; applied by the caller."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    assign_to_user: Optional[str] = None
    assign_to_team: Optional[str] = None
    set_priority: Optional[Priority] = None
    add_tags: tuple[str, ...] = ()
    reason: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def assigned(self) -> bool:
        return bool(self.assign_to_user or self.assign_to_team)
