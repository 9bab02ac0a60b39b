"""Review submission, verification and admin action schemas.

Field names are snake_case in Python; the portfolio frontend posts
camelCase, so every model accepts both (alias_generator=to_camel with
populate_by_name). All request schemas use extra="forbid" to reject
unexpected fields.
"""

from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StringConstraints,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Testimonial bounds apply to the trimmed text
MIN_TESTIMONIAL_LENGTH = 50
MAX_TESTIMONIAL_LENGTH = 2000
MIN_RATING = 1
MAX_RATING = 5
MAX_SKILLS = 10
MAX_HIGHLIGHTS = 5

ReviewerRelationship = Literal[
    "professor",
    "colleague",
    "supervisor",
    "collaborator",
    "client",
]
ReviewSource = Literal["direct", "linkedin", "email", "referral"]
ReviewStatus = Literal["pending", "verified", "approved", "rejected", "archived"]
AdminAction = Literal["approve", "reject", "feature", "unfeature", "archive", "edit"]

_NAME_PATTERN = r"^[a-zA-Z\s\-'.]+$"
_LINKEDIN_PATTERN = r"^https://(www\.)?linkedin\.com/in/[a-zA-Z0-9-]+/?$"
_REVIEW_ID_PATTERN = r"^[A-Za-z0-9_-]{1,32}$"

_CAMEL_CONFIG = ConfigDict(
    extra="forbid",
    alias_generator=to_camel,
    populate_by_name=True,
)

ShortText = Annotated[str, StringConstraints(strip_whitespace=True, max_length=200)]
TitleText = Annotated[str, StringConstraints(strip_whitespace=True, max_length=150)]
NotesText = Annotated[str, StringConstraints(strip_whitespace=True, max_length=1000)]
LinkedInUrl = Annotated[
    str, StringConstraints(strip_whitespace=True, pattern=_LINKEDIN_PATTERN)
]
SkillName = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)
]
Highlight = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)
]


# =============================================================================
# Submission
# =============================================================================


class WorkPeriod(BaseModel):
    """Period the reviewer worked with the site owner."""

    model_config = _CAMEL_CONFIG

    start: date
    end: date | None = None

    @model_validator(mode="after")
    def check_order(self) -> "WorkPeriod":
        """End date must not precede start date."""
        if self.end is not None and self.end < self.start:
            msg = "End date must be after start date"
            raise ValueError(msg)
        return self


class ReviewSubmissionInput(BaseModel):
    """Structural shape of a testimonial submission.

    The honeypot field is checked by SubmissionValidator before this model
    is built; it is declared here only so extra="forbid" accepts it.
    """

    model_config = _CAMEL_CONFIG

    # Reviewer
    name: Annotated[
        str,
        StringConstraints(
            strip_whitespace=True,
            min_length=2,
            max_length=100,
            pattern=_NAME_PATTERN,
        ),
    ]
    email: EmailStr
    title: TitleText | None = None
    organization: ShortText | None = None
    relationship: ReviewerRelationship
    linkedin_url: LinkedInUrl | None = None

    # Content
    rating: Annotated[int, Field(strict=True, ge=MIN_RATING, le=MAX_RATING)]
    testimonial: Annotated[
        str,
        StringConstraints(
            strip_whitespace=True,
            min_length=MIN_TESTIMONIAL_LENGTH,
            max_length=MAX_TESTIMONIAL_LENGTH,
        ),
    ]
    project_association: ShortText | None = None
    skills: Annotated[list[SkillName], Field(max_length=MAX_SKILLS)] = []
    highlights: Annotated[list[Highlight], Field(max_length=MAX_HIGHLIGHTS)] = []
    recommendation: bool
    work_period: WorkPeriod | None = None

    # Tracking
    source: ReviewSource = "direct"
    status: ReviewStatus = "pending"

    # Security
    honeypot: str | None = None
    client_timestamp: Annotated[int, Field(strict=True, ge=0)]


# =============================================================================
# Verification
# =============================================================================


class VerifyRequest(BaseModel):
    """Request body for POST /reviews/verify."""

    model_config = _CAMEL_CONFIG

    token: Annotated[str, StringConstraints(min_length=1, max_length=256)]
    email: EmailStr | None = None


class SubmissionAccepted(BaseModel):
    """Generic acknowledgment for a submission.

    Returned for accepted submissions and for silently rejected spam alike.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: Literal["pending_verification"] = "pending_verification"
    message: str = "Thank you! Please check your email to verify your testimonial."


class VerificationSucceeded(BaseModel):
    """Response for a successful verification."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    verified: bool = True
    review_id: str


# =============================================================================
# Admin
# =============================================================================


class AdminActionRequest(BaseModel):
    """Request body for POST /admin/reviews/actions."""

    model_config = _CAMEL_CONFIG

    action: AdminAction
    review_id: Annotated[str, StringConstraints(pattern=_REVIEW_ID_PATTERN)]
    notes: NotesText | None = None


class AdminActionLogEntry(BaseModel):
    """Immutable record of one administrative action.

    Attributes:
        id: Unique entry identifier.
        action: Action performed.
        review_id: Target review.
        performed_by: Admin subject from the JWT.
        performed_at: UTC timestamp.
        notes: Free-text notes supplied by the admin.
        source_address: Caller IP address.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    action: AdminAction
    review_id: str
    performed_by: str
    performed_at: datetime
    notes: str | None = None
    source_address: str


class TokenStatsResponse(BaseModel):
    """Token counts for the admin dashboard."""

    total: int
    active: int
    expired: int
    used: int
    exhausted: int


class CleanupResponse(BaseModel):
    """Result of an on-demand cleanup sweep."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    cleaned: int
    orphans_removed: int
    errors: int
