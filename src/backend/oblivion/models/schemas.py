"""
Domain models for the multi-provider fleet.

These Pydantic models define the structured data flowing through the
fleet → aggregator → consensus pipeline. Query results and providers are
frozen: once settled they are never mutated.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class AdapterKind(str, Enum):
    OPENAI_COMPATIBLE = "openai_compatible"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    COHERE = "cohere"
    OLLAMA = "ollama"
    CUSTOM = "custom"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    REMOVED = "removed"


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


class VoteCriteria(str, Enum):
    ACCURACY = "accuracy"
    SPEED = "speed"
    CREATIVITY = "creativity"


class Language(str, Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    NODE = "node"
    BASH = "bash"
    SHELL = "shell"
    PHP = "php"
    RUBY = "ruby"
    PERL = "perl"
    GO = "go"
    RUST = "rust"
    JAVA = "java"
    C = "c"
    CPP = "cpp"
    POWERSHELL = "powershell"


# ──────────────────────────────────────────────
# Providers and sessions
# ──────────────────────────────────────────────

class Provider(BaseModel):
    """A catalog entry. Defined at startup, never mutated."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    provider_id: str = Field(..., description="Registry key, e.g. 'openai'")
    display_name: str
    capability_tags: FrozenSet[str] = Field(default_factory=frozenset)
    kind: AdapterKind = AdapterKind.OPENAI_COMPATIBLE
    base_url: Optional[str] = None
    requires_key: bool = True
    models: Tuple[str, ...] = Field(default=(), description="Suggested model names")
    model_capabilities: Tuple[Tuple[str, FrozenSet[str]], ...] = Field(
        default=(), description="(model-name prefix, tags) pairs; longest prefix wins"
    )


class SessionInfo(BaseModel):
    """Serializable view of a ProviderSession."""
    model_config = ConfigDict(protected_namespaces=())

    session_id: str
    provider_id: str
    model_name: str
    capability_tags: List[str] = Field(default_factory=list)
    last_response_time_ms: int = 0
    status: SessionStatus = SessionStatus.ACTIVE


class ConversationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


class QueryOptions(BaseModel):
    """Per-call knobs forwarded to every provider adapter."""
    system_prompt: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, gt=0)
    timeout_seconds: Optional[float] = Field(
        None, ge=0.0, description="Per-session timeout; 0 disables, None uses the configured default"
    )
    context: Optional[str] = Field(None, description="Free-form tag, e.g. 'code_generation'")


# ──────────────────────────────────────────────
# Query results
# ──────────────────────────────────────────────

class Success(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    text: str
    latency_ms: int = 0


class Failure(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    reason: FailureReason
    message: str = ""
    status_code: Optional[int] = None


QueryOutcome = Annotated[Union[Success, Failure], Field(discriminator="status")]


class QueryResult(BaseModel):
    """One session's settled answer to one broadcast."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    session_id: str
    provider_id: str
    model_name: str
    outcome: QueryOutcome

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def text(self) -> Optional[str]:
        return self.outcome.text if isinstance(self.outcome, Success) else None

    @property
    def latency_ms(self) -> int:
        return self.outcome.latency_ms if isinstance(self.outcome, Success) else 0

    @property
    def label(self) -> str:
        return f"{self.provider_id}/{self.model_name}"


class ConsensusReport(BaseModel):
    """Derived from one broadcast's results; recomputed on every call."""
    prompt: str
    results: List[QueryResult] = Field(default_factory=list)
    agreement_score: float = Field(..., ge=0.0, le=1.0)
    synthesized_answer: str = ""
    dissenting: List[QueryResult] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    synthesized_by: Optional[str] = Field(
        None, description="'provider/model' when an LLM wrote the answer, None for the heuristic"
    )


class AskResult(BaseModel):
    """Raw results are always present, even when consensus could not be computed."""
    prompt: str
    results: List[QueryResult] = Field(default_factory=list)
    consensus: Optional[ConsensusReport] = None
    consensus_error: Optional[str] = None


class VoteEntry(BaseModel):
    result: QueryResult
    score: float = Field(..., ge=0.0, le=1.0)


class VoteResult(BaseModel):
    criteria: VoteCriteria
    winner: VoteEntry
    ranking: List[VoteEntry] = Field(default_factory=list)


class CodeGenerationResult(BaseModel):
    language: str
    best: VoteEntry
    all_results: List[QueryResult] = Field(default_factory=list)
    consensus: Optional[ConsensusReport] = None


# ──────────────────────────────────────────────
# Credentials
# ──────────────────────────────────────────────

class EncryptedBlob(BaseModel):
    """AES-GCM envelope for one provider's API key. All byte fields are base64."""
    provider_id: str
    ciphertext: str
    salt: str
    iv: str
    kdf_iterations: int
    created_at: datetime = Field(default_factory=_utcnow)


# ──────────────────────────────────────────────
# Prompts
# ──────────────────────────────────────────────

class PromptRecord(BaseModel):
    """A named, reusable system prompt."""
    prompt_id: str
    name: str
    prompt: str
    category: str = "custom"
    is_system: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    last_used: Optional[datetime] = None
    use_count: int = 0


class PromptTemplate(BaseModel):
    template_id: str
    name: str
    template: str
    variables: List[str] = Field(default_factory=list)


class FilledTemplate(BaseModel):
    name: str
    prompt: str
    category: str = "generated"
    # Variables the template declares but the caller did not supply
    missing: List[str] = Field(default_factory=list)


class PromptStats(BaseModel):
    total: int
    categories: List[str]
    most_used: List[PromptRecord]
    recently_used: List[PromptRecord]


# ──────────────────────────────────────────────
# Ollama model management
# ──────────────────────────────────────────────

class OllamaModel(BaseModel):
    """One model installed on the Ollama server (an /api/tags entry)."""
    name: str
    size: int = 0
    digest: str = ""
    modified_at: Optional[str] = None
    family: Optional[str] = None
    parameter_size: Optional[str] = None
    quantization_level: Optional[str] = None


class OllamaStatus(BaseModel):
    connected: bool
    host: str
    version: Optional[str] = None
    installed_models: int = 0
    error: Optional[str] = None


class PullProgress(BaseModel):
    status: str
    completed: int = 0
    total: int = 0

    @property
    def percent(self) -> int:
        return round(self.completed * 100 / self.total) if self.total else 0


# ──────────────────────────────────────────────
# Execution
# ──────────────────────────────────────────────

class ExecutionRequest(BaseModel):
    command: str = Field(..., min_length=1)
    language: Language = Language.BASH


class ExecutionResult(BaseModel):
    command: str
    language: Language
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0


class CommandHistoryEntry(BaseModel):
    command: str
    language: Language
    exit_code: int
    timestamp: datetime = Field(default_factory=_utcnow)


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class AddSessionRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    provider_id: str
    model_name: str = Field(..., min_length=1)
    api_key: Optional[str] = Field(None, description="Plaintext key, used in memory only")
    passphrase: Optional[str] = Field(
        None, description="Unlocks the stored credential for this provider on every call"
    )


class BroadcastRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    options: QueryOptions = Field(default_factory=QueryOptions)
    broadcast_id: Optional[str] = Field(None, description="Client-chosen id usable for cancellation")


class AskRequest(BroadcastRequest):
    synthesize: bool = Field(False, description="Let the configured synthesizer rewrite the answer")


class VoteRequest(BroadcastRequest):
    criteria: VoteCriteria = VoteCriteria.ACCURACY


class CodeGenerationRequest(BaseModel):
    description: str = Field(..., min_length=3)
    language: str = "python"


class SaveCredentialRequest(BaseModel):
    provider_id: str
    secret: str = Field(..., min_length=1)
    passphrase: str = Field(..., min_length=1)


class VerifyCredentialRequest(BaseModel):
    passphrase: str


class CredentialSummary(BaseModel):
    provider_id: str
    kdf_iterations: int
    created_at: datetime


class SavePromptRequest(BaseModel):
    prompt_id: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_.-]+$")
    name: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    category: str = "custom"
    is_system: bool = True


class FillTemplateRequest(BaseModel):
    variables: Dict[str, str] = Field(default_factory=dict)
    save_as: Optional[str] = Field(
        None, pattern=r"^[A-Za-z0-9_.-]+$", description="Also store the filled prompt under this id"
    )


class CompletePromptRequest(BaseModel):
    message: str = Field(..., min_length=1)
    include_disclaimer: bool = False


class PullModelRequest(BaseModel):
    name: str = Field(..., min_length=1)
