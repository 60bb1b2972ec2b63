"""Pydantic models shared by the inspector, discovery engine and browser driver."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, model_validator

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def step_placeholders(steps: List[str]) -> Set[str]:
    names: Set[str] = set()
    for step in steps:
        names.update(PLACEHOLDER_PATTERN.findall(step))
    return names


# ---------------------------------------------------------------------------
# Authentication analysis
# ---------------------------------------------------------------------------


class MfaInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    required: bool = Field(description="Whether a second factor is being asked for.")
    description: Optional[str] = Field(
        default=None, description="What the second factor looks like (code, push, passkey...)."
    )


class AuthAnalysis(BaseModel):
    """Advisory read of the current page's authentication state.

    Only ``requires_auth`` drives control flow; everything else is a hint.
    """

    model_config = ConfigDict(populate_by_name=True)

    requires_auth: bool = Field(
        alias="requiresAuth",
        description="True when the user must sign in before using the site.",
    )
    login_button: Optional[str] = Field(
        default=None,
        alias="loginButton",
        description="Natural-language instruction for the control that starts sign-in.",
    )
    can_autofill: Optional[bool] = Field(
        default=None,
        alias="canAutofill",
        description="True when a plain username/password form is visible.",
    )
    recommended_strategy: Optional[Literal["autofill", "manual", "passwordless", "unknown"]] = Field(
        default=None, alias="recommendedStrategy"
    )
    steps: Optional[List[str]] = Field(default=None, description="Suggested sign-in steps.")
    blockers: Optional[List[str]] = Field(
        default=None, description="Captchas, SSO walls or anything else blocking automation."
    )
    mfa: Optional[MfaInfo] = None
    summary: Optional[str] = Field(default=None, description="One or two sentence summary.")


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"

    __str__ = __repr__


# ---------------------------------------------------------------------------
# Discovered actions
# ---------------------------------------------------------------------------


class ActionParameter(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: StrictStr
    type: Literal["string", "number", "boolean"]
    description: StrictStr
    required: Optional[StrictBool] = None


class DiscoveredAction(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: StrictStr
    description: StrictStr
    steps: List[StrictStr]
    parameters: Optional[List[ActionParameter]] = None
    extraction_schema: Optional[Dict[StrictStr, StrictStr]] = Field(default=None, alias="extractionSchema")

    @model_validator(mode="after")
    def _placeholders_are_declared(self) -> "DiscoveredAction":
        declared = {param.name for param in self.parameters or []}
        undeclared = sorted(step_placeholders(self.steps) - declared)
        if undeclared:
            raise ValueError(
                f"action '{self.name}' uses undeclared step placeholders: {', '.join(undeclared)}"
            )
        return self

    def parameter(self, name: str) -> Optional[ActionParameter]:
        for param in self.parameters or []:
            if param.name == name:
                return param
        return None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class DiscoveredActionsResponse(BaseModel):
    actions: List[DiscoveredAction]


# ---------------------------------------------------------------------------
# Browser driver planning
# ---------------------------------------------------------------------------


class ObservedAction(BaseModel):
    """One executable candidate for a natural-language instruction."""

    action: Literal["click", "type", "press", "navigate", "scroll"] = "click"
    description: str = ""
    label_variants: List[str] = Field(default_factory=list)
    locator_hints: List[str] = Field(default_factory=list)
    text: Optional[str] = None
    press_enter: bool = False
    clear_first: bool = True
    key: Optional[str] = None
    url: Optional[str] = None


class AgentStep(BaseModel):
    done: bool = False
    reason: str = ""
    notes: Optional[str] = None
    targets: List[ObservedAction] = Field(default_factory=list)
