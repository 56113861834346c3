"""
User domain models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from synapse.core.constants import ADMIN_PRINCIPAL_TYPES
from synapse.core.exceptions import AuthenticationError, InvalidRequestError


class UserPreferences(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    default_meeting_type: str = Field(default="general", alias="defaultMeetingType")
    default_issue_type: str = Field(default="task", alias="defaultIssueType")
    auto_create_jira_issues: bool = Field(default=True, alias="autoCreateJiraIssues")
    assign_to_self: bool = Field(default=False, alias="assignToSelf")


class UserSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notifications: bool = True
    email_updates: bool = Field(default=False, alias="emailUpdates")
    theme: str = "light"


def _merge_section(section: BaseModel, changes: Any, field: str) -> Any:
    if changes is None:
        return section
    if not isinstance(changes, dict):
        raise InvalidRequestError(f"{field} must be an object", field=field)

    fields = type(section).model_fields
    by_alias = {info.alias: name for name, info in fields.items() if info.alias}
    values = section.model_dump()
    for key, value in changes.items():
        name = by_alias.get(key, key)
        if name in fields:
            values[name] = value
    try:
        return type(section).model_validate(values)
    except PydanticValidationError as e:
        bad = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidRequestError(f"Invalid {field} values: {bad}", field=field) from e


class UserConfig(BaseModel):
    """Per-user preferences stored under user:<id>:config."""

    model_config = ConfigDict(populate_by_name=True)

    preferences: UserPreferences = Field(default_factory=UserPreferences)
    settings: UserSettings = Field(default_factory=UserSettings)
    version: str = "2.0.0"
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    def merged(self, changes: dict[str, Any]) -> "UserConfig":
        """
        Return a copy with the given camelCase or snake_case changes applied.

        Unknown keys are ignored.

        Raises:
            InvalidRequestError: If a section is not an object or a value has the wrong type
        """
        return UserConfig(
            preferences=_merge_section(self.preferences, changes.get("preferences"), "preferences"),
            settings=_merge_section(self.settings, changes.get("settings"), "settings"),
            version=self.version,
            updated_at=datetime.now(timezone.utc),
        )

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class CallerContext(BaseModel):
    """Identity of the caller, built from gateway headers."""

    account_id: Optional[str] = None
    cloud_id: Optional[str] = None
    principal_type: Optional[str] = None
    timezone: Optional[str] = None
    locale: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.account_id)

    def require_account_id(self) -> str:
        """
        Account id of an authenticated caller.

        Raises:
            AuthenticationError: If the request carried no account id
        """
        if not self.account_id:
            raise AuthenticationError("User authentication required")
        return self.account_id

    @property
    def is_admin_principal(self) -> bool:
        return (self.principal_type or "").lower() in ADMIN_PRINCIPAL_TYPES

    def to_response(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "cloudId": self.cloud_id,
            "principalType": self.principal_type,
            "timezone": self.timezone,
            "locale": self.locale,
        }
