"""
Remote procedure routing.
Maps method names to service handlers through an explicit table.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from synapse.api.deps import ServiceContainer
from synapse.core.exceptions import InvalidRequestError, MethodNotFoundError
from synapse.core.logging import get_logger
from synapse.domain.analysis import AnalysisOptions
from synapse.domain.user import CallerContext

logger = get_logger(__name__)

Payload = dict[str, Any]
Handler = Callable[[ServiceContainer, Payload, CallerContext], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class Route:
    """A routing table entry."""

    handler: Handler
    admin_only: bool = False


def _int(payload: Payload, key: str, default: Optional[int]) -> Optional[int]:
    value = payload.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRequestError(f"{key} must be an integer", field=key)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"{key} must be an integer", field=key) from e


def _str(payload: Payload, key: str, default: Optional[str] = None) -> Optional[str]:
    value = payload.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise InvalidRequestError(f"{key} must be a string", field=key)
    return value


def _options(payload: Payload) -> AnalysisOptions:
    raw = payload.get("options") or {}
    if not isinstance(raw, dict):
        raise InvalidRequestError("options must be an object", field="options")
    return AnalysisOptions(
        create_jira_issues=raw.get("createJiraIssues", True) is not False,
        assign_to_current_user=bool(raw.get("assignToCurrentUser", False)),
        project_key=_str(raw, "projectKey"),
    )


# =============================================================================
# Handlers
# =============================================================================


async def _validate_content(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.analysis_service.validate_content(payload.get("content"), caller)


async def _start_analysis(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.analysis_service.start_analysis(
        payload.get("notes"),
        caller,
        meeting_type=_str(payload, "meetingType", "general"),
        issue_type=_str(payload, "issueType", "task"),
        options=_options(payload),
    )


async def _process_direct_text(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.analysis_service.process_direct_text(
        payload.get("textContent"),
        caller,
        meeting_type=_str(payload, "meetingType", "general"),
        issue_type=_str(payload, "issueType", "task"),
        options=_options(payload),
    )


async def _get_analysis_status(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.analysis_service.get_analysis_status(payload.get("analysisId"), caller)


async def _get_analysis_results(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.analysis_service.get_analysis_results(payload.get("analysisId"), caller)


async def _upload_file(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.analysis_service.handle_file_upload(
        payload.get("fileContent"),
        caller,
        file_name=_str(payload, "fileName"),
        file_type=_str(payload, "fileType"),
        meeting_type=_str(payload, "meetingType", "general"),
        issue_type=_str(payload, "issueType", "task"),
        options=_options(payload),
    )


async def _get_history(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.analysis_service.get_history(
        caller,
        page=_int(payload, "page", 1) or 1,
        page_size=_int(payload, "pageSize", None),
    )


async def _create_jira_issues(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.analysis_service.create_jira_issues(
        payload.get("issues"),
        caller,
        project_key=_str(payload, "projectKey"),
        assignee=_str(payload, "assignee"),
    )


async def _get_user_context(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.user_service.get_user_context(caller)


async def _get_user_config(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.user_service.get_user_config(caller)


async def _save_user_config(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.user_service.save_user_config(payload.get("config"), caller)


async def _check_admin_permissions(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.admin_service.check_admin_permissions(caller)


async def _manage_api_keys(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.admin_service.manage_api_keys(
        caller,
        action=_str(payload, "action", "list"),
        key_id=_str(payload, "keyId"),
        name=_str(payload, "name"),
        secret=_str(payload, "secret"),
        rate_limit=_int(payload, "rateLimit", None),
    )


async def _get_audit_log(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.admin_service.get_audit_log(
        caller,
        date=_str(payload, "date"),
        days=_int(payload, "days", None),
        severity=_str(payload, "severity"),
        event_type=_str(payload, "type"),
        limit=_int(payload, "limit", 100) or 100,
    )


async def _get_system_status(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.admin_service.get_system_status(caller)


async def _get_usage_metrics(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.admin_service.get_usage_metrics(caller, days=_int(payload, "days", 7) or 7)


async def _get_admin_settings(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.admin_service.get_admin_settings(caller)


async def _save_admin_settings(services: ServiceContainer, payload: Payload, caller: CallerContext) -> dict[str, Any]:
    return await services.admin_service.save_admin_settings(caller, payload.get("config"))


ROUTES: dict[str, Route] = {
    "validateContent": Route(_validate_content),
    "startAnalysis": Route(_start_analysis),
    "analyze": Route(_start_analysis),
    "processDirectText": Route(_process_direct_text),
    "getAnalysisStatus": Route(_get_analysis_status),
    "status": Route(_get_analysis_status),
    "getAnalysisResults": Route(_get_analysis_results),
    "uploadFile": Route(_upload_file),
    "handleFileUpload": Route(_upload_file),
    "upload": Route(_upload_file),
    "getHistory": Route(_get_history),
    "history": Route(_get_history),
    "createJiraIssues": Route(_create_jira_issues),
    "getUserContext": Route(_get_user_context),
    "getUserConfig": Route(_get_user_config),
    "saveUserConfig": Route(_save_user_config),
    "checkAdminPermissions": Route(_check_admin_permissions),
    "manageAPIKeys": Route(_manage_api_keys, admin_only=True),
    "getAuditLog": Route(_get_audit_log, admin_only=True),
    "getSystemStatus": Route(_get_system_status, admin_only=True),
    "getUsageMetrics": Route(_get_usage_metrics, admin_only=True),
    "getAdminSettings": Route(_get_admin_settings, admin_only=True),
    "saveAdminSettings": Route(_save_admin_settings, admin_only=True),
}


def supported_methods() -> list[str]:
    return list(ROUTES)


async def dispatch(
    services: ServiceContainer,
    method: str,
    payload: Optional[Payload],
    caller: CallerContext,
) -> dict[str, Any]:
    """
    Invoke the handler registered for a method.

    Raises:
        MethodNotFoundError: If the method is not in the routing table
        AuthorizationError: If an admin-only method is called by a non-admin
    """
    route = ROUTES.get(method)
    if route is None:
        logger.warning("Unknown method", method=method)
        raise MethodNotFoundError(method, supported_methods())

    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidRequestError("Payload must be a JSON object", field="payload")

    if route.admin_only:
        await services.admin_service.require_admin(caller, method)

    return await route.handler(services, payload, caller)
