"""
Submission API operations exposed as MCP tools.

Each operation knows three things about itself:
- validate():      the parameter contract, checked before any auth or network step
- build_request(): the downstream method, path, query and body
- parse():         how a 2xx body becomes the tool result

The ToolInvoker (invoker.py) runs the authentication pipeline around these;
server.py registers one MCP tool per entry in OPERATIONS.

Operations:
    get_submission       GET  submissions/{submission_id}
    create_submission    POST accounts/{account_id}/submissions
    list_submissions     GET  accounts/{account_id}/submissions?$top=&$filter=&$select=
    decline_submission   POST submissions/{submission_id}/declineSubmission
"""

import json
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote

from submissions_mcp.errors import ResponseParseError, ValidationError

# Status reason the Submission API uses for declined submissions.
DECLINED_STATUS_REASON_ID = 5
MAX_LIST_LIMIT = 1000


@dataclass(frozen=True)
class DownstreamRequest:
    method: str
    path: str
    json_body: Any = None
    content: str | None = None


# ---------------------------------------------------------------------------
# Parameter checks
# ---------------------------------------------------------------------------


def require_positive_int(parameters: Mapping[str, Any], name: str) -> int:
    value = parameters.get(name)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(name, "must be a positive integer")
    return value


def optional_str(parameters: Mapping[str, Any], name: str) -> str | None:
    value = parameters.get(name)
    if value is not None and not isinstance(value, str):
        raise ValidationError(name, "must be a string")
    return value


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class SubmissionOperation:
    """Base contract for one tool. Subclasses set `name` and `description`."""

    name: str
    description: str
    # Accepted JSON types for the parsed response body.
    result_types: tuple[type, ...] = (dict,)

    def validate(self, parameters: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def build_request(self, parameters: Mapping[str, Any]) -> DownstreamRequest:
        raise NotImplementedError

    def parse(self, body: str) -> Any:
        """
        Parse a 2xx response body.

        Raises:
            ResponseParseError: empty body, invalid JSON, or unexpected JSON type
        """
        try:
            result = json.loads(body)
        except json.JSONDecodeError as e:
            raise ResponseParseError(
                f"Submission API returned an unparseable response for {self.name}: {e.msg}"
            ) from e

        if not isinstance(result, self.result_types):
            expected = " or ".join("array" if t is list else "object" for t in self.result_types)
            raise ResponseParseError(
                f"Submission API returned {type(result).__name__} for {self.name}, expected {expected}"
            ) from TypeError(f"unexpected JSON type {type(result).__name__}")
        return result


class GetSubmission(SubmissionOperation):
    name = "get_submission"
    description = "Get submission details from the Submission API."

    def validate(self, parameters):
        require_positive_int(parameters, "submission_id")

    def build_request(self, parameters):
        return DownstreamRequest("GET", f"submissions/{parameters['submission_id']}")


class CreateSubmission(SubmissionOperation):
    name = "create_submission"
    description = "Create a new submission for an account via the Submission API."

    def validate(self, parameters):
        require_positive_int(parameters, "account_id")
        data = parameters.get("submission_data")
        if not isinstance(data, str) or not data.strip():
            raise ValidationError("submission_data", "is required")
        try:
            decoded = json.loads(data)
        except json.JSONDecodeError:
            raise ValidationError("submission_data", "must be valid JSON")
        if not isinstance(decoded, dict):
            raise ValidationError("submission_data", "must be a JSON object")

    def build_request(self, parameters):
        return DownstreamRequest(
            "POST",
            f"accounts/{parameters['account_id']}/submissions",
            content=parameters["submission_data"],
        )


class ListSubmissions(SubmissionOperation):
    name = "list_submissions"
    description = "List submissions for an account with optional OData filtering and projection."
    # OData endpoints answer with either a bare array or {"value": [...]}.
    result_types = (dict, list)

    def validate(self, parameters):
        require_positive_int(parameters, "account_id")
        limit = parameters.get("limit", 10)
        if isinstance(limit, bool) or not isinstance(limit, int) or not 0 < limit <= MAX_LIST_LIMIT:
            raise ValidationError("limit", f"must be between 1 and {MAX_LIST_LIMIT}")
        optional_str(parameters, "odata_filter")
        optional_str(parameters, "odata_select")

    def build_request(self, parameters):
        query = [f"$top={parameters.get('limit', 10)}"]
        if parameters.get("odata_filter"):
            query.append(f"$filter={quote(parameters['odata_filter'], safe='')}")
        if parameters.get("odata_select"):
            query.append(f"$select={quote(parameters['odata_select'], safe='')}")
        return DownstreamRequest(
            "GET",
            f"accounts/{parameters['account_id']}/submissions?{'&'.join(query)}",
        )


class DeclineSubmission(SubmissionOperation):
    name = "decline_submission"
    description = "Decline a submission via the Submission API, with optional notes."

    def validate(self, parameters):
        require_positive_int(parameters, "submission_id")
        optional_str(parameters, "notes")

    def build_request(self, parameters):
        return DownstreamRequest(
            "POST",
            f"submissions/{parameters['submission_id']}/declineSubmission",
            json_body={
                "StatusReasonId": DECLINED_STATUS_REASON_ID,
                "Notes": parameters.get("notes"),
            },
        )


OPERATIONS: dict[str, SubmissionOperation] = {
    op.name: op
    for op in (GetSubmission(), CreateSubmission(), ListSubmissions(), DeclineSubmission())
}
