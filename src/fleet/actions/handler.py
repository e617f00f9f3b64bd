"""Fleet action request parsing.

This module turns the raw body posted by the fleet board into a typed
ActionRequest, or a RequestValidationError carrying the exact message
the board displays.

Request Body Structure:
{
  "epicId": "fac-12",
  "epicTitle": "LensCycle: Contact lens tracker",
  "action": "send-for-development",
  "feedback": "Focus on the reminder flow",      (optional)
  "currentLabels": ["pipeline:research-complete"] (optional)
}
"""

import json
import logging
from typing import Any, List, Optional, Union

from src.fleet.actions.models import ActionId, ActionRequest
from src.fleet.actions.registry import ACTION_TABLE, UnknownActionError, parse_action_id

logger = logging.getLogger(__name__)


class RequestValidationError(Exception):
    """Raised when an action request is malformed.

    Attributes:
        message: Client-facing error message.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ActionRequestParser:
    """Parser for fleet action requests.

    Internal actions (invoked only by chain transitions) are rejected
    unless allow_internal is set.
    """

    def __init__(self, allow_internal: bool = False) -> None:
        self.allow_internal = allow_internal

    def parse_body(self, body: Union[bytes, str]) -> ActionRequest:
        """Parse a raw JSON request body.

        Raises:
            RequestValidationError: If the body is not a JSON object or a
                field is missing or invalid.
        """
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise RequestValidationError("Invalid JSON body") from None
        return self.parse(payload)

    def parse(self, payload: Any) -> ActionRequest:
        """Validate a decoded payload.

        Args:
            payload: The decoded JSON body.

        Returns:
            The validated ActionRequest, with legacy action names
            normalized.

        Raises:
            RequestValidationError: With "Missing epicId", "Missing
                epicTitle", "Invalid action: <value>" or "Invalid JSON body".
        """
        if not isinstance(payload, dict):
            raise RequestValidationError("Invalid JSON body")

        epic_id = payload.get("epicId")
        if not epic_id or not isinstance(epic_id, str):
            raise RequestValidationError("Missing epicId")

        epic_title = payload.get("epicTitle")
        if not epic_title or not isinstance(epic_title, str):
            raise RequestValidationError("Missing epicTitle")

        action = self._parse_action(payload.get("action"))

        return ActionRequest(
            epic_id=epic_id,
            epic_title=epic_title,
            action=action,
            feedback=self._extract_feedback(payload.get("feedback")),
            current_labels=self._extract_labels(payload.get("currentLabels")),
        )

    def _parse_action(self, raw_action: Any) -> ActionId:
        try:
            action = parse_action_id(raw_action)
        except UnknownActionError as exc:
            logger.warning("Rejected unknown action", extra={"action": str(raw_action)})
            raise RequestValidationError(str(exc)) from None

        if action.value != raw_action and not isinstance(raw_action, ActionId):
            logger.info(
                "Normalized legacy action name",
                extra={"alias": raw_action, "action": action.value},
            )

        if self._is_internal(action) and not self.allow_internal:
            logger.warning(
                "Rejected internal action from request",
                extra={"action": action.value},
            )
            raise RequestValidationError(f"Invalid action: {raw_action}")
        return action

    def _is_internal(self, action: ActionId) -> bool:
        return ACTION_TABLE[action].internal

    def _extract_feedback(self, feedback: Any) -> Optional[str]:
        return feedback if isinstance(feedback, str) else None

    def _extract_labels(self, labels: Any) -> Optional[List[str]]:
        """Keep string labels; anything but a list means "not provided"."""
        if not isinstance(labels, list):
            return None
        return [label for label in labels if isinstance(label, str)]

