"""
Action execution for sequence steps.

This module contains functionality for:
- The ActionExecutor interface the progression engine calls
- HTTP dispatch of step actions to the outreach delivery service
- A dry-run executor for deployments without a delivery service
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .exceptions import ActionExecutionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    success: bool
    provider_ref: Optional[str] = None
    error: Optional[str] = None


class ActionExecutor:
    """Performs one step action (call reminder, email, SMS, messaging send, task)."""

    def execute(self, lead_id: str, action_type: str, action_config: Dict[str, Any],
                idempotency_key: Optional[str] = None) -> ActionResult:
        raise NotImplementedError


class HttpActionDispatcher(ActionExecutor):
    """Posts step actions to the delivery service that owns the channels."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 30):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

        if not self.api_key:
            logger.warning("No action dispatch API key provided")

    def _make_request(self, method, endpoint, **kwargs):
        """Make a request to the delivery service."""
        url = f"{self.base_url}{endpoint}"
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['X-API-KEY'] = self.api_key
        if kwargs.get('headers'):
            headers.update(kwargs['headers'])
        kwargs['headers'] = headers
        kwargs.setdefault('timeout', self.timeout)

        try:
            response = requests.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json() if response.content else {}
        except requests.exceptions.Timeout as e:
            logger.error(f"Action dispatch timed out after {self.timeout}s: {str(e)}")
            raise ActionExecutionError(f"Action dispatch timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            logger.error(f"Action dispatch request failed: {str(e)}")
            if getattr(e, 'response', None) is not None:
                logger.error(f"Response status: {e.response.status_code}")
                logger.error(f"Response body: {e.response.text}")
                raise ActionExecutionError(
                    f"Action dispatch request failed: {str(e)}",
                    status_code=e.response.status_code,
                    response_data=e.response.text
                )
            raise ActionExecutionError(f"Action dispatch request failed: {str(e)}")
        except ValueError:
            raise ActionExecutionError("Action dispatch returned a non-JSON response")

    def execute(self, lead_id: str, action_type: str, action_config: Dict[str, Any],
                idempotency_key: Optional[str] = None) -> ActionResult:
        payload = {
            'lead_id': lead_id,
            'action_type': action_type,
            'action_config': action_config or {}
        }
        headers = {'Idempotency-Key': idempotency_key} if idempotency_key else None

        logger.info(f"Dispatching {action_type} action for lead {lead_id}")
        data = self._make_request('POST', '/actions', json=payload, headers=headers)

        if data.get('success', True) is False:
            error = data.get('error') or 'Delivery service rejected the action'
            logger.warning(f"{action_type} action for lead {lead_id} rejected: {error}")
            return ActionResult(success=False, error=error)

        provider_ref = data.get('provider_ref') or data.get('id')
        return ActionResult(success=True, provider_ref=str(provider_ref) if provider_ref else None)


class DryRunActionExecutor(ActionExecutor):
    """Logs actions without sending anything."""

    def execute(self, lead_id: str, action_type: str, action_config: Dict[str, Any],
                idempotency_key: Optional[str] = None) -> ActionResult:
        logger.info(f"[dry-run] {action_type} action for lead {lead_id}: {action_config}")
        return ActionResult(success=True, provider_ref=f"dry-run:{idempotency_key or lead_id}")


def build_action_executor(config) -> ActionExecutor:
    """Pick the executor for an app config mapping."""
    url = config.get('ACTION_DISPATCH_URL')
    if not url:
        logger.warning("ACTION_DISPATCH_URL not set - step actions will only be logged")
        return DryRunActionExecutor()

    return HttpActionDispatcher(
        base_url=url,
        api_key=config.get('ACTION_DISPATCH_API_KEY'),
        timeout=config.get('ACTION_TIMEOUT_SECONDS', 30)
    )
