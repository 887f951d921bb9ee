"""Adapter for the two calling conventions of kubernetes client methods.

Generated client methods have been called both with required parameters as
keywords (``create_namespaced_job(namespace=ns, body=job)``) and positionally
(``create_namespaced_job(ns, job)``), and releases differ in which one they
accept. Every structured cluster call goes through :class:`CallConventionAdapter`,
which tries the preferred convention and switches to the other exactly once
when the failure is a missing-required-parameter error.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, TypeVar

from kubernetes.client.exceptions import ApiValueError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# "Missing the required parameter `namespace` when calling `list_namespaced_pod`"
# "list_namespaced_pod() missing 1 required positional argument: 'namespace'"
REQUIRED_PARAMETER_SIGNATURE = re.compile(
    r"missing (the|\d+) required (parameter|positional argument|keyword-only argument)"
    r"|required parameter",
    re.IGNORECASE,
)


class CallConvention(str, Enum):
    """How required parameters are passed to a client method."""

    KEYWORD = "keyword"
    POSITIONAL = "positional"

    @property
    def alternate(self) -> CallConvention:
        if self is CallConvention.KEYWORD:
            return CallConvention.POSITIONAL
        return CallConvention.KEYWORD


def is_signature_mismatch(exc: BaseException) -> bool:
    """Whether an error means the method was called with the wrong convention."""
    if not isinstance(exc, (TypeError, ApiValueError)):
        return False
    return bool(REQUIRED_PARAMETER_SIGNATURE.search(str(exc)))


class CallConventionAdapter:
    """Invokes client methods with a fallback to the alternate convention.

    Example:
        ```python
        adapter = CallConventionAdapter(CallConvention.KEYWORD)
        pods = adapter.call(
            core_api.list_namespaced_pod,
            {"namespace": "jobshot"},
            limit=1,
        )
        ```
    """

    def __init__(self, preferred: CallConvention = CallConvention.KEYWORD) -> None:
        self.preferred = preferred

    def _invoke(
        self,
        convention: CallConvention,
        method: Callable[..., T],
        required: Mapping[str, Any],
        options: Mapping[str, Any],
    ) -> T:
        if convention is CallConvention.KEYWORD:
            return method(**required, **options)
        return method(*required.values(), **options)

    def call(self, method: Callable[..., T], required: Mapping[str, Any], **options: Any) -> T:
        """Call ``method`` with ``required`` parameters and keyword ``options``.

        Args:
            method: Bound client method, e.g. ``BatchV1Api.create_namespaced_job``
            required: Required parameters in the method's positional order
            **options: Optional keyword parameters (``limit``, ``_request_timeout``...)

        Returns:
            Whatever the client method returns

        Raises:
            Any error from the second attempt, or any non-signature error from
            the first attempt.
        """
        try:
            return self._invoke(self.preferred, method, required, options)
        except (TypeError, ApiValueError) as e:
            if not is_signature_mismatch(e):
                raise
            fallback = self.preferred.alternate
            logger.info(
                "%s rejected %s convention (%s); retrying with %s convention",
                getattr(method, "__name__", "client call"),
                self.preferred.value,
                e,
                fallback.value,
            )
            return self._invoke(fallback, method, required, options)
