from types import MappingProxyType
from typing import Any, Callable, Optional

import structlog

_DEFAULT_EXTRACTORS: dict[str, Callable[[Any], dict[str, Any]]] = {}


def _register_default_extractor(
    context_key: str, extractor_function: Callable[[Any], dict[str, Any]]
):
    _DEFAULT_EXTRACTORS[context_key] = extractor_function


_register_default_extractor(
    "run",
    lambda run: {
        "run_id": getattr(run, "pk", None),
        "run_status": getattr(run, "status", None),
    },
)

# "item_task" chains to "run", so "run" must be registered first
_register_default_extractor(
    "item_task",
    lambda item_task: {
        **_DEFAULT_EXTRACTORS["run"](getattr(item_task, "run", None)),
        "item_task_id": getattr(item_task, "pk", None),
        "external_id": getattr(item_task, "external_id", None),
        "attempts": getattr(item_task, "attempts", None),
    },
)

_register_default_extractor(
    "cooldown",
    lambda event: {
        "cause": getattr(getattr(event, "cause", None), "value", None),
        "requested_seconds": getattr(event, "requested_seconds", None),
        "cooldown_until": getattr(event, "cooldown_until", None),
        "acquired": getattr(event, "acquired", None),
        "extended_seconds": getattr(event, "extended_seconds", None),
    },
)

_DEFAULT_EXTRACTORS = MappingProxyType(_DEFAULT_EXTRACTORS)


class StructuredLogger:
    """
    A structlog wrapper enforcing the project's structured logging conventions.

    Every log call needs a human readable message and a machine readable
    ``event_code``. Warnings and errors additionally need ``reason`` and
    ``reason_code``. Known objects passed as context are expanded into flat
    fields:

    - ``run`` -> ``run_id``, ``run_status``
    - ``item_task`` -> ``item_task_id``, ``external_id``, ``attempts`` and the
      ``run`` fields
    - ``cooldown`` -> the fields of a ``CooldownEvent``

    Explicit keyword values override extracted ones and ``None`` values are
    dropped.

    Usage::

        structured_logger = StructuredLogger.get_logger(__name__)
        structured_logger.info(
            "Run finished.", event_code="import_run_completed", run=run
        )
    """

    def __init__(self, logger, context: Optional[dict[str, Any]] = None):
        self._logger = logger
        self._context = context or {}
        self._extractors = dict(_DEFAULT_EXTRACTORS)

    @classmethod
    def get_logger(cls, name: str) -> "StructuredLogger":
        return cls(structlog.get_logger(f"structlog.{name}"))

    def log(
        self,
        level: str,
        message: str,
        *,
        event_code: str,
        reason: Optional[str] = None,
        reason_code: Optional[str] = None,
        **context: Any,
    ) -> None:
        """
        Emit a structured log. Use the level methods rather than calling this
        directly.

        Raises:
            ValueError: If required fields are missing for the given level.
        """
        if not message:
            raise ValueError("Log message is required.")
        if not event_code:
            raise ValueError("Structured logs must include an 'event_code' field.")
        if level in ("warning", "error") and (not reason or not reason_code):
            raise ValueError(
                "Warnings and errors must include both 'reason' and 'reason_code'."
            )

        context_data = {"event_code": event_code}
        if reason:
            context_data["reason"] = reason
        if reason_code:
            context_data["reason_code"] = reason_code

        bound_context = self._context

        for context_key, extractor_function in self._extractors.items():
            context_object = context.pop(context_key, bound_context.get(context_key))
            if context_object:
                for key, value in extractor_function(context_object).items():
                    if value is not None:
                        context_data.setdefault(key, value)

        for key, value in bound_context.items():
            if key not in self._extractors and key not in context and value is not None:
                context_data[key] = value

        for key, value in context.items():
            if value is not None:
                context_data[key] = value

        getattr(self._logger, level)(message, **context_data)

    def debug(self, message: str, *, event_code: str, **kwargs):
        self.log("debug", message, event_code=event_code, **kwargs)

    def info(self, message: str, *, event_code: str, **kwargs):
        self.log("info", message, event_code=event_code, **kwargs)

    def warning(
        self, message: str, *, event_code: str, reason: str, reason_code: str, **kwargs
    ):
        self.log(
            "warning",
            message,
            event_code=event_code,
            reason=reason,
            reason_code=reason_code,
            **kwargs,
        )

    def error(
        self, message: str, *, event_code: str, reason: str, reason_code: str, **kwargs
    ):
        self.log(
            "error",
            message,
            event_code=event_code,
            reason=reason,
            reason_code=reason_code,
            **kwargs,
        )

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """
        Return a new logger with additional context bound. Bound objects with
        registered extractors are expanded at log time.
        """
        new_context = self._context.copy()
        new_context.update(kwargs)
        return StructuredLogger(self._logger, context=new_context)
