"""Feature flag decorators for gating in-process code paths."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from flagengine.core.errors import FlagNotFoundError
from flagengine.core.feature_flags.models import EvaluationContext
from flagengine.core.feature_flags.service import FeatureFlagService, get_flag_service

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _extract_context(
    extractor: Optional[Callable[..., EvaluationContext]],
    args: Any,
    kwargs: Any,
) -> EvaluationContext:
    if extractor is None:
        return EvaluationContext()
    try:
        return extractor(*args, **kwargs)
    except Exception as e:
        logger.warning(f"Failed to extract flag context: {e}")
        return EvaluationContext()


def feature_flag(
    flag_key: str,
    default: bool = False,
    fallback: Optional[Callable[..., Any]] = None,
    context_extractor: Optional[Callable[..., EvaluationContext]] = None,
    service: Optional[FeatureFlagService] = None,
) -> Callable[[F], F]:
    """Decorator to gate function execution behind a boolean flag.

    Args:
        flag_key: Key of the feature flag
        default: Used when the flag is not registered
        fallback: Called instead when the flag is off
        context_extractor: Builds an EvaluationContext from the call args
        service: Flag service to consult (process-wide service by default)

    Example:
        @feature_flag("new_algorithm", fallback=old_algorithm)
        def new_algorithm(data):
            return process_v2(data)

        @feature_flag(
            "beta_feature",
            context_extractor=lambda req: EvaluationContext(subject_id=req.user_id),
        )
        def beta_endpoint(request):
            return beta_response(request)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            context = _extract_context(context_extractor, args, kwargs)
            flags = service if service is not None else get_flag_service()
            try:
                enabled = flags.evaluate_context(flag_key, context).value is True
            except FlagNotFoundError:
                enabled = default

            if enabled:
                return func(*args, **kwargs)
            if fallback:
                return fallback(*args, **kwargs)
            logger.debug(f"Feature flag '{flag_key}' is off, skipping {func.__name__}")
            return None

        return wrapper  # type: ignore

    return decorator


def feature_variant(
    flag_key: str,
    variants: Dict[str, Callable[..., Any]],
    default_variant: str = "control",
    context_extractor: Optional[Callable[..., EvaluationContext]] = None,
    service: Optional[FeatureFlagService] = None,
) -> Callable[[F], F]:
    """Decorator for A/B testing with multiple implementations.

    The implementation is chosen by the variant key the flag resolves to.
    Any other outcome (no variant, unknown flag, unmapped variant) runs
    ``default_variant``, or the decorated function if that is unmapped too.

    Example:
        @feature_variant(
            "checkout_flow",
            variants={
                "control": checkout_v1,
                "variant_a": checkout_v2,
            }
        )
        def checkout(cart):
            pass  # Implementation selected by decorator
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            context = _extract_context(context_extractor, args, kwargs)
            flags = service if service is not None else get_flag_service()
            try:
                variant_key = flags.evaluate_context(flag_key, context).variant_key
            except FlagNotFoundError:
                variant_key = None

            variant_name = variant_key if variant_key in variants else default_variant
            variant_func = variants.get(variant_name)
            if variant_func:
                logger.debug(f"A/B test '{flag_key}': using variant '{variant_name}'")
                return variant_func(*args, **kwargs)
            return func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator
