import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from commission.services.errors import (
    CommissionNotFoundError,
    CommissionRuleError,
    CommissionUnavailableError,
    RuleValidationError,
)

logger = logging.getLogger(__name__)


def commission_exception_handler(exc, context):
    """DRF exception handler that maps commission engine errors to HTTP responses."""

    if isinstance(exc, RuleValidationError):
        return Response(
            {"detail": "Invalid commission rule.", "errors": exc.errors},
            status=status.HTTP_400_BAD_REQUEST,
        )
    if isinstance(exc, CommissionNotFoundError):
        return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, CommissionRuleError):
        return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, CommissionUnavailableError):
        logger.error("commission storage unavailable: %s", exc, exc_info=exc.__cause__ or exc)
        return Response(
            {"detail": "Commission service temporarily unavailable."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(exc, DjangoValidationError):
        return Response({"detail": exc.messages}, status=status.HTTP_400_BAD_REQUEST)
    return exception_handler(exc, context)
