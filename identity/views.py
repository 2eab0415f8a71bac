import logging

from django.utils import timezone
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import (
    InvalidInputError,
    ResolutionRetryExhaustedError,
    StoreUnavailableError,
)
from .resolution import IdentityResolver
from .serializers import IdentifyRequestSerializer

logger = logging.getLogger(__name__)


def _first_error(errors):
    """Flatten DRF's error dict into one readable message."""
    if isinstance(errors, dict):
        for field, messages in errors.items():
            message = _first_error(messages)
            return message if field == "non_field_errors" else f"{field}: {message}"
    if isinstance(errors, list) and errors:
        return _first_error(errors[0])
    return str(errors)


class IdentifyAPIView(APIView):
    resolver_class = IdentityResolver

    def post(self, request):
        """
        Handles the /identify endpoint.
        Consolidates contact information based on email or phone number.
        """
        logger.info(f"Identify request received with data: {request.data}")

        serializer = IdentifyRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"error": _first_error(serializer.errors)},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            contact = self.resolver_class().resolve(
                email=serializer.validated_data.get("email"),
                phone=serializer.validated_data.get("phoneNumber"),
            )
        except InvalidInputError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        except (ResolutionRetryExhaustedError, StoreUnavailableError) as e:
            logger.warning(f"Identify request could not be served: {e}")
            return Response(
                {"error": "The contact store is temporarily unavailable."},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        except Exception as e:
            # Log the full exception traceback for detailed debugging
            logger.error(
                f"An unexpected error occurred in /identify: {e}", exc_info=True
            )
            return Response(
                {"error": "An internal server error occurred."},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(contact.to_dict(), status=status.HTTP_200_OK)

    def get(self, request):
        return Response(
            {
                "message": "Use POST method with JSON body containing email and/or phoneNumber",
                "example": {"email": "customer@example.com", "phoneNumber": 1234567890},
            },
            status=status.HTTP_200_OK,
        )


class HealthCheckView(APIView):
    def get(self, request):
        return Response(
            {"status": "healthy", "timestamp": timezone.now().isoformat()},
            status=status.HTTP_200_OK,
        )
