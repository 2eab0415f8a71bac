from rest_framework import serializers

from .exceptions import InvalidInputError
from .models import Contact
from .resolution import normalize_phone


class PhoneNumberField(serializers.Field):
    """Accepts a JSON number or string and hands the resolver its string form."""

    max_length = Contact._meta.get_field("phone_number").max_length

    def to_internal_value(self, data):
        try:
            phone = normalize_phone(data)
        except InvalidInputError as exc:
            raise serializers.ValidationError(str(exc)) from exc
        if phone is not None and len(phone) > self.max_length:
            raise serializers.ValidationError(
                f"phoneNumber must be at most {self.max_length} characters."
            )
        return phone

    def to_representation(self, value):
        return value


class IdentifyRequestSerializer(serializers.Serializer):
    email = serializers.CharField(
        required=False, allow_null=True, allow_blank=True, trim_whitespace=False, max_length=255
    )
    phoneNumber = PhoneNumberField(required=False, allow_null=True)

    def validate(self, attrs):
        if not attrs.get("email") and attrs.get("phoneNumber") is None:
            raise serializers.ValidationError(str(InvalidInputError()))
        return attrs
