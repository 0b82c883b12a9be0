from typing import Optional, List, Any, Union

from .errors import ValidationException, ValidationError, InvalidRequestException


class Validator:
    """입력 검증을 위한 유틸리티 클래스"""

    @staticmethod
    def validate_required(value: Any, field_name: str) -> Any:
        """필수 필드 검증"""
        if value is None or (isinstance(value, str) and value.strip() == ""):
            raise ValidationException(
                f"{field_name} is required",
                validation_errors=[
                    ValidationError(field=field_name, message="This field is required", value=value)
                ]
            )
        return value

    @staticmethod
    def validate_string_length(
        value: str,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None
    ) -> str:
        """문자열 길이 검증"""
        errors = []

        if min_length and len(value) < min_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be at least {min_length} characters long",
                    value=len(value)
                )
            )

        if max_length and len(value) > max_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be no more than {max_length} characters long",
                    value=len(value)
                )
            )

        if errors:
            raise ValidationException(
                f"{field_name} length validation failed",
                validation_errors=errors
            )

        return value

    @staticmethod
    def validate_positive_integer(value: Union[int, str], field_name: str) -> int:
        """양의 정수 검증"""
        try:
            int_value = int(value)
            if int_value <= 0:
                raise ValueError("Must be positive")
            return int_value
        except (ValueError, TypeError):
            raise ValidationException(
                f"{field_name} must be a positive integer",
                validation_errors=[
                    ValidationError(
                        field=field_name,
                        message="Must be a positive integer",
                        value=value
                    )
                ]
            )

    @staticmethod
    def validate_enum(value: str, allowed_values: List[str], field_name: str) -> str:
        """열거형 값 검증"""
        if value not in allowed_values:
            raise ValidationException(
                f"Invalid {field_name}",
                validation_errors=[
                    ValidationError(
                        field=field_name,
                        message=f"Must be one of: {', '.join(allowed_values)}",
                        value=value
                    )
                ]
            )
        return value

    @staticmethod
    def validate_room_id(room_id: Union[int, str], field_name: str = "room_id") -> int:
        """채팅방 ID 검증"""
        return Validator.validate_positive_integer(room_id, field_name)

    @staticmethod
    def validate_member_ids(member_ids: List[Union[int, str]], field_name: str = "member_ids") -> List[int]:
        """
        멤버 ID 목록 검증

        비어 있는 목록은 거부하고, 각 값은 양의 정수여야 합니다.
        중복 제거는 호출하는 프로토콜에서 처리합니다.
        """
        if not member_ids:
            raise InvalidRequestException(
                "Member IDs must be a non-empty array",
                details={"field": field_name}
            )
        return [Validator.validate_positive_integer(value, field_name) for value in member_ids]

    @staticmethod
    def validate_pagination(limit: int, skip: int) -> tuple[int, int]:
        """페이지네이션 파라미터 검증"""
        errors = []

        if limit <= 0:
            errors.append(
                ValidationError(
                    field="limit",
                    message="Limit must be greater than 0",
                    value=limit
                )
            )
        elif limit > 100:
            errors.append(
                ValidationError(
                    field="limit",
                    message="Limit must be no more than 100",
                    value=limit
                )
            )

        if skip < 0:
            errors.append(
                ValidationError(
                    field="skip",
                    message="Skip must be 0 or greater",
                    value=skip
                )
            )

        if errors:
            raise ValidationException(
                "Pagination validation failed",
                validation_errors=errors
            )

        return limit, skip
