from fastapi import Header, Request

from advisor.api.container import ServiceContainer
from advisor.core.errors import ValidationError


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_user_id(x_user_id: str = Header(default="")) -> str:
    user_id = x_user_id.strip()
    if not user_id:
        raise ValidationError("X-User-Id header is required", details={"field": "X-User-Id"})
    return user_id
