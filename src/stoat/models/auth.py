from typing import Annotated

from pydantic import AfterValidator, BaseModel

from stoat.models.base import StoatModel
from stoat.validators import str_limit


class RegisterRequest(BaseModel):
    username: Annotated[str, AfterValidator(str_limit(min_attr="username_min", max_attr="username_max"))]
    password: Annotated[str, AfterValidator(str_limit(min_attr="password_min", max_attr="password_max"))]
    display_name: Annotated[str, AfterValidator(str_limit(max_attr="display_name_max"))] | None = None


class RegisterResponse(StoatModel):
    user_id: int
    token: str


class LoginRequest(BaseModel):
    username: Annotated[str, AfterValidator(str_limit(max_attr="username_max"))]
    password: Annotated[str, AfterValidator(str_limit(max_attr="password_max"))]


class LoginResponse(StoatModel):
    token: str
    user_id: int
    display_name: str | None
