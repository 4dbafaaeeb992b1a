from pydantic import BaseModel, ConfigDict, Field


class Session(BaseModel):
    """Token pair issued to an authenticated user."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # access token lifetime in seconds
    # Display fields; contact values are the masked forms from the user row
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    mobile: str = ""


class LoginOption(BaseModel):
    """Per-call options for sign-in and login-code flows."""

    create_if_missing: bool = False
    client_ip: str = Field(default="", max_length=45)
    client_agent: str = Field(default="", max_length=512)
    # Used only when create_if_missing registers a new user
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
