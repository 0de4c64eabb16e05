"""OAuth client settings for the Google Classroom link."""

from dataclasses import dataclass, field

from .exchange import GOOGLE_TOKEN_ENDPOINT
from .request import GOOGLE_AUTHORIZATION_ENDPOINT

# Read-only Classroom access: course list, the student's coursework and submissions
CLASSROOM_SCOPES = (
    "https://www.googleapis.com/auth/classroom.courses.readonly",
    "https://www.googleapis.com/auth/classroom.coursework.me.readonly",
    "https://www.googleapis.com/auth/classroom.student-submissions.me.readonly",
)

# Path appended to a reversed client ID to form an installed-app redirect URI
REDIRECT_PATH = "/oauthredirect"


def redirect_uri_from_reversed_client_id(reversed_client_id: str) -> str:
    """Build the custom-scheme redirect URI Google issues for iOS/Android clients.

    ``com.googleusercontent.apps.123-abc`` → ``com.googleusercontent.apps.123-abc:/oauthredirect``
    """
    return f"{reversed_client_id}:{REDIRECT_PATH}"


@dataclass
class OAuthSettings:
    """Provider-facing client configuration."""

    client_id: str = ""
    redirect_uri: str = ""
    scopes: list[str] = field(default_factory=lambda: list(CLASSROOM_SCOPES))
    authorization_endpoint: str = GOOGLE_AUTHORIZATION_ENDPOINT
    token_endpoint: str = GOOGLE_TOKEN_ENDPOINT
    client_secret: str | None = None
    extra_authorization_params: dict[str, str] = field(default_factory=dict)
