"""
Data model shared by the provisioning components.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InputValidationError

SUBDOMAIN_PATTERN = r"^[a-zA-Z0-9-]+$"
MIN_TOKEN_LENGTH = 10


def join_domain(subdomain: str, base_domain: str) -> str:
    return f"{subdomain}.{base_domain}"


class ProvisionRequest(BaseModel):
    """Immutable input of one provisioning run."""

    model_config = ConfigDict(frozen=True)

    subdomain: str = Field(pattern=SUBDOMAIN_PATTERN)
    api_token: str = Field(min_length=MIN_TOKEN_LENGTH, repr=False)
    base_domain: str = Field(min_length=1)
    full_domain: str = ""

    @model_validator(mode="before")
    @classmethod
    def _derive_full_domain(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["full_domain"] = join_domain(data.get("subdomain"), data.get("base_domain"))
        return data

    @classmethod
    def create(
        cls, subdomain: str, api_token: str, base_domain: str
    ) -> "ProvisionRequest":
        """
        Build a validated request.

        Raises:
            InputValidationError: if the subdomain or token is malformed
        """
        try:
            return cls(subdomain=subdomain, api_token=api_token, base_domain=base_domain)
        except ValidationError as e:
            problems = []
            for error in e.errors():
                field_name = error["loc"][0] if error["loc"] else "request"
                if field_name == "subdomain":
                    problems.append(
                        f"Invalid subdomain format '{subdomain}' (allowed: letters, digits, '-')"
                    )
                elif field_name == "api_token":
                    problems.append(
                        f"Invalid Cloudflare API token (at least {MIN_TOKEN_LENGTH} characters required)"
                    )
                else:
                    problems.append(f"{field_name}: {error['msg']}")
            raise InputValidationError("Invalid provisioning request", "; ".join(problems))


class RecordStatus(enum.Enum):
    ABSENT = "absent"
    EXISTS_CORRECT = "exists_correct"
    EXISTS_INCORRECT = "exists_incorrect"


class RecordAction(enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class DnsRecordState:
    """Provider-side state of the endpoint's A record."""

    exists: bool
    record_id: Optional[str] = None
    current_address: Optional[str] = None
    status: RecordStatus = RecordStatus.ABSENT
    action: Optional[RecordAction] = None


class CertificateState(enum.Enum):
    ABSENT = "absent"
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"


@dataclass(frozen=True)
class CertificateBundle:
    fullchain_path: str
    private_key_path: str
    not_after: datetime
