"""Credential validation - read-only identity check before an integration is persisted.

validate_credentials() never raises: every failure becomes valid=False with
a human-readable error the setup UI can show verbatim.
"""

from collections.abc import Mapping
from typing import Any

from botlink.observability.logging import get_logger
from botlink.observability.redaction import safe_log_context

from .http import ProviderResponseError, TransportError
from .models import CredentialValidation, InvalidCredentialsError, Provider
from .registry import get_provider

logger = get_logger(__name__)


def validate_credentials(
    provider: Provider | str, credentials: Mapping[str, Any]
) -> CredentialValidation:
    """Check that credentials authorize the provider account.

    Args:
        provider: Provider tag.
        credentials: Raw credentials bag. NEVER logged.

    Returns:
        CredentialValidation with identity on success, error on failure.
    """
    try:
        impl = get_provider(provider)
    except ValueError:
        return CredentialValidation(valid=False, error=f"Unsupported provider: {provider}")

    try:
        result = impl.fetch_identity(credentials)
    except InvalidCredentialsError as e:
        error = str(e)
    except ProviderResponseError as e:
        error = impl.describe_error(e)
    except TransportError as e:
        error = f"Could not reach {impl.provider.value}: {e}"
    else:
        logger.info(
            "credentials validated",
            extra={"extra_fields": safe_log_context(provider=impl.provider.value)},
        )
        return result

    logger.info(
        "credentials rejected",
        extra={"extra_fields": safe_log_context(provider=impl.provider.value, error=error)},
    )
    return CredentialValidation(valid=False, error=error)
