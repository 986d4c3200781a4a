"""Providers module - clients for the number and payment providers."""

from smsgate.providers.dispatcher import (
    DispatchRequest,
    InvalidTransitionError,
    RateLimitedDispatcher,
    RequestKind,
    RequestState,
)
from smsgate.providers.flutterwave import FlutterwaveClient, compute_signature, verify_signature
from smsgate.providers.gateway import (
    ActivationAction,
    ActivationStatus,
    LeasedNumber,
    PriceCache,
    ProviderGateway,
)
from smsgate.providers.sms_activate import ProviderErrorToken, ProviderReply, SmsActivateClient

__all__ = [
    "SmsActivateClient",
    "ProviderReply",
    "ProviderErrorToken",
    "RateLimitedDispatcher",
    "DispatchRequest",
    "RequestKind",
    "RequestState",
    "InvalidTransitionError",
    "ProviderGateway",
    "PriceCache",
    "ActivationAction",
    "ActivationStatus",
    "LeasedNumber",
    "FlutterwaveClient",
    "compute_signature",
    "verify_signature",
]
