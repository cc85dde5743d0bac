"""AWS provider implementation."""

from spotshell.providers.aws.client import AWSProviderClient
from spotshell.providers.aws.pricing import PricingCache

__all__ = ["AWSProviderClient", "PricingCache"]
