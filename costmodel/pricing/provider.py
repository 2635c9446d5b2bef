#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Pricing provider interface and the custom-pricing provider."""
from abc import ABC
from abc import abstractmethod

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from costmodel.config import Config
from costmodel.util.common import parse_percent_string


class CustomPricing(BaseModel):
    """Configured unit prices, all carried as strings."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str = ""
    description: str = ""
    cpu: str = Field(default=Config.CUSTOM_PRICING_CPU, alias="CPU")
    spot_cpu: str = Field(default=Config.CUSTOM_PRICING_SPOT_CPU, alias="spotCPU")
    ram: str = Field(default=Config.CUSTOM_PRICING_RAM, alias="RAM")
    spot_ram: str = Field(default=Config.CUSTOM_PRICING_SPOT_RAM, alias="spotRAM")
    gpu: str = Field(default=Config.CUSTOM_PRICING_GPU, alias="GPU")
    spot_gpu: str = Field(default=Config.CUSTOM_PRICING_SPOT_GPU, alias="spotGPU")
    storage: str = Field(default=Config.CUSTOM_PRICING_STORAGE, alias="storage")
    zone_network_egress: str = Field(default=Config.CUSTOM_PRICING_ZONE_NETWORK_EGRESS, alias="zoneNetworkEgress")
    region_network_egress: str = Field(
        default=Config.CUSTOM_PRICING_REGION_NETWORK_EGRESS, alias="regionNetworkEgress"
    )
    internet_network_egress: str = Field(
        default=Config.CUSTOM_PRICING_INTERNET_NETWORK_EGRESS, alias="internetNetworkEgress"
    )
    discount: str = Field(default=Config.CUSTOM_PRICING_DISCOUNT, alias="discount")
    negotiated_discount: str = Field(default=Config.CUSTOM_PRICING_NEGOTIATED_DISCOUNT, alias="negotiatedDiscount")
    custom_prices_enabled: str = Field(
        default="true" if Config.CUSTOM_PRICING_ENABLED else "false", alias="customPricesEnabled"
    )
    cluster_name: str = Field(default="", alias="clusterName")
    cluster_account_id: str = Field(default="", alias="clusterAccountID")
    project_id: str = Field(default="", alias="projectID")

    def is_custom_prices_enabled(self):
        return self.custom_prices_enabled.strip().lower() == "true"


class PricingProvider(ABC):
    """Source of pricing configuration for a cluster."""

    @abstractmethod
    def get_config(self):
        """Return the CustomPricing in effect."""

    @abstractmethod
    def combined_discount_for_node(self, node_type, is_spot, flat_discount, negotiated_discount):
        """Return the fractional discount applying to a node."""


class CustomProvider(PricingProvider):
    """Prices every node from configuration."""

    def __init__(self, pricing=None):
        self.pricing = pricing or CustomPricing()

    def get_config(self):
        return self.pricing

    def combined_discount_for_node(self, node_type, is_spot, flat_discount, negotiated_discount):
        if is_spot:
            return 0.0
        return 1.0 - (1.0 - flat_discount) * (1.0 - negotiated_discount)


def node_discount(provider, node_type, is_spot):
    """Return the discount for a node from the provider's configured percentages.

    Raises ValueError when a configured percentage cannot be parsed.
    """
    pricing = provider.get_config()
    flat = parse_percent_string(pricing.discount)
    negotiated = parse_percent_string(pricing.negotiated_discount)
    return provider.combined_discount_for_node(node_type, is_spot, flat, negotiated)
