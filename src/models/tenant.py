"""Tenant-scoped agent configuration."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TenantConfig(BaseModel):
    """Per-tenant agent settings, stored at ``settings/agent``.

    Tenants themselves are provisioned out of band; a missing document means
    every field takes its default.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    # Branding
    company_name: str = "Imobiliária"
    agent_name: str = "Sofia"
    locale: Literal["pt-BR", "en"] = "pt-BR"
    currency: str = "BRL"

    # AI Settings
    system_prompt: str = ""
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)

    # Payments
    advance_payment_percentage: float = Field(default=10.0, gt=0, le=100)
    payment_due_days: int = Field(default=3, ge=0)

    def build_system_prompt(self) -> str:
        """Tenant prompt, or the default assistant instructions."""
        if self.system_prompt:
            return self.system_prompt
        return f"""You are {self.agent_name}, a friendly rental assistant for {self.company_name}.

Your role is to:
- Help customers find properties with the search_properties function
- Show details, photos and prices of the properties they are interested in
- Register customers and create reservations when they confirm
- Generate payment requests for confirmed reservations

Guidelines:
- Only state prices, availability and codes returned by a function call
- Ask for missing dates or guest counts before quoting
- Never repeat an action you have just performed for the same request
- Keep responses short, warm and suitable for WhatsApp

Always respond in the same language the customer uses."""
