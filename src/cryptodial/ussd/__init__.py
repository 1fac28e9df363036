"""USSD menu routing."""

from cryptodial.ussd.menu import (
    MenuRequest,
    MenuState,
    Prompt,
    StepContext,
    UssdMenu,
    con,
    end,
)

__all__ = [
    "MenuRequest",
    "MenuState",
    "Prompt",
    "StepContext",
    "UssdMenu",
    "con",
    "end",
]
