"""
Security mode selection

Turns the operator's yes/no answer into a SecurityMode. TLS is the default;
only an explicit "no" selects the insecure endpoint.
"""

import logging
from typing import Callable

import click

from wsl_dockerd.security.models import SecurityMode

logger = logging.getLogger(__name__)

YES_ANSWERS = ("y", "yes")
NO_ANSWERS = ("n", "no")

TLS_QUESTION = "Secure the Docker daemon endpoint with mutual TLS?"
COPY_KEY_QUESTION = "Copy the client private key (key.pem) to this host?"

Ask = Callable[[str], str]


def _click_ask(prompt: str) -> str:
    return click.prompt(prompt, default="", show_default=False, prompt_suffix=" ")


def resolve_answer(text: str, default: bool) -> bool | None:
    """
    Interpret a yes/no answer.

    Returns:
        The default for empty input, True/False for a recognized answer,
        None for anything else
    """
    answer = text.strip().lower()
    if not answer:
        return default
    if answer in YES_ANSWERS:
        return True
    if answer in NO_ANSWERS:
        return False
    return None


def confirm(question: str, ask: Ask | None = None, default: bool = False) -> bool:
    """Ask a yes/no question until the answer is recognized."""
    ask = ask or _click_ask
    suffix = "[Y/n]" if default else "[y/N]"
    while True:
        decision = resolve_answer(ask(f"{question} {suffix}"), default)
        if decision is not None:
            return decision
        logger.debug(f"Unrecognized answer to {question!r}, asking again")
        click.echo("Please answer 'y' or 'n'.")


def select_security_mode(
    ask: Ask | None = None,
    default: SecurityMode = SecurityMode.TLS,
) -> SecurityMode:
    """
    Ask whether to secure the endpoint with TLS.

    Args:
        ask: Callable that shows a prompt and returns the raw answer
        default: Mode chosen on empty input

    Returns:
        SecurityMode.TLS on yes/default, SecurityMode.INSECURE on an explicit no
    """
    use_tls = confirm(TLS_QUESTION, ask=ask, default=default.is_tls)
    mode = SecurityMode.TLS if use_tls else SecurityMode.INSECURE
    logger.info(f"Security mode selected: {mode.value}")
    return mode
