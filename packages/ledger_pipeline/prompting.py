"""Prompt construction for the remote extraction model.

The transport contract takes a single prompt string, so instructions and the
message are embedded together. The message is delimited by BEGIN_/END_
markers so it stays distinguishable from the instructions around it.
"""

from __future__ import annotations

import json

BEGIN_MESSAGE = "BEGIN_MESSAGE\n"
END_MESSAGE = "\nEND_MESSAGE"
NO_TRANSACTION = "NONE"

# Key order of the JSON object the model must return.
RESPONSE_FIELDS: tuple[str, ...] = (
    "is_transaction",
    "amount",
    "type",
    "merchant",
    "account_last_digits",
    "balance",
    "date",
    "currency",
    "transaction_id",
    "confidence",
)

_SCHEMA_EXAMPLE = {
    "is_transaction": True,
    "amount": 1250.5,
    "type": "debit",
    "merchant": "SWIGGY",
    "account_last_digits": "1234",
    "balance": 10450.0,
    "date": "2024-01-05",
    "currency": "INR",
    "transaction_id": "412345678901",
    "confidence": 0.9,
}


def build_extraction_prompt(message_text: str, *, home_currency: str = "INR") -> str:
    """Prompt asking for one JSON object describing the transaction in the message."""

    example = json.dumps(_SCHEMA_EXAMPLE, ensure_ascii=False)
    return (
        "You extract a single financial transaction from a bank or wallet notification.\n"
        "Respond with exactly one JSON object and nothing else, using these keys in order: "
        + ", ".join(RESPONSE_FIELDS)
        + ".\n"
        "Rules:\n"
        '- "type" is "debit" when money left the account and "credit" when it arrived.\n'
        '- "amount" and "balance" are plain numbers without currency symbols or separators.\n'
        '- "date" is YYYY-MM-DD, or null when the message has no date.\n'
        f'- "currency" is a 3-letter ISO code; use "{home_currency}" when only Rs or ₹ appear.\n'
        '- "account_last_digits" is the last 4 digits of the card or account, '
        '"UPI" for UPI transfers without one, otherwise null.\n'
        '- "merchant" is the counterparty name as written, without reference numbers.\n'
        '- "confidence" is a number between 0 and 1.\n'
        '- If the message is not a completed transaction (OTP, reminder, offer), '
        'return {"is_transaction": false, "amount": null}.\n'
        f"Example: {example}\n\n"
        f"{BEGIN_MESSAGE}{message_text}{END_MESSAGE}"
    )


def build_excerpt_prompt(header_block: str, body_block: str) -> str:
    """First step of the email flow: ask for the transaction sentences only."""

    return (
        "Below is a transactional email. Copy the one or two sentences that state the "
        "transaction (amount, direction, merchant, account, date), verbatim, as plain text. "
        f'If the email does not describe a completed transaction, reply with "{NO_TRANSACTION}".\n\n'
        f"{BEGIN_MESSAGE}Subject: {header_block.strip()}\n\n{body_block.strip()}{END_MESSAGE}"
    )


__all__ = [
    "BEGIN_MESSAGE",
    "END_MESSAGE",
    "NO_TRANSACTION",
    "RESPONSE_FIELDS",
    "build_excerpt_prompt",
    "build_extraction_prompt",
]
