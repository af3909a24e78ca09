"""Quote sync core -- simPRO quotes mirrored onto monday account/contact/deal boards.

Provides:
- Classification (value threshold, stage/status allow-lists, closed rule)
- Stage normalisation and mapping (Discovery / Proposal Sent / Won / Lost)
- Mapping of quotes to typed board payloads
- Foreign-id resolution and idempotent entity upserts
- SyncService (batch and single-quote) and WebhookService (debounced events)
"""
