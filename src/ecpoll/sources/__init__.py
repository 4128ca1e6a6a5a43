from .base import Source
from .dns_srv import DnsOverHttpsResolver, DnsSrvSource, lookup_primary_srv, wait_for_srv_target
from .inbox import ImapInboxSource, Inbox
from .twilio_calls import OutboundCallVerifier, TwilioCallLogSource, TwilioCallSource, format_phone_number

__all__ = [
    "Source",
    "DnsOverHttpsResolver",
    "DnsSrvSource",
    "lookup_primary_srv",
    "wait_for_srv_target",
    "ImapInboxSource",
    "Inbox",
    "OutboundCallVerifier",
    "TwilioCallLogSource",
    "TwilioCallSource",
    "format_phone_number",
]
