"""
Channel Module - Direct Peer-to-Peer Channels

Ordered, message-oriented channels and their negotiation over the relay.
"""

from .base import DirectChannel, ChannelState, Negotiator
from .tcp import TcpChannel
from .memory import MemoryChannel
from .negotiation import TcpNegotiator

__all__ = [
    'DirectChannel',
    'ChannelState',
    'Negotiator',
    'TcpChannel',
    'MemoryChannel',
    'TcpNegotiator',
]
