"""
Device package: the glove's serial byte stream as DeviceEvent values.

  Channel bytes → LineFramer → DeviceChannelAdapter.events
"""

from signlink.device.adapter import DeviceChannelAdapter
from signlink.device.channel import Channel, ChannelProvider, PlugEvent, PlugEventKind
from signlink.device.framer import LineFramer, frame_lines

__all__ = [
    "Channel",
    "ChannelProvider",
    "DeviceChannelAdapter",
    "LineFramer",
    "PlugEvent",
    "PlugEventKind",
    "frame_lines",
]
