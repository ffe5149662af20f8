from mc_wrapper.bridge.link import GatewayLink
from mc_wrapper.bridge.presence import PresencePublisher
from mc_wrapper.bridge.router import BridgeRouter, LocalInput

__all__ = ["BridgeRouter", "GatewayLink", "LocalInput", "PresencePublisher"]
