# rtcp - Network Simulator
from .network import NetworkSimulator, SimulatedEndpoint, PacketCapture, NetworkStats

__all__ = ["NetworkSimulator", "SimulatedEndpoint", "PacketCapture", "NetworkStats"]
