"""Cross-instance state replication boundary."""

from flowkeeper.sync.channel import BrokerChannel, InMemoryBroker, StateUpdate, SyncChannel, UpdateOp

__all__ = ["BrokerChannel", "InMemoryBroker", "StateUpdate", "SyncChannel", "UpdateOp"]
