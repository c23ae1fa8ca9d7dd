from chain.contract_reader import ContractReader, ContractReaderError
from chain.events import ChainEvent, ContractEventDecoder, EventDecodeError, EventKind

__all__ = [
    "ChainEvent",
    "ContractEventDecoder",
    "ContractReader",
    "ContractReaderError",
    "EventDecodeError",
    "EventKind",
]
