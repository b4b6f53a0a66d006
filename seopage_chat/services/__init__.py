from .domain_processor import DomainProcessor
from .search_gateway import SearchGateway
from .orchestrator import FlowOrchestrator, token_from_store

__all__ = [
    "DomainProcessor",
    "SearchGateway",
    "FlowOrchestrator",
    "token_from_store"
]
