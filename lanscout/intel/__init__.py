"""Intel package: service knowledge base, AI service catalogue and threat rules."""

from .ai_services import AIServiceType, fingerprint_ai_services, query_model_inventory
from .services import ServiceInfo, label_for_port, lookup_service
from .threats import DeviceThreatSummary, NetworkThreatSummary, ThreatRule, analyze_network, classify_host, default_rules

__all__ = [
    "AIServiceType",
    "DeviceThreatSummary",
    "NetworkThreatSummary",
    "ServiceInfo",
    "ThreatRule",
    "analyze_network",
    "classify_host",
    "default_rules",
    "fingerprint_ai_services",
    "label_for_port",
    "lookup_service",
    "query_model_inventory",
]
