"""Catalogue of AI-inference ports and the Ollama model inventory probe."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any, Collection, Iterable

import requests

from lanscout.models import HostRecord, ServiceFingerprint, Severity, service_key, utc_now

logger = logging.getLogger(__name__)

OLLAMA_TAGS_ENDPOINT = "http://{host}:{port}/api/tags"
DEFAULT_TIMEOUT_SECONDS = 2


class AIServiceType(str, Enum):
    OLLAMA = "ollama"
    OPEN_WEBUI = "open-webui"
    GRADIO = "gradio"
    LOCALAI = "localai"
    TEXTGEN_WEBUI = "text-generation-webui"
    VLLM = "vllm"
    TRITON = "triton"
    STABLE_DIFFUSION = "stable-diffusion"
    COMFYUI = "comfyui"
    QDRANT = "qdrant"
    CHROMA = "chroma"
    MILVUS = "milvus"
    WEAVIATE = "weaviate"
    TF_SERVING = "tensorflow-serving"
    MLFLOW = "mlflow"
    JUPYTER = "jupyter"
    LANGSERVE = "langserve"
    N8N = "n8n"
    ANYTHINGLLM = "anythingllm"
    LMSTUDIO = "lm-studio"
    UNKNOWN = "unknown"


RISK_LEVELS: dict[AIServiceType, Severity] = {
    AIServiceType.JUPYTER: Severity.CRITICAL,
    AIServiceType.OLLAMA: Severity.HIGH,
    AIServiceType.LOCALAI: Severity.HIGH,
    AIServiceType.VLLM: Severity.HIGH,
    AIServiceType.TRITON: Severity.HIGH,
    AIServiceType.TF_SERVING: Severity.HIGH,
    AIServiceType.TEXTGEN_WEBUI: Severity.HIGH,
    AIServiceType.STABLE_DIFFUSION: Severity.HIGH,
    AIServiceType.COMFYUI: Severity.HIGH,
    AIServiceType.LMSTUDIO: Severity.HIGH,
    AIServiceType.OPEN_WEBUI: Severity.MEDIUM,
    AIServiceType.GRADIO: Severity.MEDIUM,
    AIServiceType.LANGSERVE: Severity.MEDIUM,
    AIServiceType.ANYTHINGLLM: Severity.MEDIUM,
    AIServiceType.N8N: Severity.MEDIUM,
    AIServiceType.MLFLOW: Severity.MEDIUM,
    AIServiceType.QDRANT: Severity.LOW,
    AIServiceType.CHROMA: Severity.LOW,
    AIServiceType.MILVUS: Severity.LOW,
    AIServiceType.WEAVIATE: Severity.LOW,
    AIServiceType.UNKNOWN: Severity.MEDIUM,
}


@dataclass(frozen=True, slots=True)
class AIServiceInfo:
    name: str
    service_type: AIServiceType

    @property
    def risk_level(self) -> Severity:
        return RISK_LEVELS.get(self.service_type, Severity.MEDIUM)


AI_PORT_MAP: dict[int, AIServiceInfo] = {
    11434: AIServiceInfo("Ollama API", AIServiceType.OLLAMA),
    11435: AIServiceInfo("Ollama (Alternate)", AIServiceType.OLLAMA),
    3000: AIServiceInfo("Open WebUI", AIServiceType.OPEN_WEBUI),
    7860: AIServiceInfo("Gradio", AIServiceType.GRADIO),
    5000: AIServiceInfo("LocalAI / Flask AI", AIServiceType.LOCALAI),
    5001: AIServiceInfo("Text Generation WebUI", AIServiceType.TEXTGEN_WEBUI),
    5005: AIServiceInfo("Text Generation API", AIServiceType.TEXTGEN_WEBUI),
    8000: AIServiceInfo("vLLM / FastAPI", AIServiceType.VLLM),
    8001: AIServiceInfo("Triton HTTP", AIServiceType.TRITON),
    8002: AIServiceInfo("Triton gRPC", AIServiceType.TRITON),
    8080: AIServiceInfo("LM Studio", AIServiceType.LMSTUDIO),
    7861: AIServiceInfo("Stable Diffusion", AIServiceType.STABLE_DIFFUSION),
    8188: AIServiceInfo("ComfyUI", AIServiceType.COMFYUI),
    6333: AIServiceInfo("Qdrant", AIServiceType.QDRANT),
    6334: AIServiceInfo("Weaviate", AIServiceType.WEAVIATE),
    8765: AIServiceInfo("Chroma", AIServiceType.CHROMA),
    19530: AIServiceInfo("Milvus", AIServiceType.MILVUS),
    8501: AIServiceInfo("TensorFlow Serving", AIServiceType.TF_SERVING),
    8500: AIServiceInfo("TensorFlow gRPC", AIServiceType.TF_SERVING),
    5050: AIServiceInfo("MLflow", AIServiceType.MLFLOW),
    8081: AIServiceInfo("LangServe", AIServiceType.LANGSERVE),
    3001: AIServiceInfo("n8n", AIServiceType.N8N),
    4000: AIServiceInfo("AnythingLLM", AIServiceType.ANYTHINGLLM),
    8888: AIServiceInfo("Jupyter Notebook", AIServiceType.JUPYTER),
    9090: AIServiceInfo("SwarmUI", AIServiceType.STABLE_DIFFUSION),
}

UNKNOWN_AI_SERVICE = AIServiceInfo("Unknown AI Service", AIServiceType.UNKNOWN)


def lookup_ai_service(port: int) -> AIServiceInfo | None:
    return AI_PORT_MAP.get(int(port))


def is_authorized(host: str, port: int, authorized_keys: Collection[str]) -> bool:
    """A service is allowed when its host or its ``host:port`` key is listed."""
    return host in authorized_keys or service_key(host, port) in authorized_keys


def _model_names(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        return []
    models = payload.get("models")
    if not isinstance(models, list):
        return []
    return [str(item["name"]) for item in models if isinstance(item, dict) and item.get("name")]


def query_model_inventory(host: str, port: int, *, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> str | None:
    """Return the comma-joined model list served by an Ollama endpoint, or ``None``."""
    try:
        response = requests.get(OLLAMA_TAGS_ENDPOINT.format(host=host, port=port), timeout=timeout_seconds)
        response.raise_for_status()
        names = _model_names(response.json())
    except (requests.RequestException, ValueError) as exc:
        logger.debug("Model inventory query %s:%s failed: %s", host, port, exc)
        return None
    return ", ".join(names) if names else None


def fingerprint_ai_services(
    hosts: Iterable[HostRecord],
    authorized_keys: Collection[str] = (),
    *,
    query_models: bool = False,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> list[ServiceFingerprint]:
    """Turn open AI-catalogue ports on online hosts into service fingerprints."""
    observed_at = utc_now()
    fingerprints: list[ServiceFingerprint] = []
    for host in hosts:
        if not host.is_online:
            continue
        for record in host.open_ports:
            info = lookup_ai_service(record.port)
            if info is None:
                continue
            model_info = None
            if query_models and info.service_type is AIServiceType.OLLAMA:
                model_info = query_model_inventory(host.address, record.port, timeout_seconds=timeout_seconds)
            fingerprints.append(
                ServiceFingerprint(
                    host=host.address,
                    port=record.port,
                    service_name=info.name,
                    service_type=info.service_type.value,
                    version=record.version,
                    model_info=model_info,
                    is_authorized=is_authorized(host.address, record.port, authorized_keys),
                    is_online=True,
                    first_seen=observed_at,
                    last_seen=observed_at,
                )
            )
    return fingerprints
