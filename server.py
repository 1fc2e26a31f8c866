import logging
import threading
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from copilot.completion_engine import CompletionEngine
from copilot.completion_provider import CompletionProvider, InlineSuggestion, TriggerContext
from copilot.config_manager import ConfigManager
from copilot.context_assembler import ContextAssembler
from copilot.documents import Position, TextDocument, WorkspaceFolders
from copilot.llm_client import CompletionLlmClient
from copilot.model_props import SUPPORTED_MODELS, get_short_model_name
from copilot.request_scheduler import CancellationSignal

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n",
)
logger = logging.getLogger("copilot_completion")

app = FastAPI()

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CompletionService:
    """
    Process-wide wiring: one engine, one workspace registry, and the live
    cancellation signal of each document's current request.
    """

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self.transport = CompletionLlmClient.from_config(config_manager.get_config())
        self.engine = CompletionEngine(self.transport, config_manager)
        self.workspace = WorkspaceFolders()
        self.provider = CompletionProvider(self.engine, self.workspace)
        self.assembler = ContextAssembler()
        self._signals: Dict[str, CancellationSignal] = {}
        self._lock = threading.Lock()

        config_manager.on_change(self.transport.configure)
        config_manager.on_change(self.engine.apply_config)

    def start_request(self, document_id: str) -> CancellationSignal:
        signal = CancellationSignal()
        with self._lock:
            previous = self._signals.get(document_id)
            self._signals[document_id] = signal
        if previous is not None:
            previous.cancel()
        return signal

    def end_request(self, document_id: str, signal: CancellationSignal) -> None:
        with self._lock:
            if self._signals.get(document_id) is signal:
                del self._signals[document_id]

    def cancel(self, document_id: str) -> bool:
        with self._lock:
            signal = self._signals.pop(document_id, None)
        if signal is None:
            return False
        signal.cancel()
        return True

    def close_document(self, document_id: str) -> bool:
        """Editor closed the buffer: cancel its request and drop its scheduler."""
        cancelled = self.cancel(document_id)
        forgotten = self.engine.forget_document(document_id)
        return cancelled or forgotten


_service: Optional[CompletionService] = None
_service_lock = threading.Lock()


def get_service() -> CompletionService:
    global _service
    with _service_lock:
        if _service is None:
            _service = CompletionService(ConfigManager())
        return _service


class CompletionRequestBody(BaseModel):
    document_id: str
    text: str
    language: str
    file_name: str
    line: int
    character: int
    workspace_root: Optional[str] = None
    trigger_kind: str = "automatic"


class CancelRequestBody(BaseModel):
    document_id: str


class SettingsBody(BaseModel):
    api_key: Optional[str] = None
    model: Optional[str] = None
    enable: Optional[bool] = None


class SelectionContextBody(BaseModel):
    selected_text: str
    language: str
    file_name: str


class WorkspaceContextBody(BaseModel):
    query: str
    workspace_root: str


@app.post("/completions")
async def request_completion(body: CompletionRequestBody, service: CompletionService = Depends(get_service)):
    try:
        if body.workspace_root:
            service.workspace.add(body.workspace_root)

        document = TextDocument(body.text, body.language, body.file_name, uri=body.document_id)
        position = Position(body.line, body.character)
        signal = service.start_request(body.document_id)
        try:
            suggestion = await service.provider.provide_completion(
                document, position, TriggerContext(kind=body.trigger_kind), signal
            )
        finally:
            service.end_request(body.document_id, signal)

        if not isinstance(suggestion, InlineSuggestion):
            return {"status": "success", "suggestion": None}

        return {
            "status": "success",
            "suggestion": {
                "text": suggestion.text,
                "range": {
                    "start": {"line": suggestion.range.start.line, "character": suggestion.range.start.character},
                    "end": {"line": suggestion.range.end.line, "character": suggestion.range.end.character},
                },
            },
        }
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/completions/cancel")
async def cancel_completion(body: CancelRequestBody, service: CompletionService = Depends(get_service)):
    return {"status": "success", "cancelled": service.cancel(body.document_id)}


@app.post("/documents/close")
async def close_document(body: CancelRequestBody, service: CompletionService = Depends(get_service)):
    return {"status": "success", "closed": service.close_document(body.document_id)}


@app.post("/settings")
async def update_settings(body: SettingsBody, service: CompletionService = Depends(get_service)):
    manager = service.config_manager
    if body.api_key is not None:
        manager.set_api_key(body.api_key)
    if body.model is not None:
        if body.model not in SUPPORTED_MODELS:
            raise HTTPException(status_code=400, detail=f"Unsupported model '{body.model}'")
        manager.set_model(body.model)
    if body.enable is not None:
        manager.set_completion_enabled(body.enable)

    config = manager.get_config()
    return {
        "status": "success",
        "model": config.model,
        "enable": config.enable,
        "api_key_configured": manager.is_api_key_configured(),
    }


@app.post("/context/selection")
async def selection_context(body: SelectionContextBody, service: CompletionService = Depends(get_service)):
    return {
        "status": "success",
        "context": service.assembler.selection_context(body.selected_text, body.language, body.file_name),
    }


@app.post("/context/workspace")
async def workspace_context(body: WorkspaceContextBody, service: CompletionService = Depends(get_service)):
    config = service.config_manager.get_config()
    files = service.assembler.workspace_context(body.query, body.workspace_root, config)
    return {
        "status": "success",
        "files": [{"path": f.path, "language": f.language, "content": f.content} for f in files],
    }


@app.get("/usage")
async def get_usage(service: CompletionService = Depends(get_service)):
    return {"status": "success", "usage": service.engine.get_total_usage().to_dict()}


@app.post("/usage/reset")
async def reset_usage(service: CompletionService = Depends(get_service)):
    service.engine.reset_usage()
    return {"status": "success"}


@app.get("/models")
async def get_models(service: CompletionService = Depends(get_service)):
    current = service.config_manager.get_config().model
    return {
        "status": "success",
        "current": current,
        "current_short": get_short_model_name(current),
        "models": [{"name": m, "short": get_short_model_name(m), "current": m == current} for m in SUPPORTED_MODELS],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
