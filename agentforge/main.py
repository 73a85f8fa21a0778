from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Body
from fastapi.middleware.cors import CORSMiddleware
from typing import List
import uvicorn
import asyncio
import uuid
import logging
from .billing import InMemoryCreditLedger
from .engine import WorkflowEngine, run_workflow
from .errors import WorkflowError
from .events import EventHub
from .node_registry import registry
from .providers import ProviderRegistry
from .scheduler import SchedulerService
from .schemas import BlockSchema, ExecutionRecord, RunRequest, Workflow
from .websockets import ConnectionManager

# Setup Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="AgentForge Workflow Engine")

# One hub, ledger and engine per process, shared by every run
hub = EventHub()
ledger = InMemoryCreditLedger()
engine = WorkflowEngine(registry=registry, ledger=ledger, hub=hub, providers=ProviderRegistry.from_config())
scheduler = SchedulerService(engine)
manager = ConnectionManager(hub)


@app.on_event("startup")
async def startup_event():
    scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    scheduler.stop()


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root():
    return {"message": "AgentForge Workflow Engine API"}


@app.get("/api/blocks", response_model=List[BlockSchema])
def get_blocks():
    return registry.get_all_metadata()


# --- WORKFLOW ENDPOINTS ---

@app.post("/api/workflows/{workflow_id}/run", response_model=ExecutionRecord)
async def run_workflow_endpoint(workflow_id: str, request: RunRequest):
    # Clients pick the execution id up front so they can subscribe before the run starts
    execution_id = request.executionId or str(uuid.uuid4())
    try:
        return await run_workflow(
            engine,
            request.workflow,
            request.userId,
            inputs=request.inputs,
            workflow_id=workflow_id,
            execution_id=execution_id,
            env_vars=request.envVars,
        )
    except WorkflowError as e:
        record = engine.get_run(execution_id)
        raise HTTPException(
            status_code=400,
            detail={"error": str(e), "execution": record.model_dump(mode="json") if record else None},
        )


@app.get("/api/executions/{execution_id}", response_model=ExecutionRecord)
def get_execution(execution_id: str):
    record = engine.get_run(execution_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return record


@app.post("/api/workflows/{workflow_id}/activate")
def activate_workflow(workflow_id: str, workflow: Workflow = Body(...), userId: str = Body(...)):
    try:
        trigger = scheduler.activate(workflow_id, workflow, userId)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "activated", "workflowId": workflow_id, "trigger": str(trigger)}


@app.post("/api/workflows/{workflow_id}/deactivate")
def deactivate_workflow(workflow_id: str):
    if not scheduler.deactivate(workflow_id):
        raise HTTPException(status_code=404, detail="Workflow is not active")
    return {"status": "deactivated", "workflowId": workflow_id}


# --- CREDITS ---

@app.get("/api/credits/{user_id}")
def get_credits(user_id: str):
    return {"userId": user_id, "balance": ledger.balance(user_id), "usage": ledger.usage(user_id)}


@app.post("/api/credits/{user_id}/top-up")
def top_up_credits(user_id: str, amount: float = Body(..., embed=True)):
    try:
        balance = ledger.top_up(user_id, amount)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"userId": user_id, "balance": balance}


@app.websocket("/api/workflows/{workflow_id}/executions/{execution_id}/ws")
async def execution_stream(websocket: WebSocket, workflow_id: str, execution_id: str):
    connection = await manager.connect(websocket, workflow_id, execution_id)
    sender = asyncio.create_task(manager.pump(connection))
    try:
        while True:
            # Keep alive / listen
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        manager.disconnect(websocket)


# Log Buffer
log_buffer = []


class ListHandler(logging.Handler):
    def emit(self, record):
        log_buffer.append(self.format(record))
        if len(log_buffer) > 100:
            log_buffer.pop(0)


handler = ListHandler()
formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
handler.setFormatter(formatter)
logging.getLogger().addHandler(handler)


@app.get("/api/logs")
def get_logs():
    return log_buffer


if __name__ == "__main__":
    uvicorn.run("agentforge.main:app", host="0.0.0.0", port=8000, reload=True, timeout_keep_alive=300)
