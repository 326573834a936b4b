"""
FastAPI Server for the prompt backtester

Endpoints:
- GET /status - Health check and active configuration
- GET /prompt - Current base prompt
- GET /history - Prompt score ledger
- POST /backtest - Run a single backtest pass
- POST /optimize - Backtest and improve until convergence
"""

from contextlib import asynccontextmanager
from dataclasses import replace
from typing import List, Optional
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from convergence import ConvergenceDriver, PassReport
from errors import BacktestError
from history import PromptHistory, PromptStore
from settings import Settings

# Load environment variables
load_dotenv()

# ============================================================================
# CONFIGURATION
# ============================================================================

SETTINGS = Settings.from_env()

logging.basicConfig(
    level=getattr(logging, SETTINGS.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("prompt_backtest.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown events"""
    logger.info("Prompt backtester starting")
    logger.info("Provider: %s", SETTINGS.ai_provider.upper())
    logger.info("Eval model: %s | Improver model: %s", SETTINGS.eval_model, SETTINGS.improver_model)
    logger.info(
        "Threshold: %.2f | Max iterations: %d | Concurrency: %d",
        SETTINGS.accuracy_threshold, SETTINGS.max_iterations, SETTINGS.max_concurrency,
    )
    if not SETTINGS.api_key:
        logger.warning("No API key configured; /backtest and /optimize will fail")
    yield


# Initialize FastAPI app
app = FastAPI(
    title="Prompt Backtester",
    description="Backtest and improve ETH action prompts",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class FailureModel(BaseModel):
    window_index: int
    predicted_action: Optional[str] = None
    label_action: str
    rationale: str = ""
    malformed: bool = False


class PassModel(BaseModel):
    iteration: int
    accuracy: float
    total: int
    failures: List[FailureModel]
    improved: bool


class BacktestRequest(BaseModel):
    """Request for a single backtest pass"""
    improve: bool = Field(True, description="Rewrite the prompt when the pass has failures")


class BacktestResponse(BaseModel):
    success: bool
    result: Optional[PassModel] = None
    error: Optional[str] = None


class OptimizeRequest(BaseModel):
    """Request for the full backtest-and-improve loop"""
    accuracy_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    max_iterations: Optional[int] = Field(None, ge=1)

    class Config:
        json_schema_extra = {
            "example": {
                "accuracy_threshold": 0.7,
                "max_iterations": 10,
            }
        }


class OptimizeResponse(BaseModel):
    success: bool
    outcome: Optional[str] = None
    iterations: Optional[int] = None
    final_prompt: Optional[str] = None
    passes: List[PassModel] = []
    error: Optional[str] = None


class PromptResponse(BaseModel):
    prompt: Optional[str] = None
    error: Optional[str] = None


class HistoryRecordModel(BaseModel):
    prompt: str
    score: float


class HistoryResponse(BaseModel):
    records: List[HistoryRecordModel] = []
    error: Optional[str] = None


class StatusResponse(BaseModel):
    """Status check response"""
    status: str
    provider: str
    eval_model: str
    improver_model: str
    accuracy_threshold: float
    max_iterations: int
    max_concurrency: int
    malformed_policy: str
    tie_break: str


def _pass_model(report: PassReport) -> PassModel:
    return PassModel(
        iteration=report.iteration,
        accuracy=report.accuracy,
        total=report.total,
        failures=[
            FailureModel(
                window_index=f.window_index,
                predicted_action=f.predicted_action.value if f.predicted_action else None,
                label_action=f.label_action.value,
                rationale=f.rationale,
                malformed=f.malformed,
            )
            for f in report.failures
        ],
        improved=report.improved_prompt is not None,
    )


# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/status", response_model=StatusResponse)
async def status():
    """Health check endpoint"""
    return StatusResponse(
        status="running",
        provider=SETTINGS.ai_provider,
        eval_model=SETTINGS.eval_model,
        improver_model=SETTINGS.improver_model,
        accuracy_threshold=SETTINGS.accuracy_threshold,
        max_iterations=SETTINGS.max_iterations,
        max_concurrency=SETTINGS.max_concurrency,
        malformed_policy=SETTINGS.malformed_policy.value,
        tie_break=SETTINGS.tie_break.value,
    )


@app.get("/prompt", response_model=PromptResponse)
async def get_prompt():
    try:
        return PromptResponse(prompt=PromptStore(SETTINGS.prompt_file).read())
    except BacktestError as e:
        return PromptResponse(error=str(e))


@app.get("/history", response_model=HistoryResponse)
async def get_history():
    try:
        records = PromptHistory(SETTINGS.history_file, limit=SETTINGS.history_limit).load()
    except BacktestError as e:
        return HistoryResponse(error=str(e))
    return HistoryResponse(
        records=[HistoryRecordModel(prompt=r.prompt, score=r.score) for r in records]
    )


@app.post("/backtest", response_model=BacktestResponse)
async def backtest(request: BacktestRequest):
    """Score the current base prompt once, optionally rewriting it from the failures."""
    try:
        driver = ConvergenceDriver.from_settings(SETTINGS)
        base_prompt = driver.prompt_store.read()
        market_data = await driver.load_market_data()
        report = await driver.run_pass(
            base_prompt, market_data, improve=None if request.improve else False
        )
    except (BacktestError, ValueError) as e:
        logger.error("Backtest pass failed: %s", e)
        return BacktestResponse(success=False, error=str(e))

    return BacktestResponse(success=True, result=_pass_model(report))


@app.post("/optimize", response_model=OptimizeResponse)
async def optimize(request: OptimizeRequest):
    """Run the backtest-and-improve loop to convergence or exhaustion."""
    overrides = {}
    if request.accuracy_threshold is not None:
        overrides["accuracy_threshold"] = request.accuracy_threshold
    if request.max_iterations is not None:
        overrides["max_iterations"] = request.max_iterations

    try:
        driver = ConvergenceDriver.from_settings(replace(SETTINGS, **overrides))
        report = await driver.run()
    except (BacktestError, ValueError) as e:
        logger.error("Backtest and improvement failed: %s", e)
        return OptimizeResponse(success=False, error=str(e))

    return OptimizeResponse(
        success=True,
        outcome=report.outcome.value,
        iterations=report.iterations,
        final_prompt=report.final_prompt,
        passes=[_pass_model(p) for p in report.passes],
    )


# ============================================================================
# STARTUP
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 8000)),
    )
